"""
Model backends for hostwatch.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
plugins) stays model-agnostic.

Every backend implements the same three steps used by :class:`~hostwatch.agent.agent_loop.AgentLoop`:

* :meth:`ModelBackend.start` - encode system prompt, history, question and tool specs into a
  per-turn :class:`Transcript`;
* :meth:`ModelBackend.request` - send the transcript and decode the reply into a :class:`ModelTurn`;
* :meth:`ModelBackend.add_results` - append the assistant turn and its tool results.

Two families are supported out of the box:

1. **Structured** backends (Anthropic Messages, OpenAI Chat Completions) that return tool calls as
   typed blocks.
2. **Text-protocol** backends (local ``claude`` CLI, Hugging Face TGI) with a single free-text
   channel; tool calls travel in ```` ```tool_call ```` fences.

Additional providers can be added by subclassing :class:`ModelBackend` and registering via
:func:`register_provider`.
"""

import asyncio
import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from hostwatch.agent.prompts import build_tool_prompt
from hostwatch.core.schema import (
    ConversationMessage,
    ToolCallRequest,
    ToolResult,
    ToolSpec,
    Usage,
)
from hostwatch.security.scrub import scrub
from hostwatch.tools.tool_call_parser import extract_tool_calls

logger = logging.getLogger(__name__)

MAX_CONTEXT_SIZE = 100_000
TRUNCATION_MARKER = "... [earlier context truncated] ...\n"


class ProviderError(RuntimeError):
    """Raised when a backend we drive ourselves (CLI process, TGI endpoint) fails."""


class ModelTurn(BaseModel):
    """One decoded model reply."""

    text: str = ""
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    done: bool = False
    usage: Usage = Field(default_factory=Usage)


@dataclass
class Transcript:
    """Backend-specific state of one agent turn.  Never shared between turns."""

    system: str
    tools: List[ToolSpec]
    messages: List[Any] = field(default_factory=list)
    context: str = ""
    rounds: int = 0
    wire_names: Dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["ModelBackend"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a backend class under *name*."""

    def wrapper(cls: Type["ModelBackend"]) -> Type["ModelBackend"]:
        cls.name = name
        _PROVIDER_REGISTRY[name] = cls
        return cls

    return wrapper


def available_providers() -> List[str]:
    return sorted(_PROVIDER_REGISTRY)


def load_provider(settings: Any, name: str | None = None) -> "ModelBackend":
    """
    Factory that returns an instantiated backend.

    Fallback order:
    1. *name* arg
    2. ``settings.PROVIDER``
    3. default: ``"anthropic"``
    """
    target = (name or getattr(settings, "PROVIDER", None) or "anthropic").lower()
    cls = _PROVIDER_REGISTRY.get(target)
    if cls is None:
        raise ValueError(f"Provider '{target}' is not registered.")
    logger.info("Using model provider '%s'", target)
    return cls.from_settings(settings)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class ModelBackend(ABC):
    """Abstract backend: encodes requests and decodes replies for one model API."""

    name: ClassVar[str] = "base"

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Any) -> "ModelBackend":
        """Build the backend from application settings."""

    @abstractmethod
    def start(
        self,
        system_prompt: str,
        history: Sequence[ConversationMessage],
        question: str,
        tools: Sequence[ToolSpec],
    ) -> Transcript:
        """Encode the opening request of a turn."""

    @abstractmethod
    async def request(self, transcript: Transcript) -> ModelTurn:
        """Send *transcript* to the model and decode its reply."""

    @abstractmethod
    def add_results(self, transcript: Transcript, turn: ModelTurn, results: Sequence[ToolResult]) -> None:
        """Append *turn* and the results of its tool calls, in request order."""


# ---------------------------------------------------------------------------
# Structured backends
# ---------------------------------------------------------------------------
def to_wire_name(name: str) -> str:
    """Plugin tools are named ``plugin:tool``; model APIs only accept ``[a-zA-Z0-9_-]``."""
    return name.replace(":", "__")


def _wire_names(tools: Sequence[ToolSpec]) -> Dict[str, str]:
    return {to_wire_name(t.name): t.name for t in tools}


@register_provider("anthropic")
class AnthropicBackend(ModelBackend):
    """Anthropic Messages API with native ``tool_use`` blocks."""

    def __init__(self, client: Any, model: str, max_tokens: int = 2048):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Any) -> "AnthropicBackend":
        import anthropic  # pylint: disable=import-outside-toplevel

        client = anthropic.AsyncAnthropic(
            api_key=settings.ANTHROPIC_API_KEY, timeout=settings.BACKEND_TIMEOUT
        )
        return cls(client, settings.ANTHROPIC_MODEL, settings.MAX_TOKENS)

    def start(self, system_prompt, history, question, tools) -> Transcript:
        messages: List[Any] = [{"role": m.role, "content": m.content} for m in history]
        messages.append({"role": "user", "content": question})
        return Transcript(
            system=system_prompt, tools=list(tools), messages=messages, wire_names=_wire_names(tools)
        )

    async def request(self, transcript: Transcript) -> ModelTurn:
        tools = [
            {"name": to_wire_name(t.name), "description": t.description, "input_schema": t.input_schema}
            for t in transcript.tools
        ]
        logger.debug(
            "Calling Anthropic API model=%s messages=%d tools=%d",
            self.model,
            len(transcript.messages),
            len(tools),
        )
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=transcript.system,
            tools=tools,
            messages=transcript.messages,
        )
        logger.debug("Anthropic stop_reason=%s blocks=%d", response.stop_reason, len(response.content))

        texts: List[str] = []
        calls: List[ToolCallRequest] = []
        content: List[Dict[str, Any]] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
                content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                tool_input = block.input if isinstance(block.input, dict) else {}
                calls.append(
                    ToolCallRequest(
                        id=block.id,
                        name=transcript.wire_names.get(block.name, block.name),
                        input=tool_input,
                    )
                )
                content.append(
                    {"type": "tool_use", "id": block.id, "name": block.name, "input": tool_input}
                )
        # kept verbatim so add_results can echo the assistant turn back
        transcript.messages.append({"role": "assistant", "content": content})

        usage = getattr(response, "usage", None)
        return ModelTurn(
            text="\n".join(texts),
            tool_calls=calls,
            done=response.stop_reason != "tool_use",
            usage=Usage(
                input_tokens=getattr(usage, "input_tokens", 0) or 0,
                output_tokens=getattr(usage, "output_tokens", 0) or 0,
            ),
        )

    def add_results(self, transcript, turn, results) -> None:
        transcript.messages.append(
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": r.tool_use_id,
                        "content": r.content,
                        "is_error": r.is_error,
                    }
                    for r in results
                ],
            }
        )


@register_provider("openai")
class OpenAIBackend(ModelBackend):
    """OpenAI Chat Completions with native ``tool_calls``."""

    def __init__(self, client: Any, model: str, max_tokens: int = 2048):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def from_settings(cls, settings: Any) -> "OpenAIBackend":
        import openai  # pylint: disable=import-outside-toplevel

        client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.BACKEND_TIMEOUT)
        return cls(client, settings.OPENAI_MODEL, settings.MAX_TOKENS)

    def start(self, system_prompt, history, question, tools) -> Transcript:
        messages: List[Any] = [{"role": "system", "content": system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in history)
        messages.append({"role": "user", "content": question})
        return Transcript(
            system=system_prompt, tools=list(tools), messages=messages, wire_names=_wire_names(tools)
        )

    async def request(self, transcript: Transcript) -> ModelTurn:
        tools = [
            {
                "type": "function",
                "function": {
                    "name": to_wire_name(t.name),
                    "description": t.description,
                    "parameters": t.input_schema,
                },
            }
            for t in transcript.tools
        ]
        logger.debug("Calling OpenAI API model=%s messages=%d", self.model, len(transcript.messages))
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": transcript.messages,
        }
        if tools:
            kwargs["tools"] = tools
        resp = await self.client.chat.completions.create(**kwargs)

        choice = resp.choices[0]
        message = choice.message
        calls: List[ToolCallRequest] = []
        wire_calls: List[Dict[str, Any]] = []
        for call in message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("OpenAI returned malformed arguments for %s", call.function.name)
                arguments = {}
            calls.append(
                ToolCallRequest(
                    id=call.id,
                    name=transcript.wire_names.get(call.function.name, call.function.name),
                    input=arguments if isinstance(arguments, dict) else {},
                )
            )
            wire_calls.append(
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.function.name, "arguments": call.function.arguments},
                }
            )

        assistant: Dict[str, Any] = {"role": "assistant", "content": message.content or ""}
        if wire_calls:
            assistant["tool_calls"] = wire_calls
        transcript.messages.append(assistant)

        usage = getattr(resp, "usage", None)
        return ModelTurn(
            text=message.content or "",
            tool_calls=calls,
            done=choice.finish_reason != "tool_calls" and not calls,
            usage=Usage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    def add_results(self, transcript, turn, results) -> None:
        for r in results:
            transcript.messages.append(
                {"role": "tool", "tool_call_id": r.tool_use_id, "content": r.content}
            )


# ---------------------------------------------------------------------------
# Text-protocol backends
# ---------------------------------------------------------------------------
_ROLE_MARKERS = (
    (re.compile(r"^User:", re.MULTILINE), "[User]:"),
    (re.compile(r"^Assistant:", re.MULTILINE), "[Assistant]:"),
)


def escape_role_markers(text: str) -> str:
    """Rewrite ``User:`` / ``Assistant:`` at line start so untrusted text cannot open a new turn."""
    for pattern, replacement in _ROLE_MARKERS:
        text = pattern.sub(replacement, text)
    return text


def truncate_context(context: str, limit: int = MAX_CONTEXT_SIZE) -> str:
    """Keep the most recent part of *context* when it grows past *limit* characters."""
    if len(context) <= limit:
        return context
    logger.warning("Context size %d exceeded limit %d, truncating", len(context), limit)
    return TRUNCATION_MARKER + context[-(limit - 50) :]


def format_tool_results(turn_calls: Sequence[ToolCallRequest], results: Sequence[ToolResult]) -> str:
    names = {c.id: c.name for c in turn_calls}
    section = "\n\n## Tool Results\n\n"
    for r in results:
        section += f"### {names.get(r.tool_use_id, 'tool')} ({r.tool_use_id})\n"
        if r.is_error:
            section += "**Error:**\n"
        section += f"```\n{escape_role_markers(r.content)}\n```\n\n"
    section += "Please continue your analysis based on these results.\n"
    return section


class TextProtocolBackend(ModelBackend):
    """Shared encoding for backends that only exchange free text."""

    @abstractmethod
    async def complete(self, prompt: str, system_prompt: str) -> str:
        """Return the raw completion for *prompt*."""

    def start(self, system_prompt, history, question, tools) -> Transcript:
        lines = [
            f"{'User' if m.role == 'user' else 'Assistant'}: {escape_role_markers(m.content)}"
            for m in history
        ]
        context = "\n\n".join(lines)
        context += f"\nUser: {escape_role_markers(question)}\n"
        return Transcript(
            system=build_tool_prompt(system_prompt, tools), tools=list(tools), context=context
        )

    async def request(self, transcript: Transcript) -> ModelTurn:
        transcript.context = truncate_context(transcript.context)
        transcript.rounds += 1
        logger.debug(
            "Calling %s backend round=%d prompt_length=%d",
            self.name,
            transcript.rounds,
            len(transcript.context),
        )
        raw = await self.complete(transcript.context, transcript.system)
        transcript.messages.append(raw)

        text, calls = extract_tool_calls(raw, id_prefix=f"{self.name}-{transcript.rounds}")
        return ModelTurn(text=text.strip(), tool_calls=calls)

    def add_results(self, transcript, turn, results) -> None:
        raw = transcript.messages[-1] if transcript.messages else turn.text
        transcript.context += f"\nAssistant: {escape_role_markers(raw)}\n"
        transcript.context += format_tool_results(turn.tool_calls, results)


@register_provider("cli")
class CliBackend(TextProtocolBackend):
    """
    Local ``claude`` CLI.

    The CLI does not expose tool use, so specs are embedded in the system prompt and every built-in
    CLI tool is disabled with ``--tools ""``.
    """

    def __init__(self, cli_path: str = "claude", model: str = "sonnet", timeout: float = 120.0):
        self.cli_path = cli_path
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Any) -> "CliBackend":
        return cls(settings.CLI_PATH, settings.CLI_MODEL, settings.BACKEND_TIMEOUT)

    async def complete(self, prompt: str, system_prompt: str) -> str:
        args = ["-p", prompt, "--model", self.model, "--print", "--system-prompt", system_prompt, "--tools", ""]
        logger.debug("Spawning %s model=%s", self.cli_path, self.model)
        try:
            proc = await asyncio.create_subprocess_exec(
                self.cli_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            message = scrub(str(exc))
            logger.error("Claude CLI spawn error: %s", message)
            raise ProviderError(f"Failed to spawn Claude CLI: {message}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise ProviderError(f"Claude CLI timed out after {self.timeout:.0f}s") from exc

        if proc.returncode != 0:
            # stderr may echo the prompt, which may hold tool output
            message = scrub(stderr.decode("utf-8", errors="replace"))
            logger.error("Claude CLI failed code=%s stderr=%s", proc.returncode, message)
            raise ProviderError(f"Claude CLI exited with code {proc.returncode}: {message}")
        return stdout.decode("utf-8", errors="replace").strip()


@register_provider("tgi")
class TGIBackend(TextProtocolBackend):
    """Hugging Face Text-Generation-Inference endpoint over httpx."""

    def __init__(
        self,
        endpoint: str,
        max_new_tokens: int = 2048,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint
        self.max_new_tokens = max_new_tokens
        self.timeout = timeout
        self.client = client

    @classmethod
    def from_settings(cls, settings: Any) -> "TGIBackend":
        return cls(settings.TGI_ENDPOINT, settings.MAX_TOKENS, settings.BACKEND_TIMEOUT)

    async def complete(self, prompt: str, system_prompt: str) -> str:
        payload = {
            "inputs": f"{system_prompt}\n\n{prompt}\nAssistant:",
            "parameters": {
                "max_new_tokens": self.max_new_tokens,
                "temperature": 0.2,
                "stop": ["\nUser:", "</s>"],
            },
        }
        try:
            if self.client is not None:
                resp = await self.client.post(self.endpoint, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.endpoint, json=payload)
            resp.raise_for_status()
            content = resp.json()["generated_text"]
        except httpx.HTTPError as exc:
            message = scrub(str(exc))
            logger.error("TGI request error: %s", message)
            raise ProviderError(f"Error calling TGI endpoint: {message}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Unexpected TGI response: {exc}") from exc

        logger.debug("TGI response length=%d", len(content))
        return str(content)
