"""Main orchestration loop for hostwatch."""

from __future__ import annotations

import logging
from typing import (
    List,
    Optional,
    Sequence,
)

from hostwatch.agent.prompts import (
    SYSTEM_PROMPT,
    build_system_prompt,
)
from hostwatch.agent.providers import (
    ModelBackend,
    ModelTurn,
)
from hostwatch.agent.tool_executor import ToolDispatcher
from hostwatch.core.schema import (
    AskResult,
    ConversationMessage,
    ProviderLimits,
    ToolCallLog,
    ToolResult,
    Usage,
    UserConfig,
)
from hostwatch.security.scrub import scrub
from hostwatch.tools import ToolRegistry

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_CHARS = 200
EMPTY_RESPONSE = "I apologize, but I was unable to generate a response."
MAX_ITERATIONS_RESPONSE = "I was unable to complete the analysis - maximum iterations reached."


def budget_note(max_tool_calls: int, partial: str) -> str:
    return (
        f"I reached the maximum number of tool calls ({max_tool_calls}) while investigating. "
        f"Here's what I found so far:\n\n{partial}"
    )


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Bounded tool-use loop shared by every backend.

    One :meth:`ask` is a sequential pipeline: request the model, execute the tool calls it asked
    for (in order) through the dispatcher, feed the results back, and repeat until the model stops
    asking, the tool-call budget is spent, or the iteration budget is spent.  Counters live on the
    call stack, so concurrent turns share nothing but the registry snapshot.
    """

    def __init__(
        self,
        backend: ModelBackend,
        registry: ToolRegistry,
        dispatcher: Optional[ToolDispatcher] = None,
        limits: Optional[ProviderLimits] = None,
        base_prompt: str = SYSTEM_PROMPT,
    ):
        self.backend = backend
        self.registry = registry
        self.dispatcher = dispatcher or ToolDispatcher(registry)
        self.limits = limits or ProviderLimits()
        self.base_prompt = base_prompt

    async def ask(
        self,
        question: str,
        history: Sequence[ConversationMessage] = (),
        user_config: Optional[UserConfig] = None,
    ) -> AskResult:
        """
        Answer *question* given prior *history*, using tools as the model requests them.

        Returns
        -------
        AskResult
            Final (scrubbed) text, the ordered tool-call trace and accumulated token usage.

        Raises
        ------
        ProviderError, or the backend SDK's own errors
            Backend faults are not caught here.
        """
        user_config = user_config or UserConfig()
        max_tool_calls = self.limits.max_tool_calls
        max_iterations = self.limits.max_iterations

        # Compose
        specs = self.registry.specs(user_config.disabled_tools)
        system_prompt = build_system_prompt(
            user_config.context, user_config.system_prompt_addition, base=self.base_prompt
        )
        transcript = self.backend.start(system_prompt, list(history), question, specs)
        allowed_names = {s.name for s in specs}

        trace: List[ToolCallLog] = []
        usage = Usage()
        executed = 0
        iteration = 0

        while iteration < max_iterations:
            iteration += 1
            # Request
            turn: ModelTurn = await self.backend.request(transcript)
            usage = Usage(
                input_tokens=usage.input_tokens + turn.usage.input_tokens,
                output_tokens=usage.output_tokens + turn.usage.output_tokens,
            )
            logger.debug(
                "Iteration %d: %d tool call(s), done=%s", iteration, len(turn.tool_calls), turn.done
            )

            # Decide
            if turn.done or not turn.tool_calls:
                text = scrub(turn.text).strip()
                return AskResult(response=text or EMPTY_RESPONSE, tool_calls=trace, usage=usage)

            # Budget-check + Execute
            results: List[ToolResult] = []
            for request in turn.tool_calls:
                if executed >= max_tool_calls:
                    logger.warning("Tool call limit reached (%d)", max_tool_calls)
                    return AskResult(
                        response=budget_note(max_tool_calls, scrub(turn.text).strip()),
                        tool_calls=trace,
                        usage=usage,
                    )
                executed += 1
                if request.name in allowed_names:
                    result = await self.dispatcher.execute(
                        request.id, request.name, request.input, user_config.tool_config
                    )
                else:
                    # disabled for this caller, or not registered at all
                    result = ToolResult(
                        tool_use_id=request.id,
                        content=f'Error: Unknown tool "{scrub(request.name)}"',
                        is_error=True,
                    )
                trace.append(
                    ToolCallLog(
                        name=request.name,
                        input=request.input,
                        output_preview=result.content[:OUTPUT_PREVIEW_CHARS],
                    )
                )
                results.append(result)
                logger.debug(
                    "Tool %s executed is_error=%s length=%d",
                    request.name,
                    result.is_error,
                    len(result.content),
                )

            # Loop
            self.backend.add_results(transcript, turn, results)

        logger.error("Max iterations reached in tool loop (%d)", max_iterations)
        return AskResult(response=MAX_ITERATIONS_RESPONSE, tool_calls=trace, usage=usage)
