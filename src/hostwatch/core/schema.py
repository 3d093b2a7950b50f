"""
Schema definitions for provider <-> agent loop <-> tool messages.

These data models serve as the contract between the model backends, the orchestration loop, the
tool dispatcher and individual tools.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

import os
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


class ToolSpec(BaseModel):
    """Machine-readable description of a tool, as presented to the model."""

    name: str = Field(..., description="Tool name (plugin tools are exposed as 'plugin:tool')")
    description: str = Field(..., description="What the tool does")
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON-Schema object describing the tool input",
    )


class CapabilityConfig(BaseModel):
    """Caller-supplied boundary every tool executor must respect."""

    model_config = ConfigDict(frozen=True)

    allowed_directories: tuple[str, ...] = ()
    max_file_size_kb: int = Field(100, gt=0)
    max_log_lines: int = Field(50, gt=0)

    @field_validator("allowed_directories", mode="before")
    @classmethod
    def _normalise_dirs(cls, value: Any) -> tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        seen: list[str] = []
        for entry in value:
            entry = str(entry).strip()
            if not entry:
                continue
            resolved = os.path.abspath(entry)
            if resolved not in seen:
                seen.append(resolved)
        return tuple(seen)


class ToolCallRequest(BaseModel):
    """A tool invocation the model asked for."""

    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of a dispatched tool call.  *content* is always scrubbed."""

    tool_use_id: str
    content: str
    is_error: bool = False


class ConversationMessage(BaseModel):
    """Simple message for conversation history."""

    role: Literal["user", "assistant"]
    content: str


class ToolCallLog(BaseModel):
    """One entry in the execution trace of an agent turn."""

    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    output_preview: str = ""


class Usage(BaseModel):
    """Token counters (zero when the backend does not report them)."""

    input_tokens: int = 0
    output_tokens: int = 0


class AskResult(BaseModel):
    """Final answer of an agent turn plus its execution trace."""

    response: str
    tool_calls: List[ToolCallLog] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)


class UserConfig(BaseModel):
    """Per-request configuration handed to the agent loop."""

    disabled_tools: List[str] = Field(default_factory=list)
    tool_config: CapabilityConfig = Field(default_factory=CapabilityConfig)
    system_prompt_addition: Optional[str] = None
    context: Optional[str] = None


class ProviderLimits(BaseModel):
    """Per-turn budgets enforced by the agent loop."""

    max_tool_calls: int = Field(40, gt=0)
    max_iterations: int = Field(50, gt=0)
