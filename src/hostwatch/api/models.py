"""
Pydantic models for hostwatch API requests and responses.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from hostwatch.core.schema import ConversationMessage


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class AskRequest(BaseModel):
    """Incoming question for the agent."""

    question: str = Field(..., min_length=1, description="What the operator wants to know")
    history: List[ConversationMessage] = Field(
        default_factory=list, description="Earlier turns of the conversation, oldest first"
    )
    disabled_tools: List[str] = Field(default_factory=list, description="Tools to hide from the model")


class ToolCallRequestBody(BaseModel):
    """Direct tool invocation, for diagnostics."""

    input: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class PluginInfo(BaseModel):
    name: str
    version: str
    description: Optional[str] = None
    commands: List[str] = Field(default_factory=list)
