"""Dispatches tool calls registered in a ``ToolRegistry`` and wraps errors."""

import asyncio
import inspect
import logging
from typing import (
    Any,
    Dict,
    Optional,
)

from hostwatch.core.schema import (
    CapabilityConfig,
    ToolResult,
)
from hostwatch.executors.shell import CommandTimeoutError
from hostwatch.security.commands import CommandRejectedError
from hostwatch.security.paths import AccessDeniedError
from hostwatch.security.scrub import scrub
from hostwatch.tools import (
    ToolExecutionError,
    ToolRegistry,
)

logger = logging.getLogger(__name__)

__all__ = ["ToolDispatcher", "ToolExecutionError"]

# Failures whose message is meant for the model as-is
_CLEAN_ERRORS = (ToolExecutionError, AccessDeniedError, CommandRejectedError, CommandTimeoutError)


class ToolDispatcher:
    """Single choke point between the agent loop and tool executors."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(
        self,
        tool_use_id: str,
        name: str,
        tool_input: Optional[Dict[str, Any]],
        config: CapabilityConfig,
    ) -> ToolResult:
        """
        Look up *name* in the registry and invoke it with *tool_input* and *config*.

        Parameters
        ----------
        tool_use_id:
            Id of the request, echoed back on the result.
        name:
            The registered (possibly namespaced) tool name.
        tool_input:
            Input map passed verbatim to the executor.  If *None*, an empty dict is assumed.
        config:
            Capability boundary for this request.

        Returns
        -------
        ToolResult
            Scrubbed content; ``is_error`` is set for unknown tools and executor failures.  This
            method does not raise (task cancellation still propagates).
        """
        if not isinstance(tool_input, dict):
            tool_input = {}

        definition = self.registry.get(name)
        if definition is None:
            logger.warning("Model requested unknown tool '%s'", name)
            return ToolResult(
                tool_use_id=tool_use_id, content=scrub(f'Error: Unknown tool "{name}"'), is_error=True
            )

        try:
            logger.debug("Executing tool '%s' with input=%s", name, scrub(repr(tool_input)))
            output = definition.execute(tool_input, config)
            if inspect.isawaitable(output):
                output = await output
        except asyncio.CancelledError:
            raise
        except _CLEAN_ERRORS as exc:
            logger.warning("Tool '%s' failed: %s", name, scrub(str(exc)))
            return ToolResult(tool_use_id=tool_use_id, content=scrub(f"Error: {exc}"), is_error=True)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unhandled error in tool '%s'", name)
            return ToolResult(
                tool_use_id=tool_use_id,
                content=scrub(f"Error executing {name}: {exc}"),
                is_error=True,
            )

        return ToolResult(tool_use_id=tool_use_id, content=scrub(output))
