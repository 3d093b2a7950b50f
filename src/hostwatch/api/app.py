"""
HTTP API for hostwatch.

It exposes the following endpoints:
- **GET /health**          - liveness check.
- **GET /tools**           - tool specs presented to the model (``?disabled=a&disabled=b``).
- **POST /ask**            - one agent turn: {"question": "...", "history": [...]}.
- **POST /tools/{name}**   - run a single tool directly, for diagnostics.
- **GET /plugins**         - loaded plugins and their commands.

Plugins are loaded on startup and destroyed on shutdown.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import (
    Callable,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    Query,
    Request,
)

from hostwatch.api.models import (
    AskRequest,
    PluginInfo,
    ToolCallRequestBody,
)
from hostwatch.config import settings
from hostwatch.core.schema import (
    AskResult,
    ToolResult,
    ToolSpec,
)
from hostwatch.runtime import Hostwatch

logger = logging.getLogger(__name__)


def create_app(runtime_factory: Optional[Callable[[], Hostwatch]] = None) -> FastAPI:
    """
    Build the FastAPI application.

    *runtime_factory* is called once at startup; by default the runtime is built from settings.
    """
    factory = runtime_factory or (lambda: Hostwatch.from_settings(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = factory()
        loaded = await runtime.start()
        logger.info("Plugins loaded: %s", ", ".join(loaded) or "none")
        app.state.runtime = runtime
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(
        title="hostwatch API",
        version="0.1.0",
        description="Server monitoring assistant with read-only diagnostic tools",
        lifespan=lifespan,
    )

    def _runtime(request: Request) -> Hostwatch:
        return request.app.state.runtime

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok"}

    @app.get("/tools", response_model=List[ToolSpec], summary="List available tools")
    async def list_tools(request: Request, disabled: List[str] = Query(default=[])) -> List[ToolSpec]:
        return _runtime(request).get_tool_specs(disabled)

    @app.post("/ask", response_model=AskResult, summary="Ask the agent a question")
    async def ask(req: AskRequest, request: Request) -> AskResult:
        runtime = _runtime(request)
        user_config = runtime.user_config(disabled_tools=req.disabled_tools)
        return await runtime.ask(req.question, req.history, user_config)

    @app.post("/tools/{name}", response_model=ToolResult, summary="Run a single tool")
    async def run_tool(name: str, body: ToolCallRequestBody, request: Request) -> ToolResult:
        tool_use_id = body.id or f"api-{uuid.uuid4().hex[:12]}"
        return await _runtime(request).execute_tool(tool_use_id, name, body.input)

    @app.get("/plugins", response_model=List[PluginInfo], summary="List loaded plugins")
    async def list_plugins(request: Request) -> List[PluginInfo]:
        return [
            PluginInfo(name=h.name, version=h.version, description=h.description, commands=h.commands)
            for h in _runtime(request).plugin_help()
        ]

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the app.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path for library use
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting hostwatch API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    uvicorn.run(
        "hostwatch.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m hostwatch.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
