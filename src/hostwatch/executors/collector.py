"""
Interface to the data-collection layer.

Collection of container, system, disk, network and fail2ban state lives outside this package; the
built-in tools only consume the already-structured records defined here.  A deployment plugs in a
concrete collector with ``COLLECTOR=package.module:attribute``.
"""

import importlib
import logging
from typing import (
    List,
    Optional,
    Protocol,
)

from pydantic import (
    BaseModel,
    Field,
)

from hostwatch.tools import ToolExecutionError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
class ContainerSummary(BaseModel):
    name: str
    image: str
    state: str
    status: str = ""
    ports: List[str] = Field(default_factory=list)


class ContainerMount(BaseModel):
    source: str
    destination: str
    mode: str = ""


class ContainerDetails(BaseModel):
    name: str
    image: str
    state: str
    restart_count: int = 0
    networks: List[str] = Field(default_factory=list)
    ports: List[str] = Field(default_factory=list)
    mounts: List[ContainerMount] = Field(default_factory=list)


class MemoryStats(BaseModel):
    total: float
    used: float
    available: float = 0.0
    percent_used: float


class SystemResources(BaseModel):
    memory: MemoryStats
    swap: MemoryStats
    load_average: List[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0])
    uptime: str = ""


class DiskMount(BaseModel):
    mount_point: str
    filesystem: str
    size: str
    used: str
    available: str
    percent_used: float


class DockerNetwork(BaseModel):
    name: str
    driver: str
    scope: str


class JailStatus(BaseModel):
    name: str
    currently_failed: int = 0
    total_failed: int = 0
    currently_banned: int = 0
    total_banned: int = 0
    banned_ips: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------
class DataCollector(Protocol):
    """Source of structured server state consumed by the built-in tools."""

    async def get_container_status(self) -> List[ContainerSummary]: ...

    async def get_container_details(self, name: str) -> ContainerDetails: ...

    async def get_container_logs(self, name: str, lines: int) -> str: ...

    async def get_system_resources(self) -> SystemResources: ...

    async def get_disk_usage(self) -> List[DiskMount]: ...

    async def get_network_list(self) -> List[DockerNetwork]: ...

    async def get_jail_status(self, jail: Optional[str] = None) -> List[JailStatus]: ...


class UnconfiguredCollector:
    """Placeholder used when no collector is configured; every call is a clean tool error."""

    def __getattr__(self, name: str):
        if not name.startswith("get_"):
            raise AttributeError(name)

        async def _unavailable(*_args, **_kwargs):
            raise ToolExecutionError("No data collector is configured on this server")

        return _unavailable


def load_collector(target: Optional[str]) -> DataCollector:
    """
    Import a collector from a ``module:attribute`` string.

    If the attribute is a class it is instantiated without arguments.  An empty *target* gives an
    :class:`UnconfiguredCollector`.
    """
    if not target:
        logger.warning("No COLLECTOR configured; server data tools will report errors")
        return UnconfiguredCollector()  # type: ignore[return-value]

    module_name, _, attr = target.partition(":")
    if not attr:
        raise ValueError(f"COLLECTOR must look like 'module:attribute', got {target!r}")
    obj = getattr(importlib.import_module(module_name), attr)
    collector = obj() if isinstance(obj, type) else obj
    logger.info("Using data collector %s", target)
    return collector
