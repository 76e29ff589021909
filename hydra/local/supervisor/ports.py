"""
Capability interfaces the supervisor depends on.

The supervisor never touches psutil or asyncio subprocesses directly; it talks
to these small protocols. `process_utils` provides the real implementations,
tests provide fakes.
"""
import asyncio
from typing import TYPE_CHECKING, Callable, Iterable, List, Mapping, Optional, Protocol

if TYPE_CHECKING:
    from hydra.local.topology import ServiceDefinition
    from .process_utils import ProcessRecord

# (service_name, line) -> None
LogHandler = Callable[[str, str], None]


class ConfigurationSource(Protocol):
    """Read access to the topology and the currently selected modes."""

    @property
    def topology(self) -> List["ServiceDefinition"]: ...

    def get_service_config(self, service_name: str) -> str: ...


class SpawnedProcess(Protocol):
    """The subset of `asyncio.subprocess.Process` the supervisor relies on."""
    pid: int
    returncode: Optional[int]
    stdout: Optional[asyncio.StreamReader]
    stderr: Optional[asyncio.StreamReader]

    async def wait(self) -> int: ...


class Spawner(Protocol):
    async def spawn(self, command: str, *, shell: str, cwd: str, env: Mapping[str, str]) -> SpawnedProcess: ...


class ProcessTable(Protocol):
    async def snapshot(self, filter_pids: Optional[Iterable[int]] = None) -> List["ProcessRecord"]: ...


class Signaller(Protocol):
    """
    Delivers signals to arbitrary pids.

    Both methods return False when the process no longer exists and True once
    the signal was sent; any other failure is raised.
    """

    async def interrupt(self, pid: int) -> bool: ...

    async def kill(self, pid: int) -> bool: ...
