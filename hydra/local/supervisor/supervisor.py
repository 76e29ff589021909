import asyncio
import logging
from hydra import settings
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Mapping, Optional
from hydra.local.supervisor import process_utils, shutdown
from hydra.local.supervisor.dependencies import DependencyResolver, selected_mode

if TYPE_CHECKING:
    from .ports import ConfigurationSource, LogHandler, ProcessTable, Signaller, SpawnedProcess, Spawner

log = logging.getLogger(__name__)


def _default_log_handler(service_name: str, line: str) -> None:
    logging.getLogger(f"proc.{service_name}").info(line)


@dataclass
class ProcessHandle:
    process: "SpawnedProcess"
    pid: int


class ProcessSupervisor:
    """
    Owns the running process of every service and drives their lifecycles.

    Each service is either idle (no handle) or running (one handle). `start`
    and `stop` for the same service are serialized by a per-service lock;
    operations on different services run concurrently.
    """

    def __init__(
        self,
        configuration: "ConfigurationSource",
        process_table: Optional["ProcessTable"] = None,
        signaller: Optional["Signaller"] = None,
        spawner: Optional["Spawner"] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        grace_period: Optional[float] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        """
        :param configuration: Topology and selected modes.
        :param process_table: Process table port, psutil by default.
        :param signaller: Signal port, psutil by default.
        :param spawner: Spawn port, asyncio subprocesses by default.
        :param sleep: Coroutine used for the grace period, `asyncio.sleep` by default.
        :param grace_period: Seconds between SIGINT and SIGKILL for leftover descendants.
        :param environ: Environment for templates and children; the live `os.environ` if None.
        """
        self.configuration = configuration
        self.process_table = process_table or process_utils.PsutilProcessTable()
        self.signaller = signaller or process_utils.PsutilSignaller()
        self.spawner = spawner or process_utils.AsyncioSpawner()
        self.sleep = sleep or asyncio.sleep
        self.grace_period = settings.GRACE_PERIOD_SECONDS if grace_period is None else grace_period
        self.environ = environ
        self.dependency_resolver = DependencyResolver(configuration, environ)

        self.running_procs: Dict[str, ProcessHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._output_tasks = set()
        self._log_handler: "LogHandler" = _default_log_handler

    def register_log_handler(self, log_handler: "LogHandler") -> None:
        """Installs the sink for service output and status lines, replacing any previous one."""
        self._log_handler = log_handler

    def emit(self, service_name: str, line: str) -> None:
        """Hands a line to the log sink. A failing sink never interrupts the caller."""
        try:
            self._log_handler(service_name, line)
        except Exception as e:
            log.error(f"Log handler failed for a line from '{service_name}': {e}", exc_info=True)

    def emit_status(self, service_name: str, message: str) -> None:
        self.emit(service_name, shutdown.format_status(message))

    def _lock_for(self, service_name: str) -> asyncio.Lock:
        if service_name not in self._locks:
            self._locks[service_name] = asyncio.Lock()
        return self._locks[service_name]

    #* --- Lifecycle ---
    async def start(self, service_name: str) -> None:
        """
        (Re)starts a service in its selected mode. Any running instance is
        terminated first; an "off" mode (no `run`) leaves the service idle.

        :param service_name: The service to start.
        :raises ConfigurationError: If a dependency reference cannot be resolved.
        :raises EnvironmentVariableError: If a template names an unset variable without default.
        :raises OSError: If the process cannot be spawned.
        """
        async with self._lock_for(service_name):
            await self._stop_unlocked(service_name)

            mode = selected_mode(self.configuration, service_name)
            if mode.run is None:
                log.debug(f"Service '{service_name}' is in mode '{mode.name}' which has nothing to run.")
                return

            launch = process_utils.get_launch_spec(self, mode)
            if launch.dotenv is not None:
                process_utils.write_dotenv(launch.location, launch.dotenv)

            log.info(f"Starting service '{service_name}' in mode '{mode.name}'...")
            try:
                process = await self.spawner.spawn(launch.command, shell=launch.shell, cwd=launch.location, env=launch.env)
            except Exception as e:
                log.error(f"Failed to start service '{service_name}': {e}")
                raise

            self.running_procs[service_name] = ProcessHandle(process=process, pid=process.pid)
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    task = asyncio.create_task(process_utils.forward_output(stream, service_name, self.emit))
                    self._output_tasks.add(task)
                    task.add_done_callback(self._output_tasks.discard)
            log.info(f"Service '{service_name}' started with PID: {process.pid}")

    async def stop(self, service_name: str) -> None:
        """Terminates a running service and its process tree; does nothing if it is idle."""
        async with self._lock_for(service_name):
            await self._stop_unlocked(service_name)

    async def _stop_unlocked(self, service_name: str) -> None:
        handle = self.running_procs.get(service_name)
        if handle is None:
            return
        log.info(f"Stopping service '{service_name}' (PID {handle.pid})...")
        try:
            await shutdown.graceful_shutdown_sequence(self, service_name, handle)
        finally:
            self.running_procs.pop(service_name, None)

    async def start_all(self) -> Dict[str, Optional[BaseException]]:
        """Starts every service concurrently. See `_for_each_service` for the result."""
        return await self._for_each_service(self.start, "start")

    async def stop_all(self) -> Dict[str, Optional[BaseException]]:
        """Stops every service concurrently. See `_for_each_service` for the result."""
        return await self._for_each_service(self.stop, "stop")

    async def _for_each_service(
        self, operation: Callable[[str], Awaitable[None]], verb: str
    ) -> Dict[str, Optional[BaseException]]:
        """
        Applies `operation` to all services in topology order, concurrently.
        One failure neither interrupts nor rolls back the others.

        :return: Service name -> the exception it raised, or None on success.
        """
        names = [service.name for service in self.configuration.topology]
        results = await asyncio.gather(*(operation(name) for name in names), return_exceptions=True)

        outcome: Dict[str, Optional[BaseException]] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                log.error(f"Failed to {verb} service '{name}': {result}")
                outcome[name] = result
            else:
                outcome[name] = None
        return outcome

    #* --- Status ---
    def is_running(self, service_name: str) -> bool:
        return service_name in self.running_procs

    def get_pid_info(self) -> Dict[str, int]:
        """Returns the primary PID of every service that currently holds a handle."""
        return {name: handle.pid for name, handle in self.running_procs.items()}
