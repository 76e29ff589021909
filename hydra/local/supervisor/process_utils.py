import os
import sys
import signal
import psutil
import asyncio
import logging
import subprocess
from pathlib import Path
from hydra import settings
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, NamedTuple, Optional
from hydra.local.errors import ConfigurationError
from hydra.local.supervisor.templating import resolve_value

if TYPE_CHECKING:
    from hydra.local.topology import Mode
    from .ports import LogHandler
    from .supervisor import ProcessSupervisor

log = logging.getLogger(__name__)

_RECORD_ATTRS = ["pid", "ppid", "name", "cmdline"]


#* --- Process Table ---
class ProcessRecord(NamedTuple):
    pid: int
    parent_pid: int
    command: str


def _to_record(info: Dict[str, Any]) -> ProcessRecord:
    """Builds a record from a psutil info dict; zombies and protected processes fall back to the name."""
    command = " ".join(info.get("cmdline") or []) or (info.get("name") or "")
    return ProcessRecord(pid=info["pid"], parent_pid=info.get("ppid") or 0, command=command)


def snapshot_process_table(filter_pids: Optional[Iterable[int]] = None) -> List[ProcessRecord]:
    """
    Takes a snapshot of the OS process table.

    :param filter_pids: If given, only these pids are looked up.
    :return: One record per live process; processes that vanish mid-scan are skipped.
    """
    if filter_pids is None:
        return [_to_record(proc.info) for proc in psutil.process_iter(_RECORD_ATTRS, ad_value=None)]

    records = []
    for pid in filter_pids:
        try:
            records.append(_to_record(psutil.Process(int(pid)).as_dict(_RECORD_ATTRS, ad_value=None)))
        except psutil.NoSuchProcess:
            continue
    return records


def descendants_of(root_pid: Any, table: Iterable[ProcessRecord]) -> List[ProcessRecord]:
    """
    Collects a process and everything transitively spawned below it.

    Pids are compared as strings. The result is in pre-order (a parent always
    precedes its subtree, siblings keep table order) and each process appears
    once, even if the table contains a parent cycle.

    :param root_pid: The pid whose tree is wanted.
    :param table: A process table snapshot.
    :return: The root followed by its descendants, or [] if the root is not in the table.
    """
    table = list(table)
    root = next((record for record in table if str(record.pid) == str(root_pid)), None)
    if root is None:
        return []

    children: Dict[str, List[ProcessRecord]] = {}
    for record in table:
        children.setdefault(str(record.parent_pid), []).append(record)

    tree: List[ProcessRecord] = []
    seen = set()
    pending = [root]
    while pending:
        record = pending.pop()
        key = str(record.pid)
        if key in seen:
            continue
        seen.add(key)
        tree.append(record)
        pending.extend(reversed(children.get(key, [])))
    return tree


class PsutilProcessTable:
    """Process table port backed by psutil; scans run in a worker thread."""

    async def snapshot(self, filter_pids: Optional[Iterable[int]] = None) -> List[ProcessRecord]:
        pids = list(filter_pids) if filter_pids is not None else None
        return await asyncio.to_thread(snapshot_process_table, pids)


#* --- Signals ---
class PsutilSignaller:
    """Signal port backed by psutil."""

    async def interrupt(self, pid: int) -> bool:
        try:
            psutil.Process(pid).send_signal(signal.SIGINT)
        except psutil.NoSuchProcess:
            log.debug(f"Process {pid} no longer exists, skipping interrupt.")
            return False
        return True

    async def kill(self, pid: int) -> bool:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            log.debug(f"Process {pid} no longer exists, skipping kill.")
            return False
        return True


#* --- Process Creation ---
class LaunchSpec(NamedTuple):
    command: str
    location: str
    shell: str
    env: Dict[str, str]
    dotenv: Optional[Dict[str, Any]]


def to_env_string(value: Any) -> str:
    """Renders a resolved config value the way it should appear in an environment."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def get_launch_spec(manager: "ProcessSupervisor", mode: "Mode") -> LaunchSpec:
    """
    Resolves everything needed to launch a mode, without side effects.

    :param manager: The supervisor, for its dependency resolver and environment.
    :param mode: A mode with a `run` entry.
    :return: The resolved command, working directory, shell, environment and dotenv values.
    """
    run = mode.run
    if run is None:
        raise ConfigurationError(f"Mode '{mode.name}' has nothing to run.")
    dependencies = mode.dependencies

    base_env = os.environ if manager.environ is None else manager.environ
    env = dict(base_env)
    dotenv = None
    if dependencies is not None:
        env.update({k: to_env_string(v) for k, v in manager.dependency_resolver.resolve(dependencies.env).items()})
        if dependencies.dotenv is not None:
            dotenv = manager.dependency_resolver.resolve(dependencies.dotenv)

    return LaunchSpec(
        command=resolve_value(run.command, manager.environ),
        location=resolve_value(run.location, manager.environ),
        shell=resolve_value(run.shell, manager.environ) if run.shell is not None else settings.DEFAULT_SHELL,
        env=env,
        dotenv=dotenv,
    )


def write_dotenv(location: str, values: Mapping[str, Any]) -> Path:
    """Writes `KEY=VALUE` lines, newline-joined without a trailing newline, to `<location>/.env`."""
    path = Path(location) / settings.DOTENV_FILENAME
    path.write_text("\n".join(f"{key}={to_env_string(value)}" for key, value in values.items()), encoding="utf-8")
    log.debug(f"Wrote {len(values)} dependency values to '{path}'.")
    return path


def _get_spawn_flags() -> Dict[str, Any]:
    """Returns platform-specific keyword arguments for subprocess creation."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # Keep terminal Ctrl-C away from services; the supervisor stops them itself.
    return {"start_new_session": True}


class AsyncioSpawner:
    """Spawner port: runs `shell -c command` as an asyncio subprocess with piped output."""

    async def spawn(self, command: str, *, shell: str, cwd: str, env: Mapping[str, str]) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            shell, "-c", command,
            cwd=cwd,
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            limit=settings.OUTPUT_LINE_LIMIT,
            **_get_spawn_flags(),
        )


#* --- Process Output ---
async def forward_output(stream: asyncio.StreamReader, service_name: str, line_handler: "LogHandler") -> None:
    """
    Reads a process stream line by line and hands each line, right-trimmed, to
    the log handler. A line longer than the stream limit is forwarded in
    limit-sized pieces; an unterminated last line is forwarded at EOF.
    """
    split_line = False
    while True:
        try:
            line_bytes = await stream.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            if e.partial:
                _forward_line(e.partial, service_name, line_handler)
            return
        except asyncio.LimitOverrunError as e:
            _forward_line(await stream.readexactly(e.consumed), service_name, line_handler)
            split_line = True
            continue
        except Exception as e:
            log.debug(f"Output reader for {service_name} exited: {e}")
            return

        # Newline closing a line already forwarded in pieces.
        if split_line and line_bytes == b"\n":
            split_line = False
            continue
        split_line = False
        _forward_line(line_bytes, service_name, line_handler)


def _forward_line(line_bytes: bytes, service_name: str, line_handler: "LogHandler") -> None:
    line = line_bytes.decode("utf-8", errors="replace").rstrip()
    try:
        line_handler(service_name, line)
    except Exception as e:
        log.error(f"Log handler failed for a line from '{service_name}': {e}", exc_info=True)
