# tests/conftest.py
import asyncio
from typing import Callable, Dict, Iterable, List, Optional, Set

import pytest

from hydra.local.topology import Configuration, parse_topology
from hydra.local.supervisor import ProcessRecord, ProcessSupervisor


# ---- fake OS: a process table shared by every fake port ----
class FakeProcess:
    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.returncode: Optional[int] = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._exited = asyncio.Event()

    def write(self, text: str, stream: str = "stdout") -> None:
        getattr(self, stream).feed_data(text.encode("utf-8"))

    def exit(self, code: int) -> None:
        if self.returncode is not None:
            return
        self.returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


class FakeWorld:
    def __init__(self) -> None:
        self.records: Dict[int, ProcessRecord] = {}
        self.processes: Dict[int, FakeProcess] = {}
        self.events: List[tuple] = []
        self.ignores_interrupt: Set[int] = set()
        self.next_pid = 100

    def add(self, pid: int, parent_pid: int, command: str) -> ProcessRecord:
        record = ProcessRecord(pid=pid, parent_pid=parent_pid, command=command)
        self.records[pid] = record
        return record

    def remove(self, pid: int, code: int = -2) -> None:
        self.records.pop(pid, None)
        if pid in self.processes:
            self.processes[pid].exit(code)

    def signals(self, kind: Optional[str] = None) -> List[tuple]:
        names = (kind,) if kind else ("interrupt", "kill")
        return [event for event in self.events if event[0] in names]


class FakeProcessTable:
    def __init__(self, world: FakeWorld) -> None:
        self.world = world
        self.fail = False

    async def snapshot(self, filter_pids: Optional[Iterable[int]] = None) -> List[ProcessRecord]:
        if self.fail:
            raise PermissionError("process table unavailable")
        records = list(self.world.records.values())
        if filter_pids is None:
            return records
        wanted = {str(pid) for pid in filter_pids}
        return [r for r in records if str(r.pid) in wanted]


class FakeSignaller:
    def __init__(self, world: FakeWorld) -> None:
        self.world = world

    async def interrupt(self, pid: int) -> bool:
        self.world.events.append(("interrupt", pid))
        if pid not in self.world.records:
            return False
        if pid not in self.world.ignores_interrupt:
            self.world.remove(pid, code=-2)
        return True

    async def kill(self, pid: int) -> bool:
        self.world.events.append(("kill", pid))
        if pid not in self.world.records:
            return False
        self.world.remove(pid, code=-9)
        return True


class FakeSpawner:
    def __init__(self, world: FakeWorld) -> None:
        self.world = world
        self.calls: List[dict] = []
        self.error: Optional[Exception] = None
        self.on_spawn: Optional[Callable[[str], None]] = None

    async def spawn(self, command: str, *, shell: str, cwd: str, env) -> FakeProcess:
        self.world.events.append(("spawn", command))
        if self.on_spawn is not None:
            self.on_spawn(cwd)
        if self.error is not None:
            raise self.error
        self.calls.append({"command": command, "shell": shell, "cwd": cwd, "env": dict(env)})
        pid = self.world.next_pid
        self.world.next_pid += 100
        process = FakeProcess(pid)
        self.world.processes[pid] = process
        self.world.add(pid, 1, f"{shell} -c {command}")
        return process


class FakeSleep:
    def __init__(self, world: FakeWorld) -> None:
        self.world = world
        self.hook: Optional[Callable[[], None]] = None

    async def __call__(self, seconds: float) -> None:
        self.world.events.append(("sleep", seconds))
        await asyncio.sleep(0)
        if self.hook is not None:
            self.hook()


class Harness:
    """Supervisor wired to fakes, with a recording log sink."""

    def __init__(self, topology_data: list, environ: Optional[Dict[str, str]] = None) -> None:
        self.world = FakeWorld()
        self.table = FakeProcessTable(self.world)
        self.signaller = FakeSignaller(self.world)
        self.spawner = FakeSpawner(self.world)
        self.sleep = FakeSleep(self.world)
        self.configuration = Configuration(parse_topology(topology_data))
        self.lines: List[tuple] = []
        self.supervisor = ProcessSupervisor(
            self.configuration,
            process_table=self.table,
            signaller=self.signaller,
            spawner=self.spawner,
            sleep=self.sleep,
            grace_period=1,
            environ=environ if environ is not None else {"PATH": "/usr/bin"},
        )
        self.supervisor.register_log_handler(lambda service, line: self.lines.append((service, line)))

    def process(self, service_name: str) -> FakeProcess:
        return self.world.processes[self.supervisor.running_procs[service_name].pid]


@pytest.fixture
def loop():
    """Local event loop per test (no pytest-asyncio needed)."""
    loop = asyncio.new_event_loop()
    try:
        yield loop
    finally:
        pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


@pytest.fixture
def make_harness():
    return Harness
