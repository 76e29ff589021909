import asyncio
import logging
from hydra import settings
from typing import TYPE_CHECKING, List
from hydra.local.supervisor.process_utils import ProcessRecord, descendants_of

if TYPE_CHECKING:
    from .supervisor import ProcessHandle, ProcessSupervisor

log = logging.getLogger(__name__)


async def identify_processes_to_stop(manager: "ProcessSupervisor", pid: int) -> List[ProcessRecord]:
    """
    Captures the process tree rooted at `pid` as it exists right now.

    :param manager: The ProcessSupervisor instance.
    :param pid: The primary pid of a service.
    :return: The primary followed by its descendants; empty if it already exited or the scan failed.
    """
    try:
        table = await manager.process_table.snapshot()
    except Exception as e:
        log.warning(f"Could not read the process table, descendants of PID {pid} will not be reaped: {e}")
        return []
    return descendants_of(pid, table)


async def _is_still_running(manager: "ProcessSupervisor", record: ProcessRecord) -> bool:
    """True if `record.pid` is alive and still runs the same command (guards against pid reuse)."""
    live = await manager.process_table.snapshot([record.pid])
    return any(str(p.pid) == str(record.pid) and p.command == record.command for p in live)


async def reap_descendant(manager: "ProcessSupervisor", service_name: str, record: ProcessRecord) -> None:
    """
    Interrupts a leftover descendant, then force-kills it if it outlives the grace period.

    :param manager: The ProcessSupervisor instance.
    :param service_name: The service the process belonged to, for log lines.
    :param record: The descendant as captured before termination began.
    """
    if not await _is_still_running(manager, record):
        return
    await manager.signaller.interrupt(record.pid)

    await manager.sleep(manager.grace_period)

    if not await _is_still_running(manager, record):
        return
    if await manager.signaller.kill(record.pid):
        manager.emit_status(service_name, f"Reaped rogue process: [{record.pid}] {record.command}")


async def _stop_primary(manager: "ProcessSupervisor", handle: "ProcessHandle") -> None:
    """
    Sends SIGINT to the primary process and waits for it to exit. A shell
    running a compound command ignores SIGINT while its foreground child runs,
    so a primary still alive after the grace period is killed.
    """
    try:
        await manager.signaller.interrupt(handle.pid)
    except Exception as e:
        log.warning(f"Failed to interrupt primary process {handle.pid}: {e}")

    waiter = asyncio.ensure_future(handle.process.wait())
    timer = asyncio.ensure_future(manager.sleep(manager.grace_period))
    try:
        await asyncio.wait({waiter, timer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        timer.cancel()

    if not waiter.done():
        log.warning(f"Primary process {handle.pid} ignored SIGINT, killing it.")
        try:
            await manager.signaller.kill(handle.pid)
        except Exception as e:
            log.warning(f"Failed to kill primary process {handle.pid}: {e}")
    await waiter


async def graceful_shutdown_sequence(manager: "ProcessSupervisor", service_name: str, handle: "ProcessHandle") -> None:
    """
    Runs the full termination protocol for one service: capture the tree,
    stop the primary, then reap every captured descendant concurrently.
    Failures on individual descendants are logged and never abort the sequence.

    :param manager: The ProcessSupervisor instance.
    :param service_name: The service being stopped.
    :param handle: Its live process handle.
    """
    manager.emit_status(service_name, "Terminating")

    tree = await identify_processes_to_stop(manager, handle.pid)
    descendants = [record for record in tree if str(record.pid) != str(handle.pid)]
    log.debug(f"Captured {len(descendants)} descendants of '{service_name}' (PID {handle.pid}).")

    await _stop_primary(manager, handle)

    results = await asyncio.gather(
        *(reap_descendant(manager, service_name, record) for record in descendants),
        return_exceptions=True,
    )
    for record, result in zip(descendants, results):
        if isinstance(result, Exception):
            log.warning(f"Could not reap process {record.pid} ({record.command}) of '{service_name}': {result}")

    manager.emit_status(service_name, "Terminated")


def format_status(message: str) -> str:
    return f"{settings.LOG_PREFIX}{message}"
