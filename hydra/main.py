import sys
import asyncio
import logging
import threading
import setproctitle

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import hydra.local.console as console
from hydra import settings
from typing import List, Optional
from hydra.log.setup import setup_logging
from hydra.local import Configuration, ConfigurationError
from hydra.local.supervisor import ProcessSupervisor


def _start_input_thread(loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[Optional[str]]", ready: threading.Event) -> None:
    """
    Reads console input on a daemon thread so the event loop keeps serving
    process output while waiting for the user. `None` on the queue means EOF.
    """
    def _reader() -> None:
        while True:
            ready.wait()
            ready.clear()
            try:
                line: Optional[str] = input("> ")
            except (EOFError, KeyboardInterrupt):
                line = None
            try:
                loop.call_soon_threadsafe(queue.put_nowait, line)
            except RuntimeError:
                return  # Loop already closed.
            if line is None:
                return

    threading.Thread(target=_reader, daemon=True, name="ConsoleInputThread").start()


async def run_console(supervisor: ProcessSupervisor, configuration: Configuration) -> None:
    """Interactive mode: executes commands until 'exit', EOF or Ctrl-C."""
    print("--- Hydra Service Console ---")
    print("Type 'help' for a list of commands.")
    queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
    ready = threading.Event()
    _start_input_thread(asyncio.get_running_loop(), queue, ready)

    while True:
        ready.set()
        command_line_str = await queue.get()
        if command_line_str is None:
            break
        command_line = command_line_str.strip().split()
        if not command_line:
            continue

        command, args = command_line[0].lower(), command_line[1:]
        log.debug(f"Received command: {command}, args: {args}")
        try:
            if await console.execute_command(supervisor, configuration, command, args):
                break
        except Exception as e:
            log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)


async def run_once(supervisor: ProcessSupervisor, configuration: Configuration, command: str, args: List[str]) -> None:
    """Non-interactive mode: runs one command, then keeps services in the foreground until Ctrl-C."""
    await console.execute_command(supervisor, configuration, command, args)
    if supervisor.get_pid_info():
        log.info("Services running. Press Ctrl-C to stop them.")
        await asyncio.Event().wait()


async def _supervise(supervisor: ProcessSupervisor, configuration: Configuration, argv: List[str]) -> None:
    try:
        if argv:
            await run_once(supervisor, configuration, argv[0].lower(), argv[1:])
        else:
            await run_console(supervisor, configuration)
    finally:
        if supervisor.get_pid_info():
            log.info("Stopping all services before exit...")
            await supervisor.stop_all()


def main() -> None:
    """The main entry point for the console application."""
    setproctitle.setproctitle(settings.SUPERVISOR_PROC_TITLE)

    argv = sys.argv[1:]
    verbose = "--verbose" in argv
    if verbose:
        argv.remove("--verbose")
        settings.VERBOSE_LOGGING = True
    setup_logging(logging.DEBUG if verbose else logging.INFO)

    try:
        configuration = Configuration.from_file(settings.TOPOLOGY_PATH)
    except ConfigurationError as e:
        log.critical(f"Cannot load topology: {e}")
        sys.exit(1)

    supervisor = ProcessSupervisor(configuration)
    supervisor.register_log_handler(console.log_service_line)

    try:
        asyncio.run(_supervise(supervisor, configuration, argv))
    except KeyboardInterrupt:
        log.warning("Exiting console due to KeyboardInterrupt.")


if __name__ == "__main__":
    main()
    print("Exiting Hydra. See you next time!")
