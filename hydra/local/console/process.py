import logging
from typing import Dict, List, Optional
from hydra.local.topology import Configuration
from hydra.local.supervisor import ProcessSupervisor
from hydra.local.console.handler import (
    check_configuration, display_modes, display_status, handle_mode_command, print_help, toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def _report(outcome: Dict[str, Optional[BaseException]], verb: str) -> None:
    failed = {name: error for name, error in outcome.items() if error is not None}
    for name, error in failed.items():
        print(f"  {name}: failed to {verb} - {error}")
    if not failed:
        log.debug(f"All services processed by '{verb}'.")


async def _apply(supervisor: ProcessSupervisor, verb: str, args: List[str]) -> None:
    """Runs start/stop for one named service, or for all of them when no name is given."""
    if not args:
        operation = supervisor.start_all if verb == "start" else supervisor.stop_all
        _report(await operation(), verb)
        return

    service_name = args[0]
    operation = supervisor.start if verb == "start" else supervisor.stop
    try:
        await operation(service_name)
    except Exception as e:
        log.error(f"Failed to {verb} service '{service_name}': {e}")
        print(f"  {service_name}: failed to {verb} - {e}")


async def execute_command(supervisor: ProcessSupervisor, configuration: Configuration, command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param supervisor: The ProcessSupervisor running the services.
    :param configuration: The topology and selected modes.
    :param command: The main command string (e.g., 'start', 'mode').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "status": lambda: display_status(supervisor, configuration),
        "modes": lambda: display_modes(configuration, args),
        "mode": lambda: handle_mode_command(configuration, args),
        "check": lambda: check_configuration(supervisor, configuration),
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command in command_map:
        command_map[command]()
    elif command in ("start", "stop"):
        await _apply(supervisor, command, args)
    elif command == "restart":
        log.info("Stopping services...")
        await _apply(supervisor, "stop", args)
        log.info("Starting services...")
        await _apply(supervisor, "start", args)
    elif command in ("exit", "quit"):
        return True
    else:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")

    return False
