import logging
from typing import List
from hydra import settings
from hydra.local.errors import HydraError
from hydra.local.topology import Configuration
from hydra.local.supervisor import ProcessSupervisor, process_utils
from hydra.local.supervisor.dependencies import selected_mode

log = logging.getLogger(__name__)


def log_service_line(service_name: str, line: str) -> None:
    """Log sink registered with the supervisor: one line of service output or status."""
    logging.getLogger(f"proc.{service_name}").info(f"[{service_name}] {line}")


def display_status(supervisor: ProcessSupervisor, configuration: Configuration) -> None:
    """Shows every service with its selected mode and whether it is running."""
    width = max((len(s.name) for s in configuration.topology), default=0)
    pids = supervisor.get_pid_info()

    print("\n--- Service Status ---")
    for service in configuration.topology:
        mode = configuration.get_service_config(service.name)
        handle = supervisor.running_procs.get(service.name)
        if handle is None:
            state = "IDLE"
        elif handle.process.returncode is not None:
            state = f"EXITED (code {handle.process.returncode})"
        else:
            state = f"RUNNING | PID {pids[service.name]}"
        print(f"  - {service.name:<{width}} : mode {mode:<12} | {state}")
    print("-" * 22 + "\n")


def display_modes(configuration: Configuration, args: List[str]) -> None:
    """Lists the modes of one service (or all of them), marking the selected one."""
    try:
        services = [configuration.get_service(args[0])] if args else configuration.topology
    except HydraError as e:
        print(f"Error: {e}")
        return

    for service in services:
        current = configuration.get_service_config(service.name)
        names = [f"[{m.name}]" if m.name == current else m.name for m in service.modes]
        print(f"  {service.name}: {' '.join(names)}")


def handle_mode_command(configuration: Configuration, args: List[str]) -> None:
    """
    Handles 'mode <service> <name|next|prev>'. The change applies on the next start.

    :param configuration: The selected-mode configuration to modify.
    :param args: The arguments following the 'mode' command.
    """
    if len(args) != 2:
        print("Usage: mode <service> <mode-name|next|prev>")
        return

    service_name, target = args
    try:
        if target == "next":
            new_mode = configuration.cycle_mode(service_name, 1)
        elif target == "prev":
            new_mode = configuration.cycle_mode(service_name, -1)
        else:
            configuration.set_service_config(service_name, target)
            new_mode = target
    except HydraError as e:
        print(f"Error: {e}")
        return
    print(f"Service '{service_name}' will run in mode '{new_mode}'. Use 'restart {service_name}' to apply.")


def check_configuration(supervisor: ProcessSupervisor, configuration: Configuration) -> None:
    """Resolves every service's selected mode without starting anything and reports problems."""
    print("\n--- Resolved Commands ---")
    problems = 0
    for service in configuration.topology:
        try:
            mode = selected_mode(configuration, service.name)
            if mode.run is None:
                print(f"  {service.name} ({mode.name}): off")
                continue
            launch = process_utils.get_launch_spec(supervisor, mode)
        except HydraError as e:
            problems += 1
            print(f"  {service.name}: ERROR - {e}")
            continue
        print(f"  {service.name} ({mode.name}): {launch.shell} -c {launch.command!r} in {launch.location}")
        if launch.dotenv:
            print(f"      writes {settings.DOTENV_FILENAME}: {', '.join(sorted(launch.dotenv))}")
    print(f"{problems} problem(s) found.\n")


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    settings.VERBOSE_LOGGING = not settings.VERBOSE_LOGGING
    new_level = logging.DEBUG if settings.VERBOSE_LOGGING else logging.INFO

    # Reconfigure the console handler's level directly
    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if settings.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
    else:
        print("Could not find console handler to modify level.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  start [service]            - Start all services, or one.")
    print("  stop [service]             - Stop all services, or one, with their child processes.")
    print("  restart [service]          - Stop and then start again.")
    print("  status                     - Show the selected mode and state of every service.")
    print("  modes [service]            - List available modes; the selected one is in brackets.")
    print("  mode <service> <name>      - Select a mode ('next'/'prev' cycle through them).")
    print("  check                      - Resolve all commands without starting anything.")
    print("  verbose                    - Toggle detailed DEBUG log output in the console.")
    print("  exit                       - Stop all services and leave the console.")
    print()
