"""
This module initializes the console package, exposing command execution,
the service log sink, verbose toggling and help output.
"""

from .process import execute_command
from .handler import log_service_line, toggle_verbose_logging, print_help

__all__ = ["execute_command", "log_service_line", "toggle_verbose_logging", "print_help"]
