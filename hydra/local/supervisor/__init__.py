"""
The Supervisor package.
Manages the lifecycle of the services declared in the topology.

This package contains the central ProcessSupervisor class and its helper
modules, which together resolve each service's selected mode into a command,
spawn it, and tear down its whole process tree when it is stopped.
"""
from .supervisor import ProcessHandle, ProcessSupervisor
from .dependencies import DependencyResolver
from .templating import resolve_value
from .process_utils import ProcessRecord, descendants_of, snapshot_process_table

__all__ = [
    'ProcessSupervisor', 'ProcessHandle', 'DependencyResolver', 'resolve_value',
    'ProcessRecord', 'descendants_of', 'snapshot_process_table',
]
