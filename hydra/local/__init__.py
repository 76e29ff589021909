"""
Local package for Hydra.

This package holds the topology model, the error types and the supervisor
that runs the configured services on this machine.
"""

from .errors import ConfigurationError, EnvironmentVariableError, HydraError
from .topology import Configuration

__all__ = ["Configuration", "ConfigurationError", "EnvironmentVariableError", "HydraError"]
