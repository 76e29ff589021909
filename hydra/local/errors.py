"""
Exception hierarchy for Hydra.

Everything raised on purpose by the supervisor derives from :class:`HydraError`,
so the console can report configuration mistakes without hiding real bugs.
"""


class HydraError(Exception):
    """Base exception for all Hydra errors."""


class ConfigurationError(HydraError):
    """The topology or a dependency reference does not describe a usable setup."""


class EnvironmentVariableError(HydraError):
    """A template placeholder names an unset variable and carries no default."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing env variable: {name}")
        self.name = name
