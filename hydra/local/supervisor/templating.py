import os
import re
from typing import Any, Mapping, Optional
from hydra.local.errors import EnvironmentVariableError

ENV_VARIABLE_PLACEHOLDER = re.compile(r"\{([0-9a-zA-Z_]+)(?:=([^}]*))?\}")


def resolve_value(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """
    Substitutes `{NAME}` and `{NAME=default}` placeholders from the environment.

    Non-string values are returned untouched. A variable set to the empty
    string counts as unset when the placeholder carries a default.

    :param value: The template (or any config value).
    :param environ: The variables to read; defaults to `os.environ`.
    :return: The resolved value.
    :raises EnvironmentVariableError: If a placeholder has neither a variable nor a default.
    """
    if not isinstance(value, str):
        return value
    env = os.environ if environ is None else environ

    def _substitute(match: "re.Match[str]") -> str:
        name, default = match.group(1), match.group(2)
        current = env.get(name)
        if default is None:
            if current is None:
                raise EnvironmentVariableError(name)
            return current
        return current or default

    return ENV_VARIABLE_PLACEHOLDER.sub(_substitute, value)
