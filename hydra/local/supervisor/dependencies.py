import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional
from hydra.local.errors import ConfigurationError
from hydra.local.supervisor.templating import resolve_value

if TYPE_CHECKING:
    from hydra.local.topology import Mode
    from .ports import ConfigurationSource

log = logging.getLogger(__name__)


def selected_mode(configuration: "ConfigurationSource", service_name: str) -> "Mode":
    """
    Finds the mode currently selected for a service.

    :param configuration: Topology plus selected mode names.
    :param service_name: The service to look up.
    :return: The selected Mode.
    :raises ConfigurationError: If the service or its selected mode is not declared.
    """
    service = next((s for s in configuration.topology if s.name == service_name), None)
    if service is None:
        raise ConfigurationError(f"Unknown service '{service_name}'.")
    mode_name = configuration.get_service_config(service_name)
    mode = next((m for m in service.modes if m.name == mode_name), None)
    if mode is None:
        raise ConfigurationError(f"Service '{service_name}' has no mode '{mode_name}'.")
    return mode


class DependencyResolver:
    """
    Turns `VARIABLE -> "service.setting"` references into concrete values, read
    from the referenced service's currently selected mode.
    """

    def __init__(self, configuration: "ConfigurationSource", environ: Optional[Mapping[str, str]] = None) -> None:
        self.configuration = configuration
        self.environ = environ

    def resolve(self, references: Optional[Mapping[str, str]]) -> Dict[str, Any]:
        """
        Resolves every reference of a dependency mapping.

        :param references: The `env` or `dotenv` mapping of a mode, or None.
        :return: A dict with the same keys and the resolved setting values.
        :raises ConfigurationError: If a reference points at a setting the selected mode lacks.
        """
        if not references:
            return {}
        return {name: self._resolve_reference(reference) for name, reference in references.items()}

    def _resolve_reference(self, reference: str) -> Any:
        service_name, _, setting = reference.partition(".")
        if not service_name or not setting:
            raise ConfigurationError(f"Malformed dependency reference '{reference}', expected 'service.setting'.")

        mode = selected_mode(self.configuration, service_name)
        if setting not in mode.config:
            raise ConfigurationError(f"Missing configuration on {service_name}.{mode.name}.config.{setting}")

        value = resolve_value(mode.config[setting], self.environ)
        log.debug(f"Resolved dependency '{reference}' from mode '{mode.name}'.")
        return value
