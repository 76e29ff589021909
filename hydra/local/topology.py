"""
Topology model and selected-mode configuration.

A topology is an ordered list of services, each with an ordered list of modes.
The Configuration object keeps track of which mode is currently selected for
every service; the supervisor only ever reads it through `topology`,
`get_service_config` and `get_selected_mode`.
"""
import json
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from hydra.local.errors import ConfigurationError

log = logging.getLogger(__name__)


#* --- Data Model ---
@dataclass(frozen=True)
class RunSpec:
    command: str
    location: str
    shell: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, where: str) -> "RunSpec":
        if not isinstance(data, dict):
            raise ConfigurationError(f"'run' of {where} must be a mapping.")
        for key in ("command", "location"):
            if not isinstance(data.get(key), str):
                raise ConfigurationError(f"'run.{key}' of {where} must be a string.")
        shell = data.get("shell")
        if shell is not None and not isinstance(shell, str):
            raise ConfigurationError(f"'run.shell' of {where} must be a string.")
        return cls(command=data["command"], location=data["location"], shell=shell)


@dataclass(frozen=True)
class DependencySpec:
    """Cross-service references, `VARIABLE -> "service.setting"`."""
    env: Optional[Dict[str, str]] = None
    dotenv: Optional[Dict[str, str]] = None

    @classmethod
    def from_dict(cls, data: Any, where: str) -> "DependencySpec":
        if not isinstance(data, dict):
            raise ConfigurationError(f"'dependencies' of {where} must be a mapping.")
        parsed: Dict[str, Optional[Dict[str, str]]] = {}
        for key in ("env", "dotenv"):
            mapping = data.get(key)
            if mapping is None:
                parsed[key] = None
                continue
            if not isinstance(mapping, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in mapping.items()
            ):
                raise ConfigurationError(
                    f"'dependencies.{key}' of {where} must map variable names to 'service.setting' strings."
                )
            parsed[key] = dict(mapping)
        return cls(**parsed)


@dataclass(frozen=True)
class Mode:
    name: str
    run: Optional[RunSpec] = None
    dependencies: Optional[DependencySpec] = None
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_off(self) -> bool:
        return self.run is None

    @classmethod
    def from_dict(cls, data: Any, service_name: str) -> "Mode":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise ConfigurationError(f"Every mode of service '{service_name}' needs a string 'name'.")
        where = f"{service_name}.{data['name']}"
        run = RunSpec.from_dict(data["run"], where) if data.get("run") is not None else None
        dependencies = (
            DependencySpec.from_dict(data["dependencies"], where)
            if data.get("dependencies") is not None else None
        )
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise ConfigurationError(f"'config' of {where} must be a mapping.")
        return cls(name=data["name"], run=run, dependencies=dependencies, config=dict(config))


@dataclass(frozen=True)
class ServiceDefinition:
    name: str
    modes: List[Mode]

    def get_mode(self, mode_name: str) -> Optional[Mode]:
        return next((mode for mode in self.modes if mode.name == mode_name), None)

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceDefinition":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise ConfigurationError("Every service needs a string 'name'.")
        name = data["name"]
        raw_modes = data.get("modes")
        if not isinstance(raw_modes, list) or not raw_modes:
            raise ConfigurationError(f"Service '{name}' must declare at least one mode.")
        modes = [Mode.from_dict(raw, name) for raw in raw_modes]
        seen = set()
        for mode in modes:
            if mode.name in seen:
                raise ConfigurationError(f"Service '{name}' declares mode '{mode.name}' twice.")
            seen.add(mode.name)
        return cls(name=name, modes=modes)


def parse_topology(data: Any) -> List[ServiceDefinition]:
    """
    Builds the typed topology from already-decoded JSON/YAML data.

    :param data: A list of service mappings.
    :return: The services, in file order.
    """
    if not isinstance(data, list):
        raise ConfigurationError("The topology must be a list of services.")
    services = [ServiceDefinition.from_dict(raw) for raw in data]
    seen = set()
    for service in services:
        if service.name in seen:
            raise ConfigurationError(f"Service '{service.name}' is declared twice.")
        seen.add(service.name)
    return services


def load_topology(path: Union[str, Path]) -> List[ServiceDefinition]:
    """
    Reads a topology file. `.yaml`/`.yml` files are parsed as YAML, anything
    else as JSON.

    :param path: Location of the topology file.
    :return: The parsed services.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read topology file '{path}': {e}") from e

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot parse topology file '{path}': {e}") from e

    services = parse_topology(data)
    log.debug(f"Loaded {len(services)} services from '{path}'.")
    return services


#* --- Selected Configuration ---
class Configuration:
    """
    Holds the topology and the mode currently selected for each service.
    Every service starts on its first declared mode.
    """

    def __init__(self, topology: List[ServiceDefinition]) -> None:
        self._topology = list(topology)
        self._services: Dict[str, ServiceDefinition] = {s.name: s for s in self._topology}
        self._selected: Dict[str, str] = {s.name: s.modes[0].name for s in self._topology}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Configuration":
        return cls(load_topology(path))

    @property
    def topology(self) -> List[ServiceDefinition]:
        return self._topology

    def get_service(self, service_name: str) -> ServiceDefinition:
        try:
            return self._services[service_name]
        except KeyError:
            raise ConfigurationError(f"Unknown service '{service_name}'.") from None

    def get_service_config(self, service_name: str) -> str:
        """Returns the name of the mode selected for `service_name`."""
        self.get_service(service_name)
        return self._selected[service_name]

    def set_service_config(self, service_name: str, mode_name: str) -> None:
        service = self.get_service(service_name)
        if service.get_mode(mode_name) is None:
            raise ConfigurationError(f"Service '{service_name}' has no mode '{mode_name}'.")
        self._selected[service_name] = mode_name
        log.debug(f"Selected mode '{mode_name}' for service '{service_name}'.")

    def get_selected_mode(self, service_name: str) -> Mode:
        service = self.get_service(service_name)
        mode_name = self._selected[service_name]
        mode = service.get_mode(mode_name)
        if mode is None:
            raise ConfigurationError(f"Service '{service_name}' has no mode '{mode_name}'.")
        return mode

    def cycle_mode(self, service_name: str, offset: int) -> str:
        """
        Moves the selection `offset` positions through the service's modes,
        wrapping around at both ends.

        :param service_name: The service whose selection changes.
        :param offset: +1 for the next mode, -1 for the previous one.
        :return: The newly selected mode name.
        """
        service = self.get_service(service_name)
        names = [mode.name for mode in service.modes]
        index = names.index(self._selected[service_name])
        new_name = names[(index + offset) % len(names)]
        self.set_service_config(service_name, new_name)
        return new_name
