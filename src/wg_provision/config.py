"""YAML settings loader for the provisioning CLI."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, List, Optional

import yaml

from wg_gateway.config import (
    DEFAULT_CLIENT_ALLOWED_IPS,
    DEFAULT_PACKAGES,
    DaemonBuild,
    ProvisionPaths,
    ProvisionSettings,
    split_host_port,
    validate_endpoint_host,
    validate_interface_address,
)

DEFAULTS = ProvisionSettings()


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def _value(section: dict, section_name: str, key: str, default: Any) -> Any:
    if key not in section:
        return default
    value = section[key]
    if value is None:
        raise ValueError(f"'{section_name}.{key}' must not be empty")
    return value


def _string_list(value: Any, name: str) -> List[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ValueError(f"'{name}' must be a list")
    return [str(item) for item in value]


def _number(value: Any, name: str, cast: Callable[[Any], Any]) -> Any:
    if isinstance(value, bool):
        raise ValueError(f"'{name}' must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{name}' must be a number, got {value!r}") from exc


def _positive_int(value: Any, name: str) -> int:
    number = _number(value, name, int)
    if number <= 0:
        raise ValueError(f"'{name}' must be a positive integer")
    return number


def _endpoint(value: Any) -> Optional[str]:
    if not value:
        return None
    return validate_endpoint_host(str(value))


def load_settings(path: Optional[Path] = None) -> ProvisionSettings:
    """Load ``path`` into :class:`ProvisionSettings`.

    Missing sections and keys fall back to the defaults.  ``None`` returns
    the defaults unchanged.  Malformed files raise :class:`ValueError`.
    """

    if path is None:
        return DEFAULTS

    try:
        data = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as exc:
        raise ValueError(f"{path} is not valid YAML: {exc}") from exc
    if data is None:
        return DEFAULTS
    if not isinstance(data, dict):
        raise ValueError("Provisioning configuration must be a mapping")

    gateway = _section(data, "gateway")
    client = _section(data, "client")
    allocation = _section(data, "allocation")
    packages = _section(data, "packages")
    system = _section(data, "system")

    interface = str(_value(gateway, "gateway", "interface", DEFAULTS.interface))
    paths = ProvisionPaths(
        gateway_config=Path(
            _value(
                gateway, "gateway", "config_path", f"/etc/wireguard/{interface}.conf"
            )
        ),
        allocation_config=Path(
            _value(
                allocation,
                "allocation",
                "config_path",
                DEFAULTS.paths.allocation_config,
            )
        ),
        client_config_dir=Path(
            _value(client, "client", "config_dir", DEFAULTS.paths.client_config_dir)
        ),
        sysctl_conf=Path(
            _value(system, "system", "sysctl_conf", DEFAULTS.paths.sysctl_conf)
        ),
    )
    daemon = DaemonBuild(
        binary=str(_value(allocation, "allocation", "binary", DEFAULTS.daemon.binary)),
        repository=str(
            _value(allocation, "allocation", "repository", DEFAULTS.daemon.repository)
        ),
        source_dir=str(
            _value(allocation, "allocation", "source_dir", DEFAULTS.daemon.source_dir)
        ),
    )

    listen = str(
        _value(allocation, "allocation", "listen_address", DEFAULTS.allocation_listen)
    )
    split_host_port(listen)

    return ProvisionSettings(
        public_endpoint=_endpoint(gateway.get("public_endpoint")),
        interface=interface,
        gateway_address=validate_interface_address(
            str(_value(gateway, "gateway", "address", DEFAULTS.gateway_address))
        ),
        listen_port=_positive_int(
            _value(gateway, "gateway", "listen_port", DEFAULTS.listen_port),
            "gateway.listen_port",
        ),
        client_address=validate_interface_address(
            str(_value(client, "client", "address", DEFAULTS.client_address))
        ),
        client_interface_address=validate_interface_address(
            str(
                _value(
                    client,
                    "client",
                    "interface_address",
                    DEFAULTS.client_interface_address,
                )
            )
        ),
        client_dns=str(client.get("dns", DEFAULTS.client_dns) or ""),
        client_allowed_ips=tuple(
            _string_list(
                _value(
                    client, "client", "allowed_ips", list(DEFAULT_CLIENT_ALLOWED_IPS)
                ),
                "client.allowed_ips",
            )
        ),
        persistent_keepalive=_positive_int(
            _value(
                client, "client", "persistent_keepalive", DEFAULTS.persistent_keepalive
            ),
            "client.persistent_keepalive",
        ),
        allocation_listen=listen,
        peer_limit=_positive_int(
            _value(allocation, "allocation", "peer_limit", DEFAULTS.peer_limit),
            "allocation.peer_limit",
        ),
        allocation_database=str(
            _value(allocation, "allocation", "database", DEFAULTS.allocation_database)
        ),
        readiness_timeout=_number(
            _value(
                allocation,
                "allocation",
                "readiness_timeout",
                DEFAULTS.readiness_timeout,
            ),
            "allocation.readiness_timeout",
            float,
        ),
        repositories=tuple(
            _string_list(packages.get("repositories") or [], "packages.repositories")
        ),
        packages=tuple(
            _string_list(
                _value(packages, "packages", "install", list(DEFAULT_PACKAGES)),
                "packages.install",
            )
        ),
        command_timeout=_number(
            _value(system, "system", "command_timeout", DEFAULTS.command_timeout),
            "system.command_timeout",
            float,
        ),
        daemon=daemon,
        paths=paths,
    )


def with_endpoint(settings: ProvisionSettings, endpoint: Optional[str]) -> ProvisionSettings:
    if not endpoint:
        return settings
    return replace(settings, public_endpoint=validate_endpoint_host(endpoint))
