"""Render and write the gateway, allocation daemon and client configs."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Mapping, Optional

import yaml

from .config import (
    DEFAULT_CLIENT_ADDRESS,
    DEFAULT_LISTEN_PORT,
    OWNER_ONLY,
    AllocationServiceConfig,
    ClientIdentity,
    GatewayIdentity,
    ProvisionPaths,
    RenderedConfigFile,
    validate_endpoint_host,
)
from .errors import ConfigRenderError, ConfigWriteError

LOG = logging.getLogger(__name__)


def _require(fields: Mapping[str, object], context: str) -> None:
    missing = [name for name, value in fields.items() if value in (None, "")]
    if missing:
        raise ConfigRenderError(
            f"{context} is missing required field(s): {', '.join(missing)}"
        )


def _require_positive(fields: Mapping[str, object], context: str) -> None:
    for name, value in fields.items():
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigRenderError(
                f"{context}: {name} must be a positive integer, got {value!r}"
            )


def _ini(sections: Iterable[tuple[str, Iterable[tuple[str, object]]]]) -> str:
    blocks = []
    for name, items in sections:
        lines = [f"[{name}]"]
        lines.extend(f"{key} = {value}" for key, value in items)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def _format_endpoint(host: str, port: int) -> str:
    try:
        validate_endpoint_host(host)
    except ValueError as exc:
        raise ConfigRenderError(str(exc)) from exc
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{host}:{port}"


def client_config_name(public_key: str) -> str:
    """File name for a client config keyed by its public key.

    Base64 keys may contain ``/``; it is mapped so the key stays a single
    path component.
    """

    return public_key.replace("/", "_").replace("+", "-") + ".conf"


class ConfigRenderer:
    """Render the three configuration documents written by a provisioning run.

    Rendering is pure: methods only build :class:`RenderedConfigFile` values.
    :func:`write_config` puts them on disk.
    """

    def __init__(self, paths: Optional[ProvisionPaths] = None) -> None:
        self._paths = paths or ProvisionPaths()

    def render_gateway_config(
        self,
        gateway: GatewayIdentity,
        peer_public_key: str,
        *,
        peer_address: str = DEFAULT_CLIENT_ADDRESS,
    ) -> RenderedConfigFile:
        _require(
            {
                "private_key": gateway.keypair.private_key,
                "address": gateway.address,
                "listen_port": gateway.listen_port,
                "peer_public_key": peer_public_key,
                "peer_address": peer_address,
            },
            "gateway config",
        )
        _require_positive({"listen_port": gateway.listen_port}, "gateway config")
        # Single-peer topology: the only peer is the provisioned client.
        content = _ini(
            [
                (
                    "Interface",
                    [
                        ("PrivateKey", gateway.keypair.private_key),
                        ("Address", gateway.address),
                        ("ListenPort", gateway.listen_port),
                    ],
                ),
                (
                    "Peer",
                    [
                        ("PublicKey", peer_public_key),
                        ("AllowedIPs", peer_address),
                    ],
                ),
            ]
        )
        return RenderedConfigFile(self._paths.gateway_config, content, OWNER_ONLY)

    def render_allocation_config(
        self, cfg: AllocationServiceConfig
    ) -> RenderedConfigFile:
        _require(
            {
                "listen_address": cfg.listen_address,
                "private_key": cfg.private_key,
                "public_key": cfg.public_key,
                "peer_limit": cfg.peer_limit,
                "database_path": cfg.database_path,
                "interface_name": cfg.interface_name,
            },
            "allocation service config",
        )
        _require_positive({"peer_limit": cfg.peer_limit}, "allocation service config")
        document = {
            "listen_address": cfg.listen_address,
            "private_key": cfg.private_key,
            "public_key": cfg.public_key,
            "peer_limit": cfg.peer_limit,
            "database": cfg.database_path,
            "interface": cfg.interface_name,
        }
        content = yaml.safe_dump(document, sort_keys=False, default_flow_style=False)
        return RenderedConfigFile(self._paths.allocation_config, content, OWNER_ONLY)

    def render_client_config(
        self,
        client: ClientIdentity,
        gateway_public_key: str,
        gateway_public_endpoint: Optional[str],
        *,
        listen_port: int = DEFAULT_LISTEN_PORT,
    ) -> RenderedConfigFile:
        _require(
            {
                "private_key": client.keypair.private_key,
                "public_key": client.keypair.public_key,
                "interface_address": client.interface_address,
                "gateway_public_key": gateway_public_key,
                "gateway_public_endpoint": gateway_public_endpoint,
            },
            "client config",
        )
        _require_positive(
            {
                "listen_port": listen_port,
                "persistent_keepalive": client.persistent_keepalive,
            },
            "client config",
        )
        interface = [
            ("PrivateKey", client.keypair.private_key),
            ("Address", client.interface_address),
        ]
        if client.dns:
            interface.append(("DNS", client.dns))
        peer = [
            ("PublicKey", gateway_public_key),
            ("Endpoint", _format_endpoint(str(gateway_public_endpoint), listen_port)),
            ("AllowedIPs", ", ".join(client.allowed_ips)),
            ("PersistentKeepalive", client.persistent_keepalive),
        ]
        content = _ini([("Interface", interface), ("Peer", peer)])
        path = self._paths.client_config_dir / client_config_name(
            client.keypair.public_key
        )
        return RenderedConfigFile(path, content, OWNER_ONLY)


def write_config(rendered: RenderedConfigFile) -> Path:
    """Write ``rendered`` to disk with its permission mode.

    The file is created with the restrictive mode already applied so the
    content is never readable by others, then ``chmod`` forces the mode on
    pre-existing files.
    """

    path = Path(rendered.path)
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, rendered.mode)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(rendered.content)
        os.chmod(path, rendered.mode)
    except OSError as exc:
        raise ConfigWriteError(f"failed to write {path}: {exc}") from exc
    LOG.info("Wrote %s (mode %o)", path, rendered.mode)
    return path
