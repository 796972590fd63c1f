"""Data structures shared by the provisioning components.

These dataclasses carry every value that flows from one provisioning step to
the next (keys, addresses, rendered files) so no step depends on state left
behind implicitly by another one.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

OWNER_ONLY = 0o600

DEFAULT_INTERFACE = "wg0"
DEFAULT_GATEWAY_ADDRESS = "10.0.0.1/24"
DEFAULT_LISTEN_PORT = 51820
DEFAULT_CLIENT_ADDRESS = "10.0.0.2/32"
DEFAULT_CLIENT_INTERFACE_ADDRESS = "10.0.0.2/24"
DEFAULT_CLIENT_DNS = "8.8.8.8"
DEFAULT_CLIENT_ALLOWED_IPS = ("0.0.0.0/0", "::/0")
DEFAULT_KEEPALIVE = 25
DEFAULT_ALLOCATION_LISTEN = "127.0.0.1:5000"
DEFAULT_PEER_LIMIT = 100
DEFAULT_ALLOCATION_DATABASE = "/var/lib/wg-dynamic/database.sqlite3"
DEFAULT_PACKAGES = ("wireguard", "build-essential", "libssl-dev", "pkg-config", "git")


@dataclass(frozen=True)
class Keypair:
    """WireGuard private/public key pair.

    ``public_key`` is always the ``wg pubkey`` derivation of ``private_key``.
    The private half is kept out of ``repr`` so it never ends up in logs.
    """

    private_key: str = field(repr=False)
    public_key: str


@dataclass(frozen=True)
class GatewayIdentity:
    keypair: Keypair
    address: str = DEFAULT_GATEWAY_ADDRESS
    listen_port: int = DEFAULT_LISTEN_PORT


@dataclass(frozen=True)
class ClientIdentity:
    """The single client peer.

    Attributes
    ----------
    address:
        Tunnel address the gateway routes to this client; used verbatim as
        the gateway's peer ``AllowedIPs``.
    interface_address:
        Address the client assigns to its own tunnel interface.
    """

    keypair: Keypair
    address: str = DEFAULT_CLIENT_ADDRESS
    interface_address: str = DEFAULT_CLIENT_INTERFACE_ADDRESS
    dns: str = DEFAULT_CLIENT_DNS
    allowed_ips: Sequence[str] = DEFAULT_CLIENT_ALLOWED_IPS
    persistent_keepalive: int = DEFAULT_KEEPALIVE


@dataclass(frozen=True)
class AllocationServiceConfig:
    """Identity and bounds of the ``wg-dynamic`` allocation daemon."""

    listen_address: str
    private_key: str = field(repr=False)
    public_key: str
    peer_limit: int
    database_path: str
    interface_name: str

    @classmethod
    def for_gateway(
        cls,
        gateway: GatewayIdentity,
        *,
        listen_address: str = DEFAULT_ALLOCATION_LISTEN,
        peer_limit: int = DEFAULT_PEER_LIMIT,
        database_path: str = DEFAULT_ALLOCATION_DATABASE,
        interface_name: str = DEFAULT_INTERFACE,
    ) -> "AllocationServiceConfig":
        """The daemon shares the gateway's keypair instead of its own."""

        return cls(
            listen_address=listen_address,
            private_key=gateway.keypair.private_key,
            public_key=gateway.keypair.public_key,
            peer_limit=peer_limit,
            database_path=database_path,
            interface_name=interface_name,
        )


@dataclass(frozen=True)
class RenderedConfigFile:
    path: Path
    content: str = field(repr=False)
    mode: int = OWNER_ONLY

    @property
    def owner_only(self) -> bool:
        return self.mode & 0o077 == 0


@dataclass(frozen=True)
class ProvisionPaths:
    """Where the run writes its artifacts."""

    gateway_config: Path = Path("/etc/wireguard/wg0.conf")
    allocation_config: Path = Path("/etc/wg-dynamic/config.yml")
    client_config_dir: Path = Path("/etc/wireguard/clients")
    sysctl_conf: Path = Path("/etc/sysctl.conf")


@dataclass(frozen=True)
class DaemonBuild:
    """Where to fetch and how to recognise the allocation daemon."""

    binary: str = "wg-dynamic"
    repository: str = "https://github.com/WireGuard/wg-dynamic.git"
    source_dir: str = "/opt/wg-dynamic"


@dataclass(frozen=True)
class ProvisionSettings:
    """Everything a provisioning run needs besides the keys it generates."""

    public_endpoint: Optional[str] = None
    interface: str = DEFAULT_INTERFACE
    gateway_address: str = DEFAULT_GATEWAY_ADDRESS
    listen_port: int = DEFAULT_LISTEN_PORT
    client_address: str = DEFAULT_CLIENT_ADDRESS
    client_interface_address: str = DEFAULT_CLIENT_INTERFACE_ADDRESS
    client_dns: str = DEFAULT_CLIENT_DNS
    client_allowed_ips: Sequence[str] = DEFAULT_CLIENT_ALLOWED_IPS
    persistent_keepalive: int = DEFAULT_KEEPALIVE
    allocation_listen: str = DEFAULT_ALLOCATION_LISTEN
    peer_limit: int = DEFAULT_PEER_LIMIT
    allocation_database: str = DEFAULT_ALLOCATION_DATABASE
    readiness_timeout: float = 10.0
    repositories: Sequence[str] = ()
    packages: Sequence[str] = DEFAULT_PACKAGES
    command_timeout: float = 900.0
    daemon: DaemonBuild = field(default_factory=DaemonBuild)
    paths: ProvisionPaths = field(default_factory=ProvisionPaths)


def validate_interface_address(value: str) -> str:
    """Return ``value`` if it is an ``address/prefix`` pair, else raise."""

    if "/" not in value:
        raise ValueError(f"address '{value}' is missing a prefix length")
    ipaddress.ip_interface(value)
    return value


def split_host_port(value: str) -> tuple[str, int]:
    """Split ``host:port`` (``[v6]:port`` for IPv6) into its parts."""

    host, sep, port = value.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"'{value}' is not in host:port form")
    return host.strip("[]"), int(port)


def validate_endpoint_host(value: str) -> str:
    """Return ``value`` if it is a bare host name or address, else raise.

    The port is always the gateway listen port, so ``host:port`` input is
    rejected.  IPv6 addresses may be given with or without brackets.
    """

    if not value or ":" not in value:
        return value
    bracketed = value.startswith("[") and value.endswith("]")
    try:
        ipaddress.IPv6Address(value[1:-1] if bracketed else value)
    except ValueError as exc:
        raise ValueError(
            f"endpoint '{value}' must be a host or address without a port"
        ) from exc
    return value
