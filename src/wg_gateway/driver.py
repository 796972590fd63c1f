"""Provisioning driver.

Sequences the installer, key generator, renderer and service orchestrator as
a single forward pipeline.  Each step consumes the values returned by the
previous one; the first :class:`~wg_gateway.errors.ProvisioningError` moves
the run into :attr:`ProvisionState.FAILED` and nothing after it executes.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable, List, Optional

from .config import (
    AllocationServiceConfig,
    ClientIdentity,
    GatewayIdentity,
    ProvisionSettings,
    RenderedConfigFile,
)
from .errors import PrivilegeError, ProvisioningError
from .executor import Executor, ProcessHandle
from .installer import PackageInstaller
from .keys import KeyGenerator
from .render import ConfigRenderer, write_config
from .services import ServiceOrchestrator

LOG = logging.getLogger(__name__)


class ProvisionState(Enum):
    NOT_STARTED = auto()
    PRIVILEGE_CHECKED = auto()
    PACKAGES_INSTALLED = auto()
    DAEMON_BUILT = auto()
    KEYS_GENERATED = auto()
    CONFIGS_RENDERED = auto()
    DAEMON_STARTED = auto()
    FORWARDING_ENABLED = auto()
    SERVICE_RESTARTED = auto()
    COMPLETE = auto()
    FAILED = auto()


@dataclass(frozen=True)
class ProvisionFailure:
    """Why and where a run stopped."""

    step: str
    last_state: ProvisionState
    cause: ProvisioningError


@dataclass
class ProvisionResult:
    """Outcome of :meth:`ProvisioningDriver.run`."""

    state: ProvisionState = ProvisionState.NOT_STARTED
    history: List[ProvisionState] = field(
        default_factory=lambda: [ProvisionState.NOT_STARTED]
    )
    failure: Optional[ProvisionFailure] = None
    gateway: Optional[GatewayIdentity] = None
    client: Optional[ClientIdentity] = None
    written: List[Path] = field(default_factory=list)
    daemon: Optional[ProcessHandle] = None

    @property
    def ok(self) -> bool:
        return self.state is ProvisionState.COMPLETE

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


def _running_as_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


class ProvisioningDriver:
    """Provision a WireGuard gateway host end to end."""

    def __init__(
        self,
        settings: ProvisionSettings,
        executor: Executor,
        *,
        installer: Optional[PackageInstaller] = None,
        keygen: Optional[KeyGenerator] = None,
        renderer: Optional[ConfigRenderer] = None,
        orchestrator: Optional[ServiceOrchestrator] = None,
        is_root: Optional[Callable[[], bool]] = None,
    ) -> None:
        self._settings = settings
        self._installer = installer or PackageInstaller(executor)
        self._keygen = keygen or KeyGenerator(executor)
        self._renderer = renderer or ConfigRenderer(settings.paths)
        self._orchestrator = orchestrator or ServiceOrchestrator(
            executor,
            sysctl_conf=settings.paths.sysctl_conf,
            interface=settings.interface,
            daemon_binary=settings.daemon.binary,
            listen_address=settings.allocation_listen,
            readiness_timeout=settings.readiness_timeout,
        )
        self._is_root = is_root or _running_as_root
        self._result = ProvisionResult()

    @property
    def state(self) -> ProvisionState:
        return self._result.state

    def _advance(self, state: ProvisionState) -> None:
        self._result.state = state
        self._result.history.append(state)
        LOG.debug("Provisioning state: %s", state.name)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def run(self) -> ProvisionResult:
        result = self._result
        try:
            self._check_privileges()
            self._advance(ProvisionState.PRIVILEGE_CHECKED)

            self._install_packages()
            self._advance(ProvisionState.PACKAGES_INSTALLED)

            self._installer.ensure_daemon(self._settings.daemon)
            self._advance(ProvisionState.DAEMON_BUILT)

            gateway, client = self._generate_identities()
            result.gateway, result.client = gateway, client
            self._advance(ProvisionState.KEYS_GENERATED)

            rendered = self._render_configs(gateway, client)
            result.written = [write_config(item) for item in rendered]
            self._advance(ProvisionState.CONFIGS_RENDERED)

            result.daemon = self._orchestrator.start_allocation_daemon(
                self._settings.paths.allocation_config
            )
            self._advance(ProvisionState.DAEMON_STARTED)

            self._orchestrator.enable_ip_forwarding()
            self._advance(ProvisionState.FORWARDING_ENABLED)

            self._orchestrator.restart_gateway_service()
            self._advance(ProvisionState.SERVICE_RESTARTED)
        except ProvisioningError as exc:
            result.failure = ProvisionFailure(
                step=exc.step, last_state=result.state, cause=exc
            )
            LOG.error("Provisioning failed during %s: %s", exc.step, exc)
            self._advance(ProvisionState.FAILED)
            return result

        self._advance(ProvisionState.COMPLETE)
        self._report(result)
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def _check_privileges(self) -> None:
        if not self._is_root():
            raise PrivilegeError("provisioning must be run as root")

    def _install_packages(self) -> None:
        self._installer.add_repositories(self._settings.repositories)
        self._installer.update_index()
        self._installer.install(self._settings.packages)

    def _generate_identities(self) -> tuple[GatewayIdentity, ClientIdentity]:
        s = self._settings
        LOG.info("Generating gateway keypair")
        gateway = GatewayIdentity(
            keypair=self._keygen.generate_keypair(),
            address=s.gateway_address,
            listen_port=s.listen_port,
        )
        LOG.info("Generating client keypair")
        client = ClientIdentity(
            keypair=self._keygen.generate_keypair(),
            address=s.client_address,
            interface_address=s.client_interface_address,
            dns=s.client_dns,
            allowed_ips=tuple(s.client_allowed_ips),
            persistent_keepalive=s.persistent_keepalive,
        )
        return gateway, client

    def _render_configs(
        self, gateway: GatewayIdentity, client: ClientIdentity
    ) -> List[RenderedConfigFile]:
        s = self._settings
        LOG.info("Rendering gateway, allocation and client configs")
        allocation = AllocationServiceConfig.for_gateway(
            gateway,
            listen_address=s.allocation_listen,
            peer_limit=s.peer_limit,
            database_path=s.allocation_database,
            interface_name=s.interface,
        )
        # Render everything before writing anything.
        return [
            self._renderer.render_gateway_config(
                gateway, client.keypair.public_key, peer_address=client.address
            ),
            self._renderer.render_allocation_config(allocation),
            self._renderer.render_client_config(
                client,
                gateway.keypair.public_key,
                s.public_endpoint,
                listen_port=gateway.listen_port,
            ),
        ]

    def _report(self, result: ProvisionResult) -> None:
        # Public halves only; private keys stay in the written files.
        if result.gateway:
            LOG.info("Gateway public key: %s", result.gateway.keypair.public_key)
        if result.client:
            LOG.info("Client public key: %s", result.client.keypair.public_key)
        for path in result.written:
            LOG.info("Config written: %s", path)
        LOG.info("WireGuard gateway provisioning complete")
