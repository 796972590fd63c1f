"""Start the allocation daemon, enable forwarding and bounce the gateway."""

from __future__ import annotations

import logging
import socket
import time
from pathlib import Path
from typing import Callable, List, Optional

import pyroute2

from .config import DEFAULT_ALLOCATION_LISTEN, DEFAULT_INTERFACE, split_host_port
from .errors import ForwardingError, ServiceRestartError, ServiceStartError
from .executor import Executor, ProcessHandle

LOG = logging.getLogger(__name__)

FORWARDING_KEY = "net.ipv4.ip_forward"
FORWARDING_LINE = f"{FORWARDING_KEY}=1"
READINESS_INTERVAL = 0.2


def interface_exists(ifname: str) -> bool:
    """Return ``True`` if the kernel knows a link called ``ifname``."""

    with pyroute2.IPRoute() as ipr:
        return bool(ipr.link_lookup(ifname=ifname))


def tcp_listener_ready(address: str, timeout: float = 1.0) -> bool:
    host, port = split_host_port(address)
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def _sysctl_key(line: str) -> Optional[str]:
    stripped = line.strip()
    if not stripped or stripped[0] in "#;" or "=" not in stripped:
        return None
    return stripped.split("=", 1)[0].strip().replace("/", ".")


def persist_forwarding(lines: List[str]) -> List[str]:
    """Return ``lines`` with exactly one active ``ip_forward=1`` entry.

    The first existing assignment is replaced in place, later ones are
    dropped, and the line is appended if there was none.
    """

    result: List[str] = []
    seen = False
    for line in lines:
        if _sysctl_key(line) == FORWARDING_KEY:
            if not seen:
                result.append(FORWARDING_LINE)
                seen = True
            continue
        result.append(line)
    if not seen:
        result.append(FORWARDING_LINE)
    return result


class ServiceOrchestrator:
    """Bring the provisioned gateway to life.

    Parameters
    ----------
    executor:
        Runs ``sysctl`` / ``systemctl`` and spawns the daemon.
    sysctl_conf:
        Boot-time sysctl file that receives the persisted forwarding flag.
    interface:
        Gateway interface; the unit restarted is ``wg-quick@<interface>``.
    listen_address:
        ``host:port`` the allocation daemon is expected to listen on.
    readiness_timeout:
        Seconds to wait for the daemon listener.  ``0`` skips the socket
        probe and only checks that the daemon did not exit straight away.
    readiness_probe / link_check:
        Injection points for the TCP probe and the netlink interface lookup.
    """

    def __init__(
        self,
        executor: Executor,
        *,
        sysctl_conf: Path = Path("/etc/sysctl.conf"),
        interface: str = DEFAULT_INTERFACE,
        daemon_binary: str = "wg-dynamic",
        listen_address: str = DEFAULT_ALLOCATION_LISTEN,
        readiness_timeout: float = 10.0,
        readiness_probe: Optional[Callable[[str], bool]] = None,
        link_check: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self._executor = executor
        self._sysctl_conf = Path(sysctl_conf)
        self._interface = interface
        self._daemon_binary = daemon_binary
        self._listen_address = listen_address
        self._readiness_timeout = readiness_timeout
        self._readiness_probe = readiness_probe or tcp_listener_ready
        self._link_check = link_check or interface_exists

    @property
    def unit(self) -> str:
        return f"wg-quick@{self._interface}"

    # ------------------------------------------------------------------
    # Allocation daemon
    # ------------------------------------------------------------------
    def start_allocation_daemon(self, config_path: Path) -> ProcessHandle:
        LOG.info("Starting %s with %s", self._daemon_binary, config_path)
        try:
            handle = self._executor.spawn([self._daemon_binary, str(config_path)])
        except OSError as exc:
            raise ServiceStartError(
                f"failed to launch {self._daemon_binary}: {exc}"
            ) from exc
        self._wait_ready(handle)
        LOG.info("%s running (pid %s)", self._daemon_binary, handle.pid)
        return handle

    def _wait_ready(self, handle: ProcessHandle) -> None:
        deadline = time.monotonic() + self._readiness_timeout
        while True:
            status = handle.poll()
            if status is not None:
                raise ServiceStartError(
                    f"{self._daemon_binary} exited with status {status} during startup"
                )
            if self._readiness_timeout <= 0:
                return
            if self._readiness_probe(self._listen_address):
                return
            if time.monotonic() >= deadline:
                raise ServiceStartError(
                    f"{self._daemon_binary} not listening on {self._listen_address} "
                    f"after {self._readiness_timeout:g}s"
                )
            time.sleep(READINESS_INTERVAL)

    # ------------------------------------------------------------------
    # Forwarding
    # ------------------------------------------------------------------
    def enable_ip_forwarding(self) -> None:
        """Enable IPv4 forwarding now and across reboots.  Idempotent."""

        LOG.info("Enabling IP forwarding")
        result = self._executor.run(["sysctl", "-w", FORWARDING_LINE])
        if not result.ok:
            raise ForwardingError(f"failed to set {FORWARDING_KEY}: {result.describe()}")

        try:
            existing = (
                self._sysctl_conf.read_text().splitlines()
                if self._sysctl_conf.exists()
                else []
            )
            updated = persist_forwarding(existing)
            if updated != existing:
                self._sysctl_conf.parent.mkdir(parents=True, exist_ok=True)
                self._sysctl_conf.write_text("\n".join(updated) + "\n")
                LOG.debug("Persisted %s in %s", FORWARDING_LINE, self._sysctl_conf)
        except OSError as exc:
            raise ForwardingError(
                f"failed to persist forwarding in {self._sysctl_conf}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Gateway service
    # ------------------------------------------------------------------
    def restart_gateway_service(self) -> None:
        LOG.info("Restarting %s", self.unit)
        result = self._executor.run(["systemctl", "restart", self.unit])
        if not result.ok:
            raise ServiceRestartError(f"failed to restart {self.unit}: {result.describe()}")

        try:
            present = self._link_check(self._interface)
        except (OSError, pyroute2.NetlinkError) as exc:
            raise ServiceRestartError(
                f"could not query interface {self._interface}: {exc}"
            ) from exc
        if not present:
            raise ServiceRestartError(
                f"{self.unit} restarted but interface {self._interface} is missing"
            )
