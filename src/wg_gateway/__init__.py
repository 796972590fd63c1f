"""WireGuard gateway provisioning library.

The package provisions a single WireGuard gateway host in one linear run:

* install the required system packages and the ``wg-dynamic`` allocation
  daemon (built from source when it is not already installed);
* generate the gateway and client keypairs with ``wg(8)``;
* render the gateway interface config, the allocation daemon config and the
  client config, all owner-only; and
* start the daemon, enable IP forwarding and restart ``wg-quick@wg0``.

Every external tool is reached through :class:`wg_gateway.executor.Executor`
so the whole pipeline can be exercised in unit tests with scripted results.
"""

from .driver import ProvisionResult, ProvisionState, ProvisioningDriver  # noqa: F401

__all__ = ["ProvisionResult", "ProvisionState", "ProvisioningDriver"]
