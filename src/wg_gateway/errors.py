"""Error taxonomy for the provisioning run.

Every step of the run owns exactly one exception type.  The driver is the only
place that catches them; it records the failing step and stops.
"""

from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Base class for failures that abort the provisioning run."""

    step = "provisioning"


class PrivilegeError(ProvisioningError):
    step = "privilege check"


class InstallError(ProvisioningError):
    step = "package installation"


class BuildError(ProvisioningError):
    step = "allocation daemon build"


class KeyGenError(ProvisioningError):
    step = "key generation"


class ConfigRenderError(ProvisioningError):
    step = "config rendering"


class ConfigWriteError(ProvisioningError):
    step = "config writing"


class ServiceStartError(ProvisioningError):
    step = "allocation daemon start"


class ForwardingError(ProvisioningError):
    step = "ip forwarding"


class ServiceRestartError(ProvisioningError):
    step = "gateway service restart"
