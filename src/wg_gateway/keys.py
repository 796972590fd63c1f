"""WireGuard key generation via ``wg(8)``."""

from __future__ import annotations

import base64
import binascii
import logging

from .config import Keypair
from .errors import KeyGenError
from .executor import Executor

LOG = logging.getLogger(__name__)

WG_KEY_LENGTH = 32


def _check_key(value: str, what: str) -> str:
    key = value.strip()
    if not key:
        raise KeyGenError(f"wg returned an empty {what}")
    try:
        raw = base64.b64decode(key, validate=True)
    except binascii.Error as exc:
        raise KeyGenError(f"wg returned a malformed {what}: {exc}") from exc
    if len(raw) != WG_KEY_LENGTH:
        raise KeyGenError(
            f"wg returned a {what} of {len(raw)} bytes, expected {WG_KEY_LENGTH}"
        )
    return key


class KeyGenerator:
    """Produce keypairs with ``wg genkey`` / ``wg pubkey``.

    Failures are never retried: everything rendered afterwards depends on the
    keys, so the caller aborts the run on :class:`KeyGenError`.
    """

    def __init__(self, executor: Executor, wg_binary: str = "wg") -> None:
        self._executor = executor
        self._wg = wg_binary

    def generate_keypair(self) -> Keypair:
        result = self._executor.run([self._wg, "genkey"])
        if not result.ok:
            raise KeyGenError(f"private key generation failed: {result.describe()}")
        private_key = _check_key(result.stdout, "private key")
        public_key = self.derive_public_key(private_key)
        LOG.debug("Generated keypair with public key %s", public_key)
        return Keypair(private_key=private_key, public_key=public_key)

    def derive_public_key(self, private_key: str) -> str:
        """Return the public key ``wg pubkey`` derives from ``private_key``."""

        result = self._executor.run([self._wg, "pubkey"], input=private_key + "\n")
        if not result.ok:
            raise KeyGenError(f"public key derivation failed: {result.describe()}")
        return _check_key(result.stdout, "public key")
