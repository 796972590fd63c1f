"""Command line runtime for the WireGuard gateway provisioner."""

from .config import load_settings  # noqa: F401

__all__ = ["load_settings"]
