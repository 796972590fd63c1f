"""Entry point for ``wg-provision``."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from wg_gateway.driver import ProvisioningDriver
from wg_gateway.executor import SubprocessExecutor

from .config import load_settings, with_endpoint

LOG = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        stream=sys.stdout,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Provision this host as a WireGuard gateway"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the provisioning YAML file (defaults apply when omitted)",
    )
    parser.add_argument(
        "--endpoint",
        default=None,
        help="Public host or IP clients use to reach this gateway",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    try:
        settings = with_endpoint(load_settings(args.config), args.endpoint)
    except (OSError, ValueError) as exc:
        LOG.error("Invalid provisioning configuration: %s", exc)
        return 1

    if not settings.public_endpoint:
        LOG.error(
            "No public endpoint configured; pass --endpoint or set "
            "gateway.public_endpoint"
        )
        return 1

    executor = SubprocessExecutor(timeout=settings.command_timeout)
    result = ProvisioningDriver(settings, executor).run()
    return result.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
