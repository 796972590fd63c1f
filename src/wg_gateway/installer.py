"""System package installation and the ``wg-dynamic`` source build."""

from __future__ import annotations

import logging
from typing import Sequence

from .config import DaemonBuild
from .errors import BuildError, InstallError
from .executor import Executor

LOG = logging.getLogger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}
REPOSITORY_TOOLS = "software-properties-common"


class PackageInstaller:
    """Drive ``apt-get`` and the clone/build/install of the daemon.

    Every failure is fatal; there is no partial-success policy.
    """

    def __init__(self, executor: Executor) -> None:
        self._executor = executor

    def install(self, package_names: Sequence[str]) -> None:
        """Install all ``package_names`` in a single package manager call."""

        packages = list(package_names)
        if not packages:
            LOG.debug("No packages requested")
            return
        LOG.info("Installing packages: %s", " ".join(packages))
        result = self._executor.run(
            ["apt-get", "install", "-y", *packages], env=APT_ENV
        )
        if not result.ok:
            raise InstallError(f"failed to install packages: {result.describe()}")

    def update_index(self) -> None:
        LOG.info("Updating package index")
        result = self._executor.run(["apt-get", "update"], env=APT_ENV)
        if not result.ok:
            raise InstallError(
                f"failed to update package repositories: {result.describe()}"
            )

    def add_repositories(self, repositories: Sequence[str]) -> None:
        """Register extra repositories.

        The index is not refreshed here; callers run :meth:`update_index`
        once after all repositories are added.
        """

        if not repositories:
            return
        self.install([REPOSITORY_TOOLS])
        for repository in repositories:
            LOG.info("Adding package repository %s", repository)
            result = self._executor.run(["add-apt-repository", "-y", repository])
            if not result.ok:
                raise InstallError(
                    f"failed to add repository {repository}: {result.describe()}"
                )

    # ------------------------------------------------------------------
    # Allocation daemon
    # ------------------------------------------------------------------
    def daemon_installed(self, build: DaemonBuild) -> bool:
        return self._executor.run(["which", build.binary]).ok

    def ensure_daemon(self, build: DaemonBuild) -> bool:
        """Build and install the daemon unless it is already on ``PATH``.

        Returns ``True`` when a build was performed.
        """

        if self.daemon_installed(build):
            LOG.info("%s already installed, skipping source build", build.binary)
            return False

        LOG.info("Cloning and building %s", build.binary)
        self._build_step(
            ["git", "clone", build.repository, build.source_dir],
            None,
            f"failed to clone {build.repository}",
        )
        self._build_step(["make"], build.source_dir, f"failed to build {build.binary}")
        self._build_step(
            ["make", "install"], build.source_dir, f"failed to install {build.binary}"
        )
        LOG.info("Installed %s from source", build.binary)
        return True

    def _build_step(self, argv: list[str], cwd: str | None, failure: str) -> None:
        result = self._executor.run(argv, cwd=cwd)
        if not result.ok:
            LOG.error("%s: %s", failure, result.describe())
            raise BuildError(f"{failure}: {result.describe()}")
