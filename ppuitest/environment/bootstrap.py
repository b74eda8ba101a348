"""
Environment bootstrap for the Playwright test framework.

Ensures a Node.js runtime is available, clones the test framework at the
requested ref and installs its dependencies plus a single browser.
"""

import os
import platform
import re
import shutil
import stat
import sys
import tarfile
import time
import zipfile
from pathlib import Path
from typing import Callable, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import aiohttp

from ..core.config import Config
from ..core.exceptions import BootstrapError
from ..core.logging_config import get_logger, log_performance
from ..core.run_config import Browser
from .commands import CommandRunner


NODE_DIST_URL = "https://nodejs.org/dist/v{version}/{archive}"

_NODE_PLATFORMS = {
    "linux": ("linux", "tar.xz"),
    "darwin": ("darwin", "tar.gz"),
    "windows": ("win", "zip"),
}

_NODE_ARCHITECTURES = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armv7l",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
}

_COMMIT_REF = re.compile(r"^[0-9a-fA-F]{7,40}$")


def node_archive(
    version: str, system: Optional[str] = None, machine: Optional[str] = None
) -> Tuple[str, str]:
    """
    Name the official Node.js archive for a platform.

    Returns:
        (archive file name, top-level directory inside the archive)

    Raises:
        BootstrapError: If the platform has no official build
    """
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()

    if system not in _NODE_PLATFORMS or machine not in _NODE_ARCHITECTURES:
        raise BootstrapError(
            f"No Node.js {version} build for {system}/{machine}",
            step="install_runtime",
            remediation=["Install Node.js on the agent before running this task"],
        )

    os_name, extension = _NODE_PLATFORMS[system]
    dirname = f"node-v{version}-{os_name}-{_NODE_ARCHITECTURES[machine]}"
    return f"{dirname}.{extension}", dirname


def redact_url(url: str) -> str:
    """Drop credentials embedded in a repository URL."""
    parts = urlsplit(url)
    if parts.username or parts.password:
        host = parts.hostname or ""
        if parts.port:
            host += f":{parts.port}"
        return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
    return url


def _force_remove(path: Path) -> None:
    """Remove a tree, clearing read-only bits git sets on Windows."""

    def make_writable(func, target, _exc):
        os.chmod(target, stat.S_IWRITE)
        func(target)

    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=make_writable)
    else:
        shutil.rmtree(path, onerror=make_writable)


class EnvironmentBootstrapper:
    """Prepares the runtime and test framework checkout."""

    def __init__(
        self,
        config: Config,
        runner: Optional[CommandRunner] = None,
        session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        self.config = config
        self.runner = runner or CommandRunner()
        self.session_factory = session_factory
        self.logger = get_logger(__name__)

    def runtime_version(self) -> Optional[str]:
        """Installed Node.js version, or None when node is unavailable."""
        try:
            result = self.runner.run(["node", "--version"])
        except (FileNotFoundError, PermissionError):
            return None
        version = result.stdout.strip()
        if result.ok and version:
            return version
        return None

    async def ensure_runtime_installed(self) -> str:
        """
        Make sure node is on PATH, installing the pinned version if needed.

        Returns:
            Reported node version

        Raises:
            BootstrapError: If the installed runtime does not report a version
        """
        version = self.runtime_version()
        if version:
            self.logger.info(f"Node.js {version} already installed")
            return version

        self.logger.info(f"Node.js not found, installing v{self.config.node_version}")
        start_time = time.time()
        bin_dir = await self._install_node()
        self.runner.add_to_path(bin_dir)

        version = self.runtime_version()
        if not version:
            raise BootstrapError(
                "Node.js installation could not be verified",
                step="install_runtime",
                remediation=[
                    f"Check {bin_dir} contains a node executable",
                    "Install Node.js on the agent with a NodeTool task instead",
                ],
            )

        log_performance(self.logger, "install_runtime", time.time() - start_time, version=version)
        return version

    async def _install_node(self) -> Path:
        archive_name, dirname = node_archive(self.config.node_version)
        tools_dir = self.config.tools_dir
        tools_dir.mkdir(parents=True, exist_ok=True)
        archive_path = tools_dir / archive_name

        url = NODE_DIST_URL.format(version=self.config.node_version, archive=archive_name)
        await self._download(url, archive_path)

        self.logger.info(f"Extracting {archive_name}")
        if archive_name.endswith(".zip"):
            with zipfile.ZipFile(archive_path) as archive:
                archive.extractall(tools_dir)
        else:
            with tarfile.open(archive_path, "r:*") as archive:
                if hasattr(tarfile, "data_filter"):
                    archive.extractall(tools_dir, filter="data")
                else:
                    archive.extractall(tools_dir)
        archive_path.unlink()

        install_dir = tools_dir / dirname
        return install_dir if archive_name.endswith(".zip") else install_dir / "bin"

    async def _download(self, url: str, destination: Path) -> None:
        self.logger.info(f"Downloading {url}")
        async with self.session_factory() as session:
            async with session.get(url) as response:
                if response.status != 200:
                    raise BootstrapError(
                        f"Download of {url} failed with HTTP {response.status}",
                        step="install_runtime",
                        remediation=["Check the agent can reach nodejs.org"],
                    )
                with open(destination, "wb") as f:
                    async for chunk in response.content.iter_chunked(1 << 16):
                        f.write(chunk)

    def fetch_test_framework(self, repository_url: str, ref: Optional[str] = None) -> Path:
        """
        Clone the test framework into a fresh directory.

        Args:
            repository_url: Git repository URL
            ref: Optional branch, tag or commit

        Returns:
            Path of the checkout

        Raises:
            BootstrapError: If git is missing or the clone fails
        """
        if not self.runner.which("git"):
            raise BootstrapError(
                "git is not available on PATH",
                step="clone",
                remediation=["Install git on the agent"],
            )

        target = self.config.framework_dir
        if target.exists():
            self.logger.info(f"Removing previous framework checkout at {target}")
            _force_remove(target)
        target.parent.mkdir(parents=True, exist_ok=True)

        shown_url = redact_url(repository_url)
        is_commit = bool(ref and _COMMIT_REF.match(ref))

        if not ref:
            clone_args = ["git", "clone", "--depth", "1", repository_url, str(target)]
        elif is_commit:
            clone_args = ["git", "clone", repository_url, str(target)]
        else:
            clone_args = [
                "git", "clone", "--depth", "1", "--branch", ref, repository_url, str(target),
            ]

        self.logger.info(
            f"Cloning test framework from {shown_url}",
            extra={"metadata": {"ref": ref or "default branch"}},
        )
        result = self.runner.run(clone_args)
        if not result.ok:
            raise BootstrapError(
                f"git clone of {shown_url} failed: {result.tail(5).replace(repository_url, shown_url)}",
                step="clone",
                exit_code=result.exit_code,
                remediation=[
                    "Check the repository URL is reachable from the agent",
                    "Check the branch, tag or commit exists" if ref else
                    "Check the repository has a default branch",
                ],
            )

        if is_commit:
            checkout = self.runner.run(["git", "checkout", ref], cwd=target)
            if not checkout.ok:
                raise BootstrapError(
                    f"git checkout {ref} failed: {checkout.tail(5)}",
                    step="checkout",
                    exit_code=checkout.exit_code,
                    remediation=["Check the commit exists in the repository"],
                )

        return target

    def install_framework_dependencies(self, browser: Browser) -> None:
        """
        Install npm packages and one browser.

        Raises:
            BootstrapError: If packages or the browser binary cannot be installed
        """
        framework = self.config.framework_dir
        start_time = time.time()

        result = None
        if (framework / "package-lock.json").exists():
            result = self.runner.run(["npm", "ci"], cwd=framework)
            if not result.ok:
                self.logger.warning(
                    f"npm ci failed with exit code {result.exit_code}, falling back to npm install"
                )
        if result is None or not result.ok:
            result = self.runner.run(["npm", "install"], cwd=framework)
        if not result.ok:
            raise BootstrapError(
                f"npm install failed: {result.tail(10)}",
                step="install_dependencies",
                exit_code=result.exit_code,
                remediation=["Check the agent can reach the npm registry"],
            )

        name = browser.value
        install = self.runner.run(["npx", "playwright", "install", name], cwd=framework)
        if not install.ok:
            raise BootstrapError(
                f"playwright install {name} failed: {install.tail(10)}",
                step="install_browser",
                exit_code=install.exit_code,
            )

        deps = self.runner.run(["npx", "playwright", "install-deps", name], cwd=framework)
        if not deps.ok:
            self.logger.warning(
                f"playwright install-deps {name} failed with exit code {deps.exit_code}; "
                "continuing, the image may already provide them"
            )

        log_performance(
            self.logger, "install_dependencies", time.time() - start_time, browser=name
        )
