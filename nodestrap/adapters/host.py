"""
Host facade — one object bundling everything steps touch on the machine.

``root`` re-targets every absolute host path (``/etc/hosts`` →
``<root>/etc/hosts``), which is how the pipelines run against a staging
tree or a test directory.  The default root is ``/``.

Only file paths move.  The runner, package manager and service manager
always act on the running machine, and so do probes of live kernel
state.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from nodestrap.adapters.http import HttpFetcher
from nodestrap.adapters.kube import Kubeadm, Kubectl
from nodestrap.adapters.packages import AptPackageManager
from nodestrap.adapters.services import SystemdServiceManager
from nodestrap.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)

_SEMVER_RE = re.compile(r"v?(\d+\.\d+\.\d+)")


class Host:
    def __init__(
        self,
        root: Path | str = "/",
        runner: CommandRunner | None = None,
        fetcher: HttpFetcher | None = None,
    ):
        self.root = Path(root)
        self.runner = runner or CommandRunner()
        self.fetcher = fetcher or HttpFetcher()
        self.packages = AptPackageManager(self.runner)
        self.services = SystemdServiceManager(self.runner)
        self.kubeadm = Kubeadm(self.runner)

    def path(self, host_path: str) -> Path:
        """Map an absolute host path under ``root``."""
        return self.root / host_path.lstrip("/")

    def kubectl(self, kubeconfig: str) -> Kubectl:
        return Kubectl(self.runner, str(self.path(kubeconfig)))

    def tool_version(self, cmd: list[str]) -> str | None:
        """``X.Y.Z`` from a ``--version`` style command; None if not installed.

        ``cmd[0]`` is an already-mapped binary path.  A binary that exists
        but cannot report a version is treated as absent.
        """
        if not Path(cmd[0]).exists():
            return None
        r = self.runner.run(cmd, check=False, timeout=30)
        if not r.ok:
            return None
        m = _SEMVER_RE.search(r.stdout + r.stderr)
        return m.group(1) if m else None

    def current_hostname(self) -> str:
        r = self.runner.run(["hostname"], timeout=30)
        return r.stdout.strip()

    def set_hostname(self, name: str) -> None:
        self.runner.run(["hostnamectl", "set-hostname", name])
