"""
Package manager adapter — apt/dpkg.

Probes (``is_installed``, ``held``) are read-only: a query that runs and
reports "not installed" is a normal False.  A missing ``dpkg-query`` or
``apt-mark`` raises ToolNotFoundError, which the step runner turns into
a fatal probe failure.
"""

from __future__ import annotations

import logging

from nodestrap.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)

_APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


class AptPackageManager:
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    # ── Probes ──────────────────────────────────────────────────

    def is_installed(self, package: str) -> bool:
        r = self._runner.run(
            ["dpkg-query", "-W", "-f=${Status}", package], check=False, timeout=30,
        )
        return r.ok and "install ok installed" in r.stdout

    def missing(self, packages: list[str]) -> list[str]:
        return [p for p in packages if not self.is_installed(p)]

    def held(self) -> set[str]:
        r = self._runner.run(["apt-mark", "showhold"], check=False, timeout=30)
        if not r.ok:
            return set()
        return {line.strip() for line in r.stdout.splitlines() if line.strip()}

    # ── Mutations ───────────────────────────────────────────────

    def update_index(self) -> None:
        self._runner.run(["apt-get", "update", "-y"], env=_APT_ENV)

    def install(self, packages: list[str]) -> None:
        if not packages:
            return
        logger.info("Installing packages: %s", ", ".join(packages))
        self._runner.run(["apt-get", "install", "-y", *packages], env=_APT_ENV)

    def hold(self, packages: list[str]) -> None:
        self._runner.run(["apt-mark", "hold", *packages])
