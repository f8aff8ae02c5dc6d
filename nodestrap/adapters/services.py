"""
Service manager adapter — systemd via ``systemctl``.

``is_enabled`` / ``is_active`` treat a non-zero answer as "not in that
state yet", never as an error.
"""

from __future__ import annotations

import logging

from nodestrap.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)


class SystemdServiceManager:
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    def is_enabled(self, service: str) -> bool:
        r = self._runner.run(["systemctl", "is-enabled", service], check=False, timeout=30)
        return r.ok and r.stdout.strip() == "enabled"

    def is_active(self, service: str) -> bool:
        r = self._runner.run(["systemctl", "is-active", service], check=False, timeout=30)
        return r.ok and r.stdout.strip() == "active"

    def daemon_reload(self) -> None:
        self._runner.run(["systemctl", "daemon-reload"])

    def enable(self, service: str, *, now: bool = False) -> None:
        cmd = ["systemctl", "enable", service]
        if now:
            cmd.insert(2, "--now")
        self._runner.run(cmd)

    def start(self, service: str) -> None:
        self._runner.run(["systemctl", "start", service])

    def restart(self, service: str) -> None:
        logger.info("Restarting %s", service)
        self._runner.run(["systemctl", "restart", service])
