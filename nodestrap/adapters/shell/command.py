"""
Command runner — the SINGLE PLACE where ``subprocess.run`` is called.

Package manager, service manager, kubeadm/kubectl, netplan, sysctl:
every external tool the pipeline shells out to goes through
``CommandRunner.run``.  Logging and error translation live here:

    executable missing       → ToolNotFoundError (always, check or not)
    timeout                  → ExternalToolError
    non-zero exit, check=True → ExternalToolError with captured streams

With ``check=False`` a non-zero exit comes back as a normal result;
that is how probes ask "is X in state Y?" without failing.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass, field

from nodestrap.core.errors import ExternalToolError, ToolNotFoundError

logger = logging.getLogger(__name__)

_TAIL = 4000


@dataclass
class CommandResult:
    command: list[str]
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    elapsed_ms: int = 0
    env: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Run external commands with captured output."""

    def __init__(self, default_timeout: int = 600):
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: list[str],
        *,
        check: bool = True,
        timeout: int | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        timeout = timeout or self.default_timeout
        display = shlex.join(cmd)
        logger.debug("Executing: %s", display)

        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        start = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
                env=full_env,
                cwd=cwd,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(
                f"'{cmd[0]}' is not installed or not on PATH", command=cmd
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(
                f"'{display}' timed out after {timeout}s", command=cmd
            ) from e

        result = CommandResult(
            command=cmd,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=(proc.stderr or "")[-_TAIL:],
            elapsed_ms=int((time.monotonic() - start) * 1000),
            env=dict(env or {}),
        )
        logger.debug("→ exit %d in %d ms", result.returncode, result.elapsed_ms)

        if check and not result.ok:
            raise ExternalToolError(
                f"'{display}' failed (exit {result.returncode})",
                command=cmd,
                returncode=result.returncode,
                stdout=result.stdout[-_TAIL:],
                stderr=result.stderr,
            )
        return result
