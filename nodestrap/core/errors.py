"""
Provisioning errors — the failure vocabulary of a pipeline run.

Every error a step can raise on purpose derives from ``ProvisionError``.
The step runner records the class name next to the message, so the
summary printed at the end of a failed run says *what kind* of thing
broke (a version feed, a file write, an external tool) as well as where.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for all pipeline failures."""


class ResolutionError(ProvisionError):
    """Upstream version feed unreachable, empty, or nothing matched the filter."""


class MutationError(ProvisionError):
    """Backup or write of a configuration file failed."""


class PreconditionCheckError(ProvisionError):
    """The idempotency probe itself could not be executed."""


class FetchError(ProvisionError):
    """HTTP read or download failed."""


class ContextError(ProvisionError):
    """Write-once violation, or a read of a key no earlier step wrote."""


class ExternalToolError(ProvisionError):
    """An external command exited non-zero.

    Carries the command line, exit status and captured streams so the
    failure summary can show the tool's own diagnostics.
    """

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}: {self.stderr.strip()}"
        return base


class ToolNotFoundError(ExternalToolError):
    """The executable for an external command is not installed."""
