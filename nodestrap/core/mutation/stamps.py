"""
Applied-state stamps — which file contents a service or apply command
has actually picked up.

A restart or ``netplan apply`` leaves no trace in the files it reads, so
a failed attempt is invisible to the next run.  After the command
succeeds, the caller records a digest of the watched files under
``<state_dir>/<name>.sha256``; the step is satisfied only while that
digest still matches.  A missing or stale stamp means "apply again".
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from nodestrap.core.errors import MutationError

logger = logging.getLogger(__name__)


def digest_files(paths: list[Path]) -> str:
    """sha256 over each path and its bytes; an absent file hashes as absent."""
    h = hashlib.sha256()
    for path in paths:
        h.update(str(path).encode("utf-8") + b"\0")
        try:
            h.update(b"present\0" + path.read_bytes())
        except FileNotFoundError:
            h.update(b"absent\0")
        except OSError as e:
            raise MutationError(f"Cannot read {path}: {e}") from e
    return h.hexdigest()


class AppliedStamps:
    def __init__(self, state_dir: Path):
        self.state_dir = state_dir

    def stamp_path(self, name: str) -> Path:
        return self.state_dir / f"{name}.sha256"

    def is_current(self, name: str, paths: list[Path]) -> bool:
        stamp = self.stamp_path(name)
        if not stamp.is_file():
            return False
        return stamp.read_text(encoding="utf-8").strip() == digest_files(paths)

    def record(self, name: str, paths: list[Path]) -> None:
        stamp = self.stamp_path(name)
        try:
            stamp.parent.mkdir(parents=True, exist_ok=True)
            stamp.write_text(digest_files(paths) + "\n", encoding="utf-8")
        except OSError as e:
            raise MutationError(f"Cannot write {stamp}: {e}") from e
        logger.debug("Stamped %s", stamp)
