"""
Configuration mutation — backup, then rewrite or patch a host file.

Two operations:

    replace(path, content)      full rewrite from rendered content
    patch(path, match, replace) line-level rewrite of matching lines only

Both copy an existing target to ``<path>.bak`` before the first byte
changes (one backup is kept; a later mutation overwrites it), write via
a temp file in the same directory plus rename, then apply the file mode
for that file class.  A path that does not exist yet gets no backup.

``patch`` returns how many lines matched.  Zero is not an error here;
the caller decides whether an absent key is fatal.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import shutil
import stat
import tempfile
from pathlib import Path
from typing import Callable

from nodestrap.core.errors import MutationError

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"

# Paths whose contents carry credentials or routing and must not be
# world-readable.  Matched with fnmatch against the full path.
DEFAULT_FILE_MODES: dict[str, int] = {
    "*/netplan/*.yaml": 0o600,
}


class KeyValueRule:
    """Match ``<indent><key><sep><value>`` lines and swap only the value.

    ``separator`` is ``":"`` for YAML-ish files and ``"="`` for TOML /
    sysctl style.  Indentation, the key token, and the whitespace around
    the separator survive byte-for-byte; so does the line ending.
    """

    def __init__(self, key: str, value: str, separator: str = ":"):
        self.key = key
        self.value = value
        self.separator = separator
        self._pattern = re.compile(
            r"^(?P<head>[ \t]*" + re.escape(key) + r"[ \t]*" + re.escape(separator) + r"[ \t]*)"
            r"(?P<value>.*?)(?P<eol>\r?\n)?$",
            re.DOTALL,
        )

    def matches(self, line: str) -> bool:
        return self._pattern.match(line) is not None

    def replace(self, line: str) -> str:
        m = self._pattern.match(line)
        if m is None:
            return line
        return f"{m.group('head')}{self.value}{m.group('eol') or ''}"

    def count_in(self, text: str) -> int:
        """Lines of ``text`` that already carry exactly this key and value."""
        count = 0
        for line in text.splitlines(keepends=True):
            m = self._pattern.match(line)
            if m is not None and m.group("value").strip() == self.value:
                count += 1
        return count

    def __repr__(self) -> str:
        return f"KeyValueRule({self.key!r}{self.separator}{self.value!r})"


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


class ConfigMutator:
    """Backup-before-write file mutation."""

    def __init__(self, modes: dict[str, int] | None = None):
        self._modes = DEFAULT_FILE_MODES if modes is None else modes

    # ── Queries ─────────────────────────────────────────────────

    def mode_for(self, path: Path) -> int | None:
        for pattern, mode in self._modes.items():
            if fnmatch.fnmatch(str(path), pattern):
                return mode
        return None

    def is_current(self, path: Path, content: bytes | str, mode: int | None = None) -> bool:
        """True when ``path`` already holds ``content`` (and ``mode``, if any applies)."""
        try:
            if path.read_bytes() != _as_bytes(content):
                return False
            wanted = mode if mode is not None else self.mode_for(path)
            if wanted is not None and stat.S_IMODE(path.stat().st_mode) != wanted:
                return False
        except FileNotFoundError:
            return False
        except OSError as e:
            raise MutationError(f"Cannot inspect {path}: {e}") from e
        return True

    # ── Mutations ───────────────────────────────────────────────

    def backup(self, path: Path) -> Path | None:
        """Copy ``path`` to its backup location.  None if there was nothing to back up."""
        if not path.exists():
            return None
        dest = backup_path(path)
        try:
            shutil.copy2(path, dest)
        except OSError as e:
            raise MutationError(f"Cannot back up {path} to {dest}: {e}") from e
        logger.info("Backed up %s → %s", path, dest)
        return dest

    def replace(self, path: Path, content: bytes | str, *, mode: int | None = None) -> None:
        """Back up ``path`` if present, then atomically write ``content``."""
        self.backup(path)
        self._write(path, _as_bytes(content), mode)
        logger.info("Wrote %s", path)

    def patch(
        self,
        path: Path,
        match_rule: Callable[[str], bool],
        replacement_rule: Callable[[str], str],
        *,
        mode: int | None = None,
    ) -> int:
        """Rewrite every line satisfying ``match_rule`` through ``replacement_rule``.

        Returns:
            Number of lines that matched.

        Raises:
            MutationError: If the file cannot be read, backed up, or written.
        """
        try:
            original = path.read_bytes()
        except OSError as e:
            raise MutationError(f"Cannot read {path}: {e}") from e

        text = original.decode("utf-8", errors="surrogateescape")
        out: list[str] = []
        matched = 0
        for line in text.splitlines(keepends=True):
            if match_rule(line):
                matched += 1
                out.append(replacement_rule(line))
            else:
                out.append(line)

        self.backup(path)
        self._write(path, "".join(out).encode("utf-8", errors="surrogateescape"), mode)
        if matched:
            logger.info("Patched %d line(s) in %s", matched, path)
        else:
            logger.warning("Patch matched no lines in %s", path)
        return matched

    def set_value(
        self,
        path: Path,
        key: str,
        value: str,
        *,
        separator: str = ":",
        mode: int | None = None,
    ) -> int:
        """Patch the value of every ``key<separator>`` line.  Returns the match count."""
        rule = KeyValueRule(key, value, separator)
        return self.patch(path, rule.matches, rule.replace, mode=mode)

    # ── Internals ───────────────────────────────────────────────

    def _write(self, path: Path, data: bytes, mode: int | None) -> None:
        wanted = mode if mode is not None else self.mode_for(path)
        try:
            if wanted is None and path.exists():
                wanted = stat.S_IMODE(path.stat().st_mode)
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
            )
        except OSError as e:
            raise MutationError(f"Cannot prepare write of {path}: {e}") from e

        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, wanted if wanted is not None else 0o644)
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise MutationError(f"Cannot write {path}: {e}") from e


def _as_bytes(content: bytes | str) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content
