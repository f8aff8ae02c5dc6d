"""
Logging setup — console output for the operator, optional transcript file.

``setup_logging`` runs once, from the CLI group callback, before any
pipeline is built.  Modules only ever call ``logging.getLogger(__name__)``.

Console verbosity comes from the CLI flags, falling back to
NODESTRAP_LOG_LEVEL and then WARNING.  At WARNING the operator sees bare
failure messages; INFO adds one timestamped line per step transition;
DEBUG adds every command line and context write.

A transcript (NODESTRAP_LOG_FILE, level NODESTRAP_LOG_FILE_LEVEL) is
appended to, never truncated, so several runs on the same host end up in
one file; each line carries the id of the run that wrote it.
"""

from __future__ import annotations

import logging
import sys

# level ceiling → (format, datefmt) for the console
_CONSOLE_FORMATS: list[tuple[int, str, str | None]] = [
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
]
_CONSOLE_DEFAULT = ("%(message)s", None)

_TRANSCRIPT_FORMAT = "%(asctime)s [%(run_id)s] %(levelname)-7s %(name)s — %(message)s"
_TRANSCRIPT_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Libraries that log per request; kept at WARNING unless debugging.
_CHATTY = ("urllib3", "urllib.request", "charset_normalizer")


class RunIdFilter(logging.Filter):
    """Attach ``run_id`` to each record passing through a handler."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        return True


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = _CONSOLE_DEFAULT
    for ceiling, candidate, candidate_datefmt in _CONSOLE_FORMATS:
        if level <= ceiling:
            fmt, datefmt = candidate, candidate_datefmt
            break
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _transcript_handler(path: str, level: int, run_id: str) -> logging.Handler:
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.addFilter(RunIdFilter(run_id))
    handler.setFormatter(logging.Formatter(_TRANSCRIPT_FORMAT, datefmt=_TRANSCRIPT_DATEFMT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
    run_id: str = "-",
) -> None:
    """Install the console handler and, if asked, the transcript handler.

    Args:
        level: Console level name.
        log_file: Transcript path; appended to.
        log_file_level: Transcript level name (default: same as ``level``).
        quiet_third_party: Hold chatty library loggers at WARNING when the
            console is not at DEBUG.
        run_id: Written on every transcript line.
    """
    console_level = _parse_level(level)
    handlers = [_console_handler(console_level)]

    if log_file:
        transcript_level = _parse_level(log_file_level) if log_file_level else console_level
        handlers.append(_transcript_handler(log_file, transcript_level, run_id))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _CHATTY:
            logging.getLogger(name).setLevel(logging.WARNING)

    # A closed stream (e.g. after a piped stdout goes away) must not crash a run.
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    """Level name → numeric level; unknown or empty names mean WARNING."""
    numeric = logging.getLevelName(level.upper()) if level else None
    return numeric if isinstance(numeric, int) else logging.WARNING
