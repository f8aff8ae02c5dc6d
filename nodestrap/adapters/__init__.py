"""Adapters — narrow bindings to the external tools nodestrap drives.

Public re-exports for convenient access.
"""

from nodestrap.adapters.host import Host
from nodestrap.adapters.http import HttpFetcher
from nodestrap.adapters.shell.command import CommandResult, CommandRunner

__all__ = [
    "CommandResult",
    "CommandRunner",
    "Host",
    "HttpFetcher",
]
