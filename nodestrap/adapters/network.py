"""Link detection — read the live interface list from ``ip -o link show``."""

from __future__ import annotations

from nodestrap.adapters.shell.command import CommandRunner


def parse_link_names(output: str) -> list[str]:
    """Interface names from one-line ``ip -o link show`` output.

    Lines look like ``2: enp0s3: <BROADCAST,...> mtu 1500 ...``; VLAN
    style names (``eth0.10@eth0``) are cut at the ``@``.
    """
    names = []
    for line in output.splitlines():
        parts = line.split(": ", 2)
        if len(parts) < 2:
            continue
        names.append(parts[1].split("@", 1)[0].strip())
    return names


def detect_interface(runner: CommandRunner, prefixes: list[str]) -> str | None:
    """First link whose name starts with one of ``prefixes``, in kernel order."""
    r = runner.run(["ip", "-o", "link", "show"], timeout=30)
    for name in parse_link_names(r.stdout):
        if any(name.startswith(p) for p in prefixes):
            return name
    return None
