"""
Host identity and network steps.

    reconcile-hosts-file → set-hostname → render-network-config →
    apply-network-config

The operator picks this machine's name from the configured hosts table
through the injected Prompter, once per run; the address for that name
and the auto-detected ethernet interface feed the netplan file.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from nodestrap.adapters.network import detect_interface
from nodestrap.core import context as keys
from nodestrap.core.errors import ProvisionError
from nodestrap.core.models.config import HostSettings
from nodestrap.core.models.step import Step
from nodestrap.core.pipeline.base import PipelineEnv

logger = logging.getLogger(__name__)

NETPLAN_MODE = 0o600


def reconcile_hosts(existing: str, table: dict[str, str]) -> str:
    """Drop lines ending in a table hostname, then append the table sorted by name."""
    kept = []
    for line in existing.splitlines(keepends=True):
        tokens = line.split()
        if tokens and not tokens[0].startswith("#") and len(tokens) >= 2 and tokens[-1] in table:
            continue
        kept.append(line)
    if kept and not kept[-1].endswith("\n"):
        kept[-1] += "\n"
    for name in sorted(table):
        kept.append(f"{table[name]}    {name}\n")
    return "".join(kept)


def render_netplan(interface: str, address: str, settings: HostSettings) -> str:
    doc = {
        "network": {
            "version": 2,
            "renderer": "networkd",
            "ethernets": {
                interface: {
                    "dhcp4": False,
                    "addresses": [f"{address}/{settings.prefix_length}"],
                    "routes": [{"to": "default", "via": settings.gateway}],
                    "nameservers": {"addresses": list(settings.nameservers)},
                }
            },
        }
    }
    return yaml.safe_dump(doc, default_flow_style=False, sort_keys=False)


def host_steps(env: PipelineEnv) -> list[Step]:
    host, hs, mutator = env.host, env.config.host, env.mutator
    hosts_file = host.path(hs.hosts_file)
    netplan_dir = host.path(hs.netplan_dir)

    def desired_hosts() -> str:
        existing = hosts_file.read_text() if hosts_file.exists() else ""
        return reconcile_hosts(existing, hs.hosts)

    # ── Hostname ──

    def ask_hostname() -> str:
        if env.prompter is None:
            raise ProvisionError("Hostname selection needs an operator prompt; none configured")
        return env.prompter.choose("Select the hostname to configure:", sorted(hs.hosts))

    def chosen() -> str:
        return env.context.obtain(keys.CHOSEN_HOSTNAME, ask_hostname)

    def hostname_set() -> bool:
        return host.current_hostname() == chosen()

    # ── Network ──

    def interface() -> str:
        def detect() -> str:
            name = detect_interface(host.runner, hs.interface_prefixes)
            if name is None:
                raise ProvisionError(
                    f"No network interface starting with {', '.join(hs.interface_prefixes)}"
                )
            logger.info("Detected interface %s", name)
            return name

        return env.context.obtain(keys.DETECTED_INTERFACE, detect)

    def netplan_path() -> Path:
        def pick() -> str:
            existing = sorted(netplan_dir.glob("*.yaml")) if netplan_dir.is_dir() else []
            return str(existing[0] if existing else netplan_dir / hs.netplan_file)

        return Path(env.context.obtain(keys.NETWORK_CONFIG_PATH, pick))

    def desired_netplan() -> str:
        return render_netplan(interface(), hs.hosts[chosen()], hs)

    def netplan_current() -> bool:
        return mutator.is_current(netplan_path(), desired_netplan(), mode=NETPLAN_MODE)

    def network_applied() -> bool:
        return env.stamps.is_current("netplan", [netplan_path()])

    def network_up_to_date() -> bool:
        return not env.context.get(keys.NETWORK_CONFIG_CHANGED, False) and network_applied()

    def apply_netplan() -> str:
        out = host.runner.run(["netplan", "apply"]).stdout
        env.stamps.record("netplan", [netplan_path()])
        return out

    def write_netplan() -> str:
        path = netplan_path()
        mutator.replace(path, desired_netplan(), mode=NETPLAN_MODE)
        env.context.set(keys.NETWORK_CONFIG_CHANGED, True)
        return str(path)

    return [
        Step(
            name="reconcile-hosts-file",
            description="Make /etc/hosts carry exactly one line per cluster host",
            precondition=lambda: mutator.is_current(hosts_file, desired_hosts()),
            action=lambda: mutator.replace(hosts_file, desired_hosts()),
        ),
        Step(
            name="set-hostname",
            description="Set the system hostname to the operator's choice",
            precondition=hostname_set,
            action=lambda: host.set_hostname(chosen()),
            postcondition=hostname_set,
        ),
        Step(
            name="render-network-config",
            description="Static address, default route and nameservers via netplan",
            precondition=netplan_current,
            action=write_netplan,
            postcondition=netplan_current,
        ),
        Step(
            name="apply-network-config",
            description="netplan apply, until the current file has been applied once",
            precondition=network_up_to_date,
            action=apply_netplan,
            postcondition=network_applied,
        ),
    ]
