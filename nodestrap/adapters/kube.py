"""
Cluster CLI adapters — kubeadm and kubectl.

kubectl calls carry ``KUBECONFIG`` explicitly so they work right after
``kubeadm init`` without any shell profile changes.
"""

from __future__ import annotations

import logging
import re

from nodestrap.adapters.shell.command import CommandRunner
from nodestrap.core.errors import ExternalToolError

logger = logging.getLogger(__name__)

_CLIENT_VERSION_RE = re.compile(r"^\s*Client Version:\s*(\S+)", re.MULTILINE)


def parse_client_version(output: str) -> str | None:
    """Extract ``v1.32.2`` from a ``Client Version: v1.32.2`` line."""
    m = _CLIENT_VERSION_RE.search(output)
    return m.group(1) if m else None


class Kubeadm:
    def __init__(self, runner: CommandRunner):
        self._runner = runner

    def pull_images(self) -> str:
        return self._runner.run(["kubeadm", "config", "images", "pull"], timeout=1200).stdout

    def init(self, *, pod_network_cidr: str, kubernetes_version: str, node_name: str) -> str:
        logger.info(
            "kubeadm init (cidr=%s, version=%s, node=%s)",
            pod_network_cidr, kubernetes_version, node_name,
        )
        return self._runner.run(
            [
                "kubeadm", "init",
                "--pod-network-cidr", pod_network_cidr,
                "--kubernetes-version", kubernetes_version,
                "--node-name", node_name,
            ],
            timeout=1800,
        ).stdout


class Kubectl:
    def __init__(self, runner: CommandRunner, kubeconfig: str):
        self._runner = runner
        self.kubeconfig = kubeconfig

    @property
    def _env(self) -> dict[str, str]:
        return {"KUBECONFIG": self.kubeconfig}

    def client_version(self) -> str:
        r = self._runner.run(["kubectl", "version", "--client"], env=self._env, timeout=60)
        version = parse_client_version(r.stdout)
        if not version:
            raise ExternalToolError(
                "Unable to determine the client version from 'kubectl version --client'",
                command=r.command,
                stdout=r.stdout,
            )
        return version

    def api_ready(self) -> bool:
        r = self._runner.run(
            ["kubectl", "get", "--raw=/readyz"], env=self._env, check=False, timeout=30,
        )
        return r.ok and r.stdout.strip() == "ok"

    def exists(self, kind: str, name: str, namespace: str | None = None) -> bool:
        cmd = ["kubectl", "get", kind, name]
        if namespace:
            cmd += ["-n", namespace]
        return self._runner.run(cmd, env=self._env, check=False, timeout=60).ok

    def create(self, manifest: str) -> str:
        return self._runner.run(["kubectl", "create", "-f", manifest], env=self._env).stdout

    def apply(self, manifest: str) -> str:
        return self._runner.run(["kubectl", "apply", "-f", manifest], env=self._env).stdout
