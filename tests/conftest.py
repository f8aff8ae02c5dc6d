"""
Shared test fixtures — a simulated host behind the command-runner and
HTTP-fetcher seams, so pipelines run end to end against a temp root
without touching the network or the real machine.
"""

from __future__ import annotations

import io
import json
import shlex
import tarfile
from pathlib import Path
from typing import Callable

import pytest

from nodestrap.adapters.host import Host
from nodestrap.adapters.http import HttpFetcher
from nodestrap.adapters.shell.command import CommandResult, CommandRunner
from nodestrap.core.errors import ExternalToolError, FetchError, ToolNotFoundError
from nodestrap.core.models.config import NodestrapConfig

DEFAULT_CONTAINERD_CONFIG = """\
version = 2

[plugins]
  [plugins."io.containerd.grpc.v1.cri"]
    sandbox_image = "registry.k8s.io/pause:3.8"
    [plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
            BinaryName = ""
            SystemdCgroup = false
"""

CONTAINERD_UNIT = """\
[Unit]
Description=containerd container runtime

[Service]
ExecStart=/usr/local/bin/containerd

[Install]
WantedBy=multi-user.target
"""

CUSTOM_RESOURCES = """\
apiVersion: operator.tigera.io/v1
kind: Installation
metadata:
  name: default
spec:
  calicoNetwork:
    ipPools:
    - name: default-ipv4-ippool
      blockSize: 26
      cidr: 192.168.0.0/16
      encapsulation: VXLANCrossSubnet
"""

FSTAB = """\
# /etc/fstab: static file system information.
UUID=0a1b2c3d / ext4 defaults 0 1
/swap.img	none	swap	sw	0	0
"""


def make_tarball(members: dict[str, bytes]) -> bytes:
    """gzip tarball holding ``members`` as regular executable files."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


# ── Fakes at the adapter seams ──────────────────────────────────────


class FakeFetcher(HttpFetcher):
    """Serves registered URLs; anything else is a 404."""

    def __init__(self, responses: dict | None = None):
        super().__init__()
        self.responses: dict[str, bytes] = {}
        self.requested: list[str] = []
        for url, body in (responses or {}).items():
            self.add(url, body)

    def add(self, url: str, body) -> None:
        if isinstance(body, (list, dict)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.responses[url] = body

    def get_bytes(self, url: str, *, accept: str | None = None) -> bytes:
        self.requested.append(url)
        if url not in self.responses:
            raise FetchError(f"GET {url} failed: HTTP 404 Not Found")
        return self.responses[url]

    def download(self, url: str, dest: Path) -> Path:
        data = self.get_bytes(url)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return dest


Handler = Callable[[list[str], "str | None"], "str | tuple[int, str] | None"]


class FakeRunner(CommandRunner):
    """Records every command and answers from registered handlers.

    The handler with the longest matching command prefix wins.  A
    handler returns None (exit 0, no output), a string (exit 0, stdout)
    or ``(returncode, stdout)``.  Commands with no handler behave like a
    missing executable.
    """

    def __init__(self):
        super().__init__()
        self.calls: list[list[str]] = []
        self._handlers: dict[tuple[str, ...], Handler] = {}

    def on(self, prefix: list[str] | tuple[str, ...], handler: Handler) -> None:
        self._handlers[tuple(prefix)] = handler

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)

    def count(self, *prefix: str) -> int:
        return sum(1 for c in self.calls if tuple(c[: len(prefix)]) == prefix)

    def run(self, cmd, *, check=True, timeout=None, env=None, input=None, cwd=None):
        self.calls.append(list(cmd))
        matches = [p for p in self._handlers if tuple(cmd[: len(p)]) == p]
        if not matches:
            raise ToolNotFoundError(f"'{cmd[0]}' is not installed or not on PATH", command=cmd)
        answer = self._handlers[max(matches, key=len)](list(cmd), input)

        if answer is None:
            returncode, stdout = 0, ""
        elif isinstance(answer, str):
            returncode, stdout = 0, answer
        else:
            returncode, stdout = answer

        result = CommandResult(
            command=list(cmd), returncode=returncode, stdout=stdout, env=dict(env or {}),
        )
        if check and not result.ok:
            raise ExternalToolError(
                f"'{shlex.join(cmd)}' failed (exit {returncode})",
                command=list(cmd),
                returncode=returncode,
                stdout=stdout,
                stderr=f"{cmd[0]}: simulated failure",
            )
        return result


# ── Simulated host ──────────────────────────────────────────────────


class SimHost:
    """A stateful stand-in for one machine rooted at a temp directory.

    Package, service, kernel, network and cluster state live in plain
    attributes; files live under ``root``.  Mutating commands change that
    state so probes see the effect, exactly like on a real host.
    """

    def __init__(self, root: Path, config: NodestrapConfig):
        self.root = root
        self.config = config
        self.runner = FakeRunner()
        self.fetcher = FakeFetcher()
        self.host = Host(root, runner=self.runner, fetcher=self.fetcher)

        self.swap_on = True
        self.installed: set[str] = set()
        self.held: set[str] = set()
        self.enabled: set[str] = set()
        self.active: set[str] = set()
        self.restarts: list[str] = []
        self.sysctl: dict[str, str] = {}
        self.modules: list[str] = []
        self.hostname = "ubuntu"
        self.links = ["lo", "enp0s3", "docker0"]
        self.objects: set[tuple[str, str]] = set()

        self.path("/etc").mkdir(parents=True, exist_ok=True)
        self.path("/etc/fstab").write_text(FSTAB)
        self._register()

    def path(self, host_path: str) -> Path:
        return self.host.path(host_path)

    @property
    def containerd_binary(self) -> Path:
        return self.path(self.config.containerd.install_prefix) / "bin" / "containerd"

    @property
    def admin_conf(self) -> Path:
        return self.path(self.config.cluster.kubeconfig)

    # ── Upstream feeds ──

    def publish_node_artifacts(
        self,
        containerd_tags: tuple[str, ...] = ("v1.6.0", "v1.7.2", "v1.7.0-rc1"),
        containerd: str = "v1.7.2",
        runc: str = "v1.1.12",
        cni: str = "v1.5.1",
        stable: str = "v1.31.2",
    ) -> None:
        cfg, arch = self.config, self.config.arch
        add = self.fetcher.add

        add(cfg.containerd.releases_url, [{"tag_name": t} for t in containerd_tags])
        add(
            cfg.containerd.archive_url.format(tag=containerd, version=containerd[1:], arch=arch),
            make_tarball({"bin/containerd": containerd.encode(), "bin/ctr": b"ctr"}),
        )
        add(cfg.containerd.unit_url, CONTAINERD_UNIT)

        add(cfg.runc.releases_url, [{"tag_name": "v1.2.0-rc.1"}, {"tag_name": runc}])
        add(cfg.runc.binary_url.format(tag=runc, version=runc[1:], arch=arch), runc[1:])

        add(cfg.cni.releases_url, [{"tag_name": cni}])
        add(
            cfg.cni.archive_url.format(tag=cni, version=cni[1:], arch=arch),
            make_tarball({name: b"\x7fELF" for name in cfg.cni.required_plugins}),
        )

        add(cfg.kubernetes.stable_url, stable + "\n")
        channel = ".".join(stable.split(".")[:2])
        add(
            cfg.kubernetes.feed_url.format(channel=channel) + "Release.key",
            "-----BEGIN PGP PUBLIC KEY BLOCK-----\nfake\n-----END PGP PUBLIC KEY BLOCK-----\n",
        )

    def publish_cluster_artifacts(self, custom_resources: str = CUSTOM_RESOURCES) -> None:
        self.fetcher.add(self.config.cluster.custom_resources_url, custom_resources)

    # ── Command handlers ──

    def _register(self) -> None:
        on = self.runner.on

        on(["swapon", "--show"], lambda c, i: "/swap.img file 2G 0B -2\n" if self.swap_on else "")
        on(["swapoff"], lambda c, i: setattr(self, "swap_on", False))

        on(["dpkg-query"], self._dpkg_query)
        on(["apt-get", "update"], lambda c, i: None)
        on(["apt-get", "install"], lambda c, i: self.installed.update(c[3:]))
        on(["apt-mark", "showhold"], lambda c, i: "".join(f"{p}\n" for p in sorted(self.held)))
        on(["apt-mark", "hold"], lambda c, i: self.held.update(c[2:]))

        on(["modprobe"], lambda c, i: self.modules.append(c[1]))
        on(["lsmod"], self._lsmod)
        on(["sysctl", "-n"], self._sysctl_get)
        on(["sysctl", "--system"], self._sysctl_system)

        on(["systemctl", "is-enabled"], lambda c, i: (0, "enabled\n") if c[2] in self.enabled else (1, "disabled\n"))
        on(["systemctl", "is-active"], lambda c, i: (0, "active\n") if c[2] in self.active else (3, "inactive\n"))
        on(["systemctl", "daemon-reload"], lambda c, i: None)
        on(["systemctl", "enable"], self._enable)
        on(["systemctl", "start"], lambda c, i: self.active.add(c[2]))
        on(["systemctl", "stop"], lambda c, i: self.active.discard(c[2]))
        on(["systemctl", "restart"], self._restart)

        on([str(self.containerd_binary), "--version"], lambda c, i: (
            f"containerd github.com/containerd/containerd {Path(c[0]).read_text().strip()} 1677a17\n"
        ))
        on([str(self.containerd_binary), "config", "default"], lambda c, i: DEFAULT_CONTAINERD_CONFIG)
        on([str(self.path(self.config.runc.install_path)), "--version"], lambda c, i: (
            f"runc version {Path(c[0]).read_text().strip()}\ncommit: v1.1.12-0-g51d5e946\n"
        ))
        on(["gpg"], self._gpg)

        on(["hostname"], lambda c, i: self.hostname + "\n")
        on(["hostnamectl", "set-hostname"], lambda c, i: setattr(self, "hostname", c[2]))
        on(["ip", "-o", "link", "show"], lambda c, i: "".join(
            f"{n}: {name}: <BROADCAST,MULTICAST,UP> mtu 1500 qdisc noop state UP\n"
            for n, name in enumerate(self.links, start=1)
        ))
        on(["netplan", "apply"], lambda c, i: None)

        on(["kubeadm", "config", "images", "pull"], lambda c, i: "[config/images] Pulled\n")
        on(["kubeadm", "init"], self._kubeadm_init)
        on(["kubectl", "version", "--client"], lambda c, i: "Client Version: v1.31.2\nKustomize Version: v5.4.2\n")
        on(["kubectl", "get", "--raw=/readyz"], lambda c, i: "ok" if self.admin_conf.exists() else (1, ""))
        on(["kubectl", "get"], lambda c, i: (0, "") if (c[2], c[3]) in self.objects else (1, ""))
        on(["kubectl", "create", "-f"], self._kubectl_create)
        on(["kubectl", "apply", "-f"], lambda c, i: self.objects.add(("installation", "default")))

    def _dpkg_query(self, cmd, _input):
        if cmd[-1] in self.installed:
            return 0, "install ok installed"
        return 1, ""

    def _lsmod(self, _cmd, _input):
        rows = "".join(f"{name:<24}16384  0\n" for name in self.modules)
        return "Module                  Size  Used by\n" + rows

    def _sysctl_get(self, cmd, _input):
        key = cmd[2]
        if key not in self.sysctl:
            return 255, ""
        return 0, self.sysctl[key] + "\n"

    def _sysctl_system(self, _cmd, _input):
        for conf in sorted(self.path("/etc/sysctl.d").glob("*.conf")):
            for line in conf.read_text().splitlines():
                if "=" in line and not line.lstrip().startswith("#"):
                    key, value = line.split("=", 1)
                    self.sysctl[key.strip()] = value.strip()

    def _enable(self, cmd, _input):
        self.enabled.add(cmd[-1])
        if "--now" in cmd:
            self.active.add(cmd[-1])

    def _restart(self, cmd, _input):
        self.restarts.append(cmd[2])
        self.active.add(cmd[2])

    def _gpg(self, cmd, key):
        Path(cmd[cmd.index("-o") + 1]).write_bytes(b"dearmored:" + (key or "").encode())

    def _kubeadm_init(self, _cmd, _input):
        self.admin_conf.parent.mkdir(parents=True, exist_ok=True)
        self.admin_conf.write_text("apiVersion: v1\nkind: Config\n")
        return "Your Kubernetes control-plane has initialized successfully!\n"

    def _kubectl_create(self, _cmd, _input):
        cl = self.config.cluster
        self.objects.add(("deployment", cl.operator_deployment))
        self.objects.add(("crd", "installations.operator.tigera.io"))


# ── Fixtures ────────────────────────────────────────────────────────


@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    """Return an empty directory standing in for the host's /."""
    root = tmp_path / "root"
    root.mkdir()
    return root


@pytest.fixture
def config() -> NodestrapConfig:
    return NodestrapConfig()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def sim(target_root: Path, config: NodestrapConfig) -> SimHost:
    return SimHost(target_root, config)


@pytest.fixture
def make_sim(target_root: Path) -> Callable[[NodestrapConfig], SimHost]:
    """Build a SimHost for a non-default configuration."""
    return lambda config: SimHost(target_root, config)
