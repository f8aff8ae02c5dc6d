"""
Settings models — the validated shape of nodestrap.yml.

Every field has a default taken from the reference node layout, so an
absent config file still yields a usable configuration.  URL templates
use ``{version}`` (tag without the leading ``v``), ``{tag}`` (the raw
release tag), ``{arch}`` and ``{channel}`` placeholders.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

STRICT_TAG_FILTER = r"^v\d+\.\d+\.\d+$"


class PrerequisitesSettings(BaseModel):
    packages: list[str] = Field(
        default_factory=lambda: [
            "ca-certificates",
            "gnupg",
            "lsb-release",
            "apt-transport-https",
            "gpg",
            "curl",
        ]
    )


class SwapSettings(BaseModel):
    fstab: str = "/etc/fstab"


class KernelSettings(BaseModel):
    modules: list[str] = Field(default_factory=lambda: ["overlay", "br_netfilter"])
    modules_file: str = "/etc/modules-load.d/containerd.conf"
    sysctl: dict[str, str] = Field(
        default_factory=lambda: {
            "net.bridge.bridge-nf-call-iptables": "1",
            "net.ipv4.ip_forward": "1",
            "net.bridge.bridge-nf-call-ip6tables": "1",
        }
    )
    sysctl_file: str = "/etc/sysctl.d/99-kubernetes-cri.conf"


class ContainerdSettings(BaseModel):
    releases_url: str = "https://api.github.com/repos/containerd/containerd/releases?per_page=100"
    release_filter: str = r"^v1\.\d+\.\d+$"
    archive_url: str = (
        "https://github.com/containerd/containerd/releases/download/"
        "{tag}/containerd-{version}-linux-{arch}.tar.gz"
    )
    unit_url: str = "https://raw.githubusercontent.com/containerd/containerd/main/containerd.service"
    unit_path: str = "/etc/systemd/system/containerd.service"
    install_prefix: str = "/usr/local"
    config_path: str = "/etc/containerd/config.toml"
    cgroup_key: str = "SystemdCgroup"
    cgroup_value: str = "true"
    service: str = "containerd"


class RuncSettings(BaseModel):
    releases_url: str = "https://api.github.com/repos/opencontainers/runc/releases?per_page=100"
    release_filter: str = STRICT_TAG_FILTER
    binary_url: str = "https://github.com/opencontainers/runc/releases/download/{tag}/runc.{arch}"
    install_path: str = "/usr/local/sbin/runc"


class CniSettings(BaseModel):
    releases_url: str = (
        "https://api.github.com/repos/containernetworking/plugins/releases?per_page=100"
    )
    release_filter: str = STRICT_TAG_FILTER
    archive_url: str = (
        "https://github.com/containernetworking/plugins/releases/download/"
        "{tag}/cni-plugins-linux-{arch}-{tag}.tgz"
    )
    plugin_dir: str = "/opt/cni/bin"
    required_plugins: list[str] = Field(
        default_factory=lambda: ["bridge", "host-local", "loopback"]
    )


class KubernetesSettings(BaseModel):
    stable_url: str = "https://dl.k8s.io/release/stable.txt"
    feed_url: str = "https://pkgs.k8s.io/core:/stable:/{channel}/deb/"
    keyring_path: str = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
    sources_list: str = "/etc/apt/sources.list.d/kubernetes.list"
    packages: list[str] = Field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])


class ClusterSettings(BaseModel):
    pod_network_cidr: str = "10.10.0.0/16"
    node_name: str | None = None
    kubeconfig: str = "/etc/kubernetes/admin.conf"
    operator_manifest_url: str = (
        "https://raw.githubusercontent.com/projectcalico/calico/v3.29.1/manifests/tigera-operator.yaml"
    )
    operator_namespace: str = "tigera-operator"
    operator_deployment: str = "tigera-operator"
    custom_resources_url: str = (
        "https://raw.githubusercontent.com/projectcalico/calico/v3.29.1/manifests/custom-resources.yaml"
    )
    installation_name: str = "default"
    workdir: str = "/var/lib/nodestrap"
    ready_timeout: float = 300.0
    poll_interval: float = 5.0


class HostSettings(BaseModel):
    hosts: dict[str, str] = Field(
        default_factory=lambda: {
            "k8-master-node-1": "192.168.100.51",
            "k8-master-node-2": "192.168.100.52",
            "k8-master-node-3": "192.168.100.53",
            "k8-worker-node-1": "192.168.100.61",
            "k8-worker-node-2": "192.168.100.62",
            "k8-worker-node-3": "192.168.100.63",
        }
    )
    hosts_file: str = "/etc/hosts"
    prefix_length: int = 24
    gateway: str = "192.168.100.1"
    nameservers: list[str] = Field(default_factory=lambda: ["8.8.8.8", "4.2.2.2"])
    netplan_dir: str = "/etc/netplan"
    netplan_file: str = "99-custom-config.yaml"
    interface_prefixes: list[str] = Field(default_factory=lambda: ["en", "eth"])


class HaproxySettings(BaseModel):
    config_source: str = "haproxy.cfg"
    config_path: str = "/etc/haproxy/haproxy.cfg"
    package: str = "haproxy"
    service: str = "haproxy"


class NodestrapConfig(BaseModel):
    """Root settings — loaded from nodestrap.yml, or all defaults."""

    version: int = 1
    arch: str = "amd64"
    state_dir: str = "/var/lib/nodestrap/applied"

    prerequisites: PrerequisitesSettings = Field(default_factory=PrerequisitesSettings)
    swap: SwapSettings = Field(default_factory=SwapSettings)
    kernel: KernelSettings = Field(default_factory=KernelSettings)
    containerd: ContainerdSettings = Field(default_factory=ContainerdSettings)
    runc: RuncSettings = Field(default_factory=RuncSettings)
    cni: CniSettings = Field(default_factory=CniSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    host: HostSettings = Field(default_factory=HostSettings)
    haproxy: HaproxySettings = Field(default_factory=HaproxySettings)
