"""
Node bootstrap steps — from a bare host to installed cluster tooling.

Order (each step may rely on everything above it):

    disable-swap → install-prerequisites → load-kernel-modules →
    set-kernel-parameters → install-containerd → configure-containerd →
    restart-containerd → install-runc → install-cni-plugins →
    configure-kubernetes-feed → install-kubernetes-packages →
    hold-kubernetes-packages

Version-pinned installs resolve upstream in their precondition (a read)
and memoise the answer in the context, so the action installs exactly
the version the probe compared against.

restart-containerd records an applied-state stamp of the binary and
config.toml once the service is back up; until the stamp matches, every
run restarts again.
"""

from __future__ import annotations

import logging
import os
import shutil
import tarfile
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from nodestrap.core import context as keys
from nodestrap.core.engine.waits import wait_until
from nodestrap.core.errors import FetchError, MutationError
from nodestrap.core.models.step import Step
from nodestrap.core.mutation.config_mutator import KeyValueRule
from nodestrap.core.pipeline.base import PipelineEnv
from nodestrap.core.versions.resolver import Version

logger = logging.getLogger(__name__)

SERVICE_READY_TIMEOUT = 60.0


# ── Artifact helpers ────────────────────────────────────────────


def render_url(template: str, version: Version, **extra: str) -> str:
    return template.format(tag=version.raw, version=version.number, **extra)


@contextmanager
def downloaded(env: PipelineEnv, url: str) -> Iterator[Path]:
    """Download ``url`` into a scratch directory removed afterwards."""
    with tempfile.TemporaryDirectory(prefix="nodestrap-") as tmp:
        dest = Path(tmp) / (url.rsplit("/", 1)[-1] or "artifact")
        env.host.fetcher.download(url, dest)
        if dest.stat().st_size == 0:
            raise FetchError(f"Download of {url} produced an empty file")
        yield dest


def extract_tgz(archive: Path, dest: Path) -> list[str]:
    """Unpack a gzip tarball into ``dest``; returns the member names."""
    try:
        dest.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive, "r:gz") as tf:
            names = tf.getnames()
            tf.extractall(dest, filter="data")
    except (OSError, tarfile.TarError) as e:
        raise MutationError(f"Cannot extract {archive.name} into {dest}: {e}") from e
    logger.info("Extracted %d entries from %s into %s", len(names), archive.name, dest)
    return names


def install_binary(source: Path, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, dest)
        os.chmod(dest, 0o755)
    except OSError as e:
        raise MutationError(f"Cannot install {dest}: {e}") from e
    logger.info("Installed %s", dest)


def _at_least(installed: str | None, wanted: Version) -> bool:
    return installed is not None and Version.parse(installed) >= wanted


# ── Swap ────────────────────────────────────────────────────────


def is_active_swap_entry(line: str) -> bool:
    """An uncommented fstab line whose filesystem type is ``swap``."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return False
    fields = stripped.split()
    return len(fields) >= 3 and fields[2] == "swap"


def _comment_out(line: str) -> str:
    return "#" + line


def swap_steps(env: PipelineEnv) -> list[Step]:
    host, cfg = env.host, env.config
    fstab = host.path(cfg.swap.fstab)

    def swap_disabled() -> bool:
        r = host.runner.run(["swapon", "--show", "--noheadings"], timeout=30)
        if r.stdout.strip():
            return False
        if not fstab.exists():
            return True
        return not any(is_active_swap_entry(line) for line in fstab.read_text().splitlines())

    def disable() -> str:
        host.runner.run(["swapoff", "-a"])
        if fstab.exists():
            n = env.mutator.patch(fstab, is_active_swap_entry, _comment_out)
            return f"swap off, {n} fstab entr{'y' if n == 1 else 'ies'} commented"
        return "swap off"

    return [
        Step(
            name="disable-swap",
            description="Turn swap off now and keep it off across reboots",
            precondition=swap_disabled,
            action=disable,
            postcondition=swap_disabled,
        )
    ]


# ── Prerequisites and kernel ────────────────────────────────────


def prerequisite_steps(env: PipelineEnv) -> list[Step]:
    packages = env.host.packages
    wanted = env.config.prerequisites.packages

    def install() -> str:
        missing = packages.missing(wanted)
        packages.update_index()
        packages.install(missing)
        return f"installed {', '.join(missing)}"

    return [
        Step(
            name="install-prerequisites",
            description="Base packages needed to fetch and verify repositories",
            precondition=lambda: not packages.missing(wanted),
            action=install,
            postcondition=lambda: not packages.missing(wanted),
        )
    ]


def render_modules_file(modules: list[str]) -> str:
    return "".join(f"{m}\n" for m in modules)


def render_sysctl_file(params: dict[str, str]) -> str:
    return "".join(f"{k} = {v}\n" for k, v in params.items())


def kernel_steps(env: PipelineEnv) -> list[Step]:
    host, kernel, mutator = env.host, env.config.kernel, env.mutator
    modules_file = host.path(kernel.modules_file)
    sysctl_file = host.path(kernel.sysctl_file)
    modules_text = render_modules_file(kernel.modules)
    sysctl_text = render_sysctl_file(kernel.sysctl)

    def loaded_modules() -> set[str]:
        # The running kernel's modules, whatever root the files go to.
        r = host.runner.run(["lsmod"], timeout=30)
        return {line.split()[0] for line in r.stdout.splitlines()[1:] if line.strip()}

    def modules_ready() -> bool:
        return mutator.is_current(modules_file, modules_text) and set(kernel.modules) <= loaded_modules()

    def load_modules() -> str:
        mutator.replace(modules_file, modules_text)
        for module in kernel.modules:
            host.runner.run(["modprobe", module])
        return f"loaded {', '.join(kernel.modules)}"

    def sysctl_ready() -> bool:
        if not mutator.is_current(sysctl_file, sysctl_text):
            return False
        for key, value in kernel.sysctl.items():
            r = host.runner.run(["sysctl", "-n", key], check=False, timeout=30)
            if not r.ok or r.stdout.strip() != value:
                return False
        return True

    def apply_sysctl() -> None:
        mutator.replace(sysctl_file, sysctl_text)
        host.runner.run(["sysctl", "--system"])

    return [
        Step(
            name="load-kernel-modules",
            description="Persist and load the overlay / bridge netfilter modules",
            precondition=modules_ready,
            action=load_modules,
            postcondition=lambda: set(kernel.modules) <= loaded_modules(),
        ),
        Step(
            name="set-kernel-parameters",
            description="Persist and apply bridge and forwarding sysctls",
            precondition=sysctl_ready,
            action=apply_sysctl,
            postcondition=sysctl_ready,
        ),
    ]


# ── Container runtime ───────────────────────────────────────────


def containerd_steps(env: PipelineEnv) -> list[Step]:
    host, cd, mutator = env.host, env.config.containerd, env.mutator
    prefix = host.path(cd.install_prefix)
    binary = prefix / "bin" / "containerd"
    unit = host.path(cd.unit_path)
    config = host.path(cd.config_path)
    rule = KeyValueRule(cd.cgroup_key, cd.cgroup_value, separator="=")

    def wanted() -> Version:
        return env.context.obtain(
            keys.CONTAINERD_VERSION,
            lambda: env.resolver.latest_release(cd.releases_url, cd.release_filter),
        )

    def installed() -> str | None:
        return host.tool_version([str(binary), "--version"])

    def install() -> str:
        version = wanted()
        url = render_url(cd.archive_url, version, arch=env.config.arch)
        with downloaded(env, url) as archive:
            extract_tgz(archive, prefix)
        mutator.replace(unit, host.fetcher.get_bytes(cd.unit_url))
        host.services.daemon_reload()
        host.services.enable(cd.service, now=True)
        env.context.set(keys.CONTAINERD_INSTALLED, True)
        return f"containerd {version}"

    def config_ready() -> bool:
        if not config.exists():
            return False
        text = config.read_text()
        key_lines = [line for line in text.splitlines(keepends=True) if rule.matches(line)]
        return bool(key_lines) and rule.count_in(text) == len(key_lines)

    def configure() -> str:
        if not config.exists():
            default = host.runner.run([str(binary), "config", "default"]).stdout
            mutator.replace(config, default)
        matched = mutator.set_value(config, cd.cgroup_key, cd.cgroup_value, separator="=")
        if matched == 0:
            raise MutationError(f"No '{cd.cgroup_key}' setting found in {config}")
        env.context.set(keys.CONTAINERD_CONFIG_CHANGED, True)
        return f"{cd.cgroup_key} = {cd.cgroup_value} ({matched} line(s))"

    def running_on_current_files() -> bool:
        return env.stamps.is_current(cd.service, [binary, config]) and host.services.is_active(cd.service)

    def running_current_config() -> bool:
        if env.context.get(keys.CONTAINERD_INSTALLED, False):
            return False
        if env.context.get(keys.CONTAINERD_CONFIG_CHANGED, False):
            return False
        return running_on_current_files()

    def restart() -> None:
        host.services.restart(cd.service)
        wait_until(
            lambda: host.services.is_active(cd.service),
            timeout=SERVICE_READY_TIMEOUT,
            what=f"{cd.service} to become active",
        )
        env.stamps.record(cd.service, [binary, config])

    return [
        Step(
            name="install-containerd",
            description="Install the latest containerd release and its systemd unit",
            precondition=lambda: unit.exists() and _at_least(installed(), wanted()),
            action=install,
            postcondition=lambda: _at_least(installed(), wanted()),
        ),
        Step(
            name="configure-containerd",
            description=f"Generate config.toml and enable {cd.cgroup_key}",
            precondition=config_ready,
            action=configure,
            postcondition=config_ready,
        ),
        Step(
            name="restart-containerd",
            description="Restart containerd so it runs the installed binary and configuration",
            precondition=running_current_config,
            action=restart,
            postcondition=running_on_current_files,
        ),
    ]


def runc_steps(env: PipelineEnv) -> list[Step]:
    host, rc = env.host, env.config.runc
    target = host.path(rc.install_path)

    def wanted() -> Version:
        return env.context.obtain(
            keys.RUNC_VERSION,
            lambda: env.resolver.latest_release(rc.releases_url, rc.release_filter),
        )

    def current() -> bool:
        found = host.tool_version([str(target), "--version"])
        return found is not None and Version.parse(found) == wanted()

    def install() -> str:
        version = wanted()
        with downloaded(env, render_url(rc.binary_url, version, arch=env.config.arch)) as blob:
            install_binary(blob, target)
        return f"runc {version}"

    return [
        Step(
            name="install-runc",
            description="Install the latest runc binary",
            precondition=current,
            action=install,
            postcondition=current,
        )
    ]


def cni_steps(env: PipelineEnv) -> list[Step]:
    host, cni = env.host, env.config.cni
    plugin_dir = host.path(cni.plugin_dir)

    def plugins_present() -> bool:
        for name in cni.required_plugins:
            p = plugin_dir / name
            if not p.is_file() or p.stat().st_size == 0:
                return False
        return True

    def install() -> str:
        version = env.context.obtain(
            keys.CNI_VERSION,
            lambda: env.resolver.latest_release(cni.releases_url, cni.release_filter),
        )
        with downloaded(env, render_url(cni.archive_url, version, arch=env.config.arch)) as archive:
            names = extract_tgz(archive, plugin_dir)
        return f"CNI plugins {version} ({len(names)} files)"

    return [
        Step(
            name="install-cni-plugins",
            description=f"Install CNI plugin binaries into {cni.plugin_dir}",
            precondition=plugins_present,
            action=install,
            postcondition=plugins_present,
        )
    ]


# ── Kubernetes packages ─────────────────────────────────────────


def render_sources_list(keyring: str, feed_url: str) -> str:
    return f"deb [signed-by={keyring}] {feed_url} /\n"


def kubernetes_steps(env: PipelineEnv) -> list[Step]:
    host, k8s, mutator = env.host, env.config.kubernetes, env.mutator
    keyring = host.path(k8s.keyring_path)
    sources = host.path(k8s.sources_list)
    packages = host.packages

    def channel() -> str:
        stable = env.context.obtain(
            keys.KUBERNETES_STABLE,
            lambda: env.resolver.stable_pointer(k8s.stable_url),
        )
        return env.context.obtain(keys.KUBERNETES_CHANNEL, lambda: stable.reduced(2))

    def feed_url() -> str:
        return k8s.feed_url.format(channel=channel())

    def desired_sources() -> str:
        return render_sources_list(k8s.keyring_path, feed_url())

    def feed_configured() -> bool:
        return keyring.is_file() and mutator.is_current(sources, desired_sources())

    def configure_feed() -> str:
        url = feed_url()
        key = host.fetcher.get_text(url + "Release.key")
        try:
            keyring.parent.mkdir(parents=True, exist_ok=True)
            os.chmod(keyring.parent, 0o755)
        except OSError as e:
            raise MutationError(f"Cannot create {keyring.parent}: {e}") from e
        mutator.backup(keyring)
        host.runner.run(
            ["gpg", "--batch", "--yes", "--dearmor", "-o", str(keyring)], input=key,
        )
        mutator.replace(sources, desired_sources())
        return f"feed {url}"

    def install() -> str:
        packages.update_index()
        packages.install(k8s.packages)
        return f"installed {', '.join(k8s.packages)}"

    return [
        Step(
            name="configure-kubernetes-feed",
            description="Resolve the stable channel and point apt at its package feed",
            precondition=feed_configured,
            action=configure_feed,
            postcondition=feed_configured,
        ),
        Step(
            name="install-kubernetes-packages",
            description="Install kubelet, kubeadm and kubectl",
            precondition=lambda: not packages.missing(k8s.packages),
            action=install,
            postcondition=lambda: not packages.missing(k8s.packages),
        ),
        Step(
            name="hold-kubernetes-packages",
            description="Pin the Kubernetes packages against upgrade",
            precondition=lambda: set(k8s.packages) <= packages.held(),
            action=lambda: packages.hold(k8s.packages),
            postcondition=lambda: set(k8s.packages) <= packages.held(),
        ),
    ]


def node_steps(env: PipelineEnv) -> list[Step]:
    return [
        *swap_steps(env),
        *prerequisite_steps(env),
        *kernel_steps(env),
        *containerd_steps(env),
        *runc_steps(env),
        *cni_steps(env),
        *kubernetes_steps(env),
    ]
