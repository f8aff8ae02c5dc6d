"""Load balancer steps — install HAProxy and deploy a local configuration file."""

from __future__ import annotations

from pathlib import Path

from nodestrap.core import context as keys
from nodestrap.core.errors import MutationError
from nodestrap.core.models.step import Step
from nodestrap.core.pipeline.base import PipelineEnv


def haproxy_steps(env: PipelineEnv) -> list[Step]:
    host, hp, mutator = env.host, env.config.haproxy, env.mutator
    services = host.services
    source = Path(hp.config_source)
    target = host.path(hp.config_path)

    def source_bytes() -> bytes:
        try:
            return source.read_bytes()
        except FileNotFoundError:
            raise MutationError(f"HAProxy configuration {source} not found") from None

    def deploy() -> str:
        mutator.replace(target, source_bytes())
        env.context.set(keys.HAPROXY_CONFIG_CHANGED, True)
        return f"{source} → {target}"

    def running_on_current_config() -> bool:
        return env.stamps.is_current(hp.service, [target]) and services.is_active(hp.service)

    def running_current_config() -> bool:
        return not env.context.get(keys.HAPROXY_CONFIG_CHANGED, False) and running_on_current_config()

    def restart() -> None:
        services.restart(hp.service)
        env.stamps.record(hp.service, [target])

    def install() -> None:
        host.packages.update_index()
        host.packages.install([hp.package])

    return [
        Step(
            name="install-haproxy",
            precondition=lambda: host.packages.is_installed(hp.package),
            action=install,
            postcondition=lambda: host.packages.is_installed(hp.package),
        ),
        Step(
            name="enable-haproxy",
            precondition=lambda: services.is_enabled(hp.service),
            action=lambda: services.enable(hp.service),
        ),
        Step(
            name="start-haproxy",
            precondition=lambda: services.is_active(hp.service),
            action=lambda: services.start(hp.service),
        ),
        Step(
            name="deploy-haproxy-config",
            precondition=lambda: mutator.is_current(target, source_bytes()),
            action=deploy,
        ),
        Step(
            name="restart-haproxy",
            precondition=running_current_config,
            action=restart,
            postcondition=running_on_current_config,
        ),
    ]
