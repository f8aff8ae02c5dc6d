"""
Pipeline catalogue — named compositions of step sets.

    node      swap, kernel, containerd, runc, CNI, Kubernetes packages
    cluster   kubeadm init + network add-on
    host      /etc/hosts, hostname, netplan
    haproxy   load balancer

``node`` with ``include_cluster=True`` appends the cluster steps, giving
one run from bare host to initialised control plane.
"""

from __future__ import annotations

from nodestrap.adapters.host import Host
from nodestrap.core.models.config import NodestrapConfig
from nodestrap.core.pipeline.base import PipelineEnv, ProvisioningPipeline, StepSet
from nodestrap.core.pipeline.cluster import cluster_steps
from nodestrap.core.pipeline.haproxy import haproxy_steps
from nodestrap.core.pipeline.host import host_steps
from nodestrap.core.pipeline.node import node_steps
from nodestrap.core.pipeline.prompter import Prompter

PIPELINES: dict[str, list[StepSet]] = {
    "node": [node_steps],
    "cluster": [cluster_steps],
    "host": [host_steps],
    "haproxy": [haproxy_steps],
}


def create_pipeline(
    name: str,
    *,
    host: Host,
    config: NodestrapConfig,
    prompter: Prompter | None = None,
    include_cluster: bool = False,
) -> ProvisioningPipeline:
    if name not in PIPELINES:
        raise KeyError(f"Unknown pipeline {name!r}; choose from {', '.join(PIPELINES)}")
    step_sets = list(PIPELINES[name])
    if include_cluster and name == "node":
        step_sets.append(cluster_steps)
    return ProvisioningPipeline(
        name, step_sets, host=host, config=config, prompter=prompter,
    )


__all__ = [
    "PIPELINES",
    "PipelineEnv",
    "ProvisioningPipeline",
    "create_pipeline",
]
