"""
Control-plane steps — kubeadm init and the cluster network add-on.

The target Kubernetes version is whatever the installed kubectl client
reports, so the control plane always matches the packages the node
steps installed.  After init the API server is polled for readiness
(bounded) instead of sleeping a fixed interval.
"""

from __future__ import annotations

import logging

from nodestrap.core import context as keys
from nodestrap.core.engine.waits import wait_until
from nodestrap.core.errors import MutationError
from nodestrap.core.models.step import Step
from nodestrap.core.pipeline.base import PipelineEnv

logger = logging.getLogger(__name__)

OPERATOR_CRD = "installations.operator.tigera.io"
MANIFEST_NAME = "custom-resources.yaml"


def cluster_steps(env: PipelineEnv) -> list[Step]:
    host, cl = env.host, env.config.cluster
    admin_conf = host.path(cl.kubeconfig)
    kubectl = host.kubectl(cl.kubeconfig)
    manifest = host.path(cl.workdir) / MANIFEST_NAME

    def initialized() -> bool:
        return admin_conf.is_file()

    def node_name() -> str:
        return cl.node_name or env.context.get(keys.CHOSEN_HOSTNAME) or host.current_hostname()

    def init() -> str:
        version = env.context.obtain(keys.CLIENT_VERSION, kubectl.client_version)
        output = host.kubeadm.init(
            pod_network_cidr=cl.pod_network_cidr,
            kubernetes_version=version,
            node_name=node_name(),
        )
        wait_until(
            kubectl.api_ready,
            timeout=cl.ready_timeout,
            interval=cl.poll_interval,
            what="the API server to report ready",
        )
        return output

    def operator_deployed() -> bool:
        return kubectl.exists("deployment", cl.operator_deployment, cl.operator_namespace)

    def addon_deployed() -> bool:
        return kubectl.exists("installation", cl.installation_name)

    def deploy_addon() -> str:
        env.mutator.replace(manifest, host.fetcher.get_bytes(cl.custom_resources_url))
        matched = env.mutator.set_value(manifest, "cidr", cl.pod_network_cidr)
        if matched == 0:
            raise MutationError(f"No 'cidr:' field in {cl.custom_resources_url}")
        wait_until(
            lambda: kubectl.exists("crd", OPERATOR_CRD),
            timeout=cl.ready_timeout,
            interval=cl.poll_interval,
            what=f"CRD {OPERATOR_CRD}",
        )
        return kubectl.apply(str(manifest))

    return [
        Step(
            name="pull-control-plane-images",
            description="Pre-pull the control-plane container images",
            precondition=initialized,
            action=host.kubeadm.pull_images,
        ),
        Step(
            name="init-control-plane",
            description="kubeadm init at the installed client version",
            precondition=initialized,
            action=init,
            postcondition=initialized,
        ),
        Step(
            name="deploy-network-operator",
            description="Create the network add-on operator",
            precondition=operator_deployed,
            action=lambda: kubectl.create(cl.operator_manifest_url),
            postcondition=operator_deployed,
        ),
        Step(
            name="deploy-network-addon",
            description=f"Apply the add-on resources with cidr {cl.pod_network_cidr}",
            precondition=addon_deployed,
            action=deploy_addon,
        ),
    ]
