"""Cluster membership and system pod views.

Two clients share the ``get_nodes()`` / ``get_system_pods()`` contract:
``KubectlClusterClient`` shells out to kubectl on the provisioned machine,
``KubernetesApiClient`` talks to the API server with the official client
from the operator's workstation.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError
from kubernetes.config.config_exception import ConfigException

from ..utils.kube import core_v1
from .errors import CollaboratorError
from .models import ClusterView, NodeStatus, PodStatus
from .runner import CommandRunner

logger = logging.getLogger("kubeprov.cluster_client")

ROLE_LABEL_PREFIX = "node-role.kubernetes.io/"
SYSTEM_NAMESPACE = "kube-system"


def parse_node_list(data: Dict[str, Any]) -> ClusterView:
    """Build a ClusterView from ``kubectl get nodes -o json`` output."""
    nodes = []
    for item in data.get('items', []):
        metadata = item.get('metadata', {})
        labels = metadata.get('labels') or {}
        conditions = (item.get('status') or {}).get('conditions') or []
        ready = any(c.get('type') == 'Ready' and c.get('status') == 'True' for c in conditions)
        roles = frozenset(k[len(ROLE_LABEL_PREFIX):] for k in labels if k.startswith(ROLE_LABEL_PREFIX))
        nodes.append(NodeStatus(name=metadata.get('name', ''), ready=ready, roles=roles))
    return ClusterView(nodes=nodes)


def parse_pod_list(data: Dict[str, Any]) -> List[PodStatus]:
    """Build pod statuses from ``kubectl get pods -o json`` output."""
    pods = []
    for item in data.get('items', []):
        metadata = item.get('metadata', {})
        status = item.get('status') or {}
        containers = status.get('containerStatuses') or []
        pods.append(PodStatus(
            name=metadata.get('name', ''),
            namespace=metadata.get('namespace', ''),
            phase=status.get('phase', 'Unknown'),
            ready=bool(containers) and all(c.get('ready') for c in containers),
        ))
    return pods


class KubectlClusterClient:
    """Reads cluster state through kubectl on a machine of the cluster."""

    def __init__(self, runner: CommandRunner, kubeconfig: str):
        self.runner = runner
        self.kubeconfig = kubeconfig

    def _get_json(self, args: str) -> Dict[str, Any]:
        out = self.runner.output(
            f"kubectl --kubeconfig={self.kubeconfig} --request-timeout=10s {args} -o json"
        )
        try:
            return json.loads(out)
        except ValueError as e:
            raise CollaboratorError(f"Unparsable kubectl output for '{args}': {e}")

    def get_nodes(self) -> ClusterView:
        return parse_node_list(self._get_json("get nodes"))

    def get_system_pods(self) -> List[PodStatus]:
        return parse_pod_list(self._get_json(f"-n {SYSTEM_NAMESPACE} get pods"))


class KubernetesApiClient:
    """Reads cluster state with the kubernetes Python client."""

    def __init__(self, kubeconfig: Optional[str] = None, api=None):
        self._api = api
        self.kubeconfig = kubeconfig

    @property
    def api(self):
        if self._api is None:
            try:
                self._api = core_v1(self.kubeconfig)
            except (ValueError, OSError, ConfigException) as e:
                raise CollaboratorError(f"Cannot load kubeconfig: {e}")
        return self._api

    def get_nodes(self) -> ClusterView:
        try:
            items = self.api.list_node(_request_timeout=10).items
        except ApiException as e:
            raise CollaboratorError(f"Failed to list nodes: {e.status} {e.reason}")
        except HTTPError as e:
            raise CollaboratorError(f"Failed to list nodes: {e}")
        nodes = []
        for node in items:
            labels = node.metadata.labels or {}
            conditions = (node.status.conditions if node.status else None) or []
            ready = any(c.type == 'Ready' and c.status == 'True' for c in conditions)
            roles = frozenset(k[len(ROLE_LABEL_PREFIX):] for k in labels if k.startswith(ROLE_LABEL_PREFIX))
            nodes.append(NodeStatus(name=node.metadata.name, ready=ready, roles=roles))
        return ClusterView(nodes=nodes)

    def get_system_pods(self) -> List[PodStatus]:
        try:
            items = self.api.list_namespaced_pod(SYSTEM_NAMESPACE, _request_timeout=10).items
        except ApiException as e:
            raise CollaboratorError(f"Failed to list {SYSTEM_NAMESPACE} pods: {e.status} {e.reason}")
        except HTTPError as e:
            raise CollaboratorError(f"Failed to list {SYSTEM_NAMESPACE} pods: {e}")
        pods = []
        for pod in items:
            containers = (pod.status.container_statuses if pod.status else None) or []
            pods.append(PodStatus(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                phase=(pod.status.phase if pod.status else None) or 'Unknown',
                ready=bool(containers) and all(c.ready for c in containers),
            ))
        return pods
