"""Control-plane bootstrap and worker join through kubeadm."""

import logging
import shlex
from dataclasses import dataclass
from typing import List, Optional

from ..utils import redact_join_command
from .cluster_client import KubectlClusterClient
from .errors import CollaboratorError
from .models import ClusterView, JoinCredential, PodStatus
from .runner import CommandRunner
from .settings import ClusterSettings

logger = logging.getLogger("kubeprov.kubeadm")

CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane"


@dataclass
class InitResult:
    """Outcome of ``kubeadm init``."""
    admin_config: str
    join_command: Optional[str] = None


def _extract_join_command(output: str) -> Optional[str]:
    """Pull the printed worker join command out of kubeadm init output."""
    lines = output.splitlines()
    for i, line in enumerate(lines):
        if line.strip().startswith('kubeadm join'):
            command = line.strip()
            j = i + 1
            while command.endswith('\\') and j < len(lines):
                command = command[:-1].strip() + ' ' + lines[j].strip()
                j += 1
            if '--control-plane' not in command:
                return command
    return None


class KubeadmControlPlane:
    """Creates and inspects the control plane on its machine."""

    def __init__(self, runner: CommandRunner, settings: ClusterSettings):
        self.runner = runner
        self.settings = settings
        self.client = KubectlClusterClient(runner, settings.admin_kubeconfig)

    def kubectl(self, args: str) -> str:
        return f"kubectl --kubeconfig={self.settings.admin_kubeconfig} {args}"

    # Images

    def required_images(self) -> List[str]:
        return [line.strip() for line in self.runner.output("kubeadm config images list").splitlines() if line.strip()]

    def images_present(self) -> bool:
        images = self.required_images()
        return bool(images) and all(
            self.runner.succeeds(f"crictl inspecti {shlex.quote(image)}") for image in images
        )

    def pull_images(self) -> None:
        logger.info(f"[{self.runner.host}] ⬇️  Pre-pulling control plane images")
        self.runner.run("kubeadm config images pull")

    # Bootstrap

    def api_healthy(self) -> bool:
        result = self.runner.run(self.kubectl("get --raw=/readyz --request-timeout=5s"), check=False)
        return result.ok and result.stdout.strip() == 'ok'

    def is_initialized(self) -> bool:
        """True once kubeadm init has produced a reachable control plane."""
        return self.runner.file_exists(self.settings.admin_kubeconfig) and self.api_healthy()

    def init(self, pod_network_cidr: str) -> InitResult:
        logger.info(f"[{self.runner.host}] 🚀 Initializing control plane (pod network {pod_network_cidr})")
        result = self.runner.run(f"kubeadm init --pod-network-cidr={shlex.quote(pod_network_cidr)}")
        return InitResult(
            admin_config=self.settings.admin_kubeconfig,
            join_command=_extract_join_command(result.stdout),
        )

    # Operator kubeconfig

    def user_kubeconfig_path(self) -> str:
        """Operator kubeconfig path, with ``~`` resolved to the invoking user's home.

        Under sudo the home is the one of ``$SUDO_USER``, not root's.
        """
        target = self.settings.user_kubeconfig
        if target != '~' and not target.startswith('~/'):
            return target
        home = self.runner.output('getent passwd "${SUDO_USER:-$(id -un)}" | cut -d: -f6').strip()
        if not home:
            raise CollaboratorError("Cannot resolve the operator's home directory")
        return home + target[1:]

    def user_kubeconfig_current(self) -> bool:
        target = shlex.quote(self.user_kubeconfig_path())
        return self.runner.succeeds(
            f"cmp -s {shlex.quote(self.settings.admin_kubeconfig)} {target}"
        )

    def install_user_kubeconfig(self) -> None:
        target = shlex.quote(self.user_kubeconfig_path())
        self.runner.run(
            f"mkdir -p \"$(dirname {target})\" && "
            f"cp -f {shlex.quote(self.settings.admin_kubeconfig)} {target} && "
            f"chown \"${{SUDO_UID:-$(id -u)}}:${{SUDO_GID:-$(id -g)}}\" {target} && "
            f"chmod 600 {target}"
        )

    # Network plugin

    def network_plugin_installed(self) -> bool:
        return self.runner.succeeds(self.kubectl(
            f"-n {shlex.quote(self.settings.network_plugin_namespace)} "
            f"get daemonset {shlex.quote(self.settings.network_plugin_daemonset)}"
        ))

    def apply_network_plugin(self, manifest_ref: str) -> None:
        logger.info(f"[{self.runner.host}] 🌐 Applying network plugin manifest {manifest_ref}")
        self.runner.run(self.kubectl(f"apply -f {shlex.quote(manifest_ref)}"))

    # Scheduling on the control plane

    def control_plane_tainted(self, node_name: str) -> bool:
        keys = self.runner.output(self.kubectl(
            f"get node {shlex.quote(node_name)} -o jsonpath='{{.spec.taints[*].key}}'"
        ))
        return CONTROL_PLANE_TAINT in keys.split()

    def remove_control_plane_taint(self, node_name: str) -> None:
        self.runner.run(self.kubectl(
            f"taint nodes {shlex.quote(node_name)} {CONTROL_PLANE_TAINT}:NoSchedule-"
        ))

    # Join credentials

    def create_join_token(self) -> JoinCredential:
        """Issue a fresh bootstrap token; earlier unexpired tokens stay valid."""
        out = self.runner.output("kubeadm token create --print-join-command")
        try:
            return JoinCredential.from_join_command(out)
        except ValueError as e:
            raise CollaboratorError(f"Unexpected join command from kubeadm: {e}")

    # Cluster views

    def get_nodes(self) -> ClusterView:
        return self.client.get_nodes()

    def get_system_pods(self) -> List[PodStatus]:
        return self.client.get_system_pods()


class KubeadmWorker:
    """Joins a worker machine to an existing control plane."""

    def __init__(self, runner: CommandRunner, settings: ClusterSettings, kubelet_service: str = 'kubelet'):
        self.runner = runner
        self.settings = settings
        self.kubelet_service = kubelet_service

    def join(self, credential: JoinCredential) -> None:
        command = credential.to_join_command()
        logger.info(f"[{self.runner.host}] 🔗 Joining control plane at {credential.endpoint}")
        self.runner.run(command, display=redact_join_command(command))

    def is_joined(self) -> bool:
        return (
            self.runner.file_exists(self.settings.kubelet_kubeconfig)
            and self.runner.succeeds(f"systemctl is-active --quiet {self.kubelet_service}")
        )

    def cluster_client(self) -> KubectlClusterClient:
        """Client reading the cluster with the kubelet's own credentials."""
        return KubectlClusterClient(self.runner, self.settings.kubelet_kubeconfig)
