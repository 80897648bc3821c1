"""Everything a phase needs to probe and change one machine."""

import threading
from dataclasses import dataclass
from typing import Optional

from .host import HostSystem
from .kubeadm import KubeadmControlPlane, KubeadmWorker
from .models import JoinCredential
from .packages import AptPackageManager
from .runner import CommandRunner
from .runtime import RuntimeService
from .settings import ProvisionConfig


@dataclass
class PhaseContext:
    """Collaborators and inputs shared by the phases of one run."""
    config: ProvisionConfig
    host: HostSystem
    packages: AptPackageManager
    runtime: RuntimeService
    kubelet: RuntimeService
    control_plane: KubeadmControlPlane
    worker: KubeadmWorker
    node_name: str
    credential: Optional[JoinCredential] = None
    cancel: Optional[threading.Event] = None


def build_context(
    runner: CommandRunner,
    config: ProvisionConfig,
    node_name: Optional[str] = None,
) -> PhaseContext:
    """Wire the real collaborators for a machine reachable through ``runner``.

    The node name defaults to the machine's lower-cased hostname, which is
    the name kubeadm registers the node under.
    """
    if not node_name:
        node_name = runner.output("hostname").strip().lower()
    return PhaseContext(
        config=config,
        host=HostSystem(runner, config.system),
        packages=AptPackageManager(runner),
        runtime=RuntimeService(runner, config.runtime.service, config.runtime.config_path),
        kubelet=RuntimeService(runner, 'kubelet', '/var/lib/kubelet/config.yaml'),
        control_plane=KubeadmControlPlane(runner, config.cluster),
        worker=KubeadmWorker(runner, config.cluster),
        node_name=node_name,
    )
