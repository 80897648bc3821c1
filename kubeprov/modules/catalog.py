"""Phase catalogs per machine role.

The ``common`` phases prepare any machine for Kubernetes; the control-plane
and worker phases continue from there. Order matters: every phase assumes
the side effects of the ones before it.
"""

import json
import logging
from typing import Dict, List, Tuple

from .errors import CollaboratorError
from .models import Phase, Role
from .verifier import ClusterVerifier

logger = logging.getLogger("kubeprov.catalog")


# common

def _swap_disabled(ctx) -> bool:
    return ctx.host.swap_disabled()


def _disable_swap(ctx) -> None:
    ctx.host.disable_swap()


def _modules_ready(ctx) -> bool:
    return ctx.host.modules_ready()


def _load_modules(ctx) -> None:
    ctx.host.load_modules()


def _sysctl_configured(ctx) -> bool:
    return ctx.host.sysctl_configured()


def _apply_sysctl(ctx) -> None:
    ctx.host.apply_sysctl()


def _runtime_installed(ctx) -> bool:
    return ctx.packages.is_installed(ctx.config.runtime.package) and ctx.runtime.is_active()


def _install_runtime(ctx) -> None:
    ctx.packages.update()
    ctx.packages.install([ctx.config.runtime.package])
    ctx.runtime.start()


def _runtime_configured(ctx) -> bool:
    return (
        ctx.runtime.read_config() == ctx.config.runtime.daemon_config
        and ctx.runtime.is_enabled()
        and ctx.runtime.is_active()
    )


def _configure_runtime(ctx) -> None:
    ctx.runtime.write_config(json.dumps(ctx.config.runtime.daemon_config, indent=2) + "\n")
    ctx.runtime.daemon_reload()
    ctx.runtime.enable()
    ctx.runtime.restart()


def _repository_present(ctx) -> bool:
    k8s = ctx.config.kubernetes
    return ctx.packages.has_repository(k8s.repository_line, k8s.list_path, k8s.keyring_path)


def _add_repository(ctx) -> None:
    k8s = ctx.config.kubernetes
    ctx.packages.remove_legacy_keys(k8s.legacy_key_ids)
    ctx.packages.update()
    ctx.packages.install(k8s.prerequisites)
    key = ctx.packages.fetch_signing_key(k8s.signing_key_url)
    ctx.packages.add_repository(k8s.repository_line, key, k8s.list_path, k8s.keyring_path)


def _kubernetes_packages_ready(ctx) -> bool:
    names = ctx.config.kubernetes.packages
    return (
        ctx.packages.all_installed(names)
        and set(names) <= ctx.packages.held()
        and ctx.kubelet.is_enabled()
    )


def _install_kubernetes_packages(ctx) -> None:
    names = ctx.config.kubernetes.packages
    ctx.packages.update()
    ctx.packages.install(names)
    ctx.packages.hold(names)
    # kubelet crash-loops until kubeadm init/join writes its config
    ctx.kubelet.enable()
    ctx.kubelet.start()


# control-plane

def _images_ready(ctx) -> bool:
    return ctx.control_plane.is_initialized() or ctx.control_plane.images_present()


def _pull_images(ctx) -> None:
    ctx.control_plane.pull_images()


def _control_plane_initialized(ctx) -> bool:
    return ctx.control_plane.is_initialized()


def _init_control_plane(ctx) -> None:
    result = ctx.control_plane.init(ctx.config.cluster.pod_network_cidr)
    logger.info(f"✅ Control plane initialized, admin kubeconfig at {result.admin_config}")


def _user_kubeconfig_current(ctx) -> bool:
    return ctx.control_plane.user_kubeconfig_current()


def _install_user_kubeconfig(ctx) -> None:
    ctx.control_plane.install_user_kubeconfig()


def _network_plugin_installed(ctx) -> bool:
    return ctx.control_plane.network_plugin_installed()


def _apply_network_plugin(ctx) -> None:
    ctx.control_plane.apply_network_plugin(ctx.config.cluster.network_plugin_manifest)


def _system_pods_running(ctx) -> bool:
    pods = ctx.control_plane.get_system_pods()
    return bool(pods) and all(p.healthy for p in pods)


def _await_system_pods(ctx) -> None:
    verifier = ClusterVerifier(ctx.control_plane)
    healthy, unhealthy = verifier.await_system_pods(
        timeout=ctx.config.cluster.system_pods_timeout,
        poll_interval=ctx.config.verify.interval,
        cancel=ctx.cancel,
    )
    if not healthy:
        names = ", ".join(f"{p.name} ({p.phase})" for p in unhealthy) or "no pods reported"
        raise CollaboratorError(f"System pods not running: {names}")


def _scheduling_allowed(ctx) -> bool:
    if not ctx.config.cluster.single_node:
        return True
    return not ctx.control_plane.control_plane_tainted(ctx.node_name)


def _remove_control_plane_taint(ctx) -> None:
    ctx.control_plane.remove_control_plane_taint(ctx.node_name)


# worker

def _joined(ctx) -> bool:
    return ctx.worker.is_joined()


def _join_cluster(ctx) -> None:
    ctx.worker.join(ctx.credential)


COMMON_PHASES: Tuple[Phase, ...] = (
    Phase('disable-swap', "Disable swap now and across reboots",
          _swap_disabled, _disable_swap, _swap_disabled),
    Phase('load-kernel-modules', "Load and persist overlay/br_netfilter",
          _modules_ready, _load_modules, _modules_ready),
    Phase('configure-sysctl', "Let iptables see bridged traffic and enable forwarding",
          _sysctl_configured, _apply_sysctl, _sysctl_configured),
    Phase('install-runtime', "Install and start the container runtime",
          _runtime_installed, _install_runtime, _runtime_installed),
    Phase('configure-runtime', "Write the runtime daemon config and restart it",
          _runtime_configured, _configure_runtime, _runtime_configured),
    Phase('add-kubernetes-repository', "Register the pkgs.k8s.io apt repository",
          _repository_present, _add_repository, _repository_present),
    Phase('install-kubernetes-packages', "Install and hold kubelet, kubeadm and kubectl",
          _kubernetes_packages_ready, _install_kubernetes_packages, _kubernetes_packages_ready),
)

CONTROL_PLANE_PHASES: Tuple[Phase, ...] = (
    Phase('pull-control-plane-images', "Pre-pull control plane images",
          _images_ready, _pull_images, _images_ready),
    Phase('init-control-plane', "Run kubeadm init",
          _control_plane_initialized, _init_control_plane, _control_plane_initialized),
    Phase('configure-kubectl', "Install the admin kubeconfig for the operator",
          _user_kubeconfig_current, _install_user_kubeconfig, _user_kubeconfig_current),
    Phase('install-network-plugin', "Apply the pod network manifest",
          _network_plugin_installed, _apply_network_plugin, _network_plugin_installed),
    Phase('await-system-pods', "Wait for kube-system pods to run",
          _system_pods_running, _await_system_pods, _system_pods_running),
    Phase('allow-control-plane-scheduling', "Untaint the control plane in single-node mode",
          _scheduling_allowed, _remove_control_plane_taint, _scheduling_allowed),
)

WORKER_PHASES: Tuple[Phase, ...] = (
    Phase('join-cluster', "Join the control plane with the supplied credential",
          _joined, _join_cluster, _joined, requires_credential=True),
)

ROLE_PHASES: Dict[Role, Tuple[Phase, ...]] = {
    Role.CONTROL_PLANE: CONTROL_PLANE_PHASES,
    Role.WORKER: WORKER_PHASES,
}


def catalog(role: Role) -> List[Phase]:
    """Ordered phases for a role: the common phases, then the role's own."""
    return list(COMMON_PHASES) + list(ROLE_PHASES[Role(role)])


def phase_names(role: Role) -> List[str]:
    return [phase.name for phase in catalog(role)]
