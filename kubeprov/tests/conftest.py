import json
import itertools
from types import SimpleNamespace

import pytest

from kubeprov.modules.context import PhaseContext
from kubeprov.modules.errors import CollaboratorError
from kubeprov.modules.models import ClusterView, JoinCredential, NodeStatus, PodStatus
from kubeprov.modules.settings import ProvisionConfig, set_config
from kubeprov.modules.state import NodeStateStore

CA_HASH = "sha256:" + "ab" * 32
_token_ids = itertools.count(1)


def make_credential(host="10.0.0.10", port=6443, token=None) -> JoinCredential:
    token = token or f"abcdef.{next(_token_ids):016d}"
    return JoinCredential(token=token, host=host, port=port, ca_cert_hash=CA_HASH)


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeMachine:
    """In-memory model of one machine's observable facts.

    ``failures`` maps a collaborator call name to the exception it raises.
    ``broken`` lists calls that succeed but leave no effect behind.
    """

    def __init__(self, name="node-1"):
        self.name = name
        self.swap = True
        self.modules = False
        self.sysctl = False
        self.installed = set()
        self.held = set()
        self.repository = False
        self.images = False
        self.initialized = False
        self.user_kubeconfig = False
        self.network_plugin = False
        self.tainted = True
        self.joined = False
        self.join_credential = None
        self.issued = []
        self.calls = []
        self.failures = {}
        self.broken = set()
        self.services = {
            "docker": {"active": False, "enabled": False, "config": None},
            "kubelet": {"active": False, "enabled": False, "config": None},
        }

    def call(self, name) -> bool:
        """Record a call; raise its configured failure; False if it is a no-op."""
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]
        return name not in self.broken

    @property
    def node_ready(self) -> bool:
        return (self.initialized and self.network_plugin) or self.joined

    def applied(self, name) -> int:
        return self.calls.count(name)

    def prepare_common(self, config):
        """Mark every common phase as already in effect."""
        self.swap = False
        self.modules = True
        self.sysctl = True
        self.repository = True
        self.installed |= {config.runtime.package, *config.kubernetes.packages}
        self.held |= set(config.kubernetes.packages)
        self.services["docker"] = {"active": True, "enabled": True, "config": dict(config.runtime.daemon_config)}
        self.services["kubelet"].update(active=True, enabled=True)


class FakeHost:
    def __init__(self, m):
        self.m = m

    def swap_disabled(self):
        self.m.call("probe-swap")
        return not self.m.swap

    def disable_swap(self):
        if self.m.call("disable_swap"):
            self.m.swap = False

    def modules_ready(self):
        self.m.call("probe-modules")
        return self.m.modules

    def load_modules(self):
        if self.m.call("load_modules"):
            self.m.modules = True

    def sysctl_configured(self):
        self.m.call("probe-sysctl")
        return self.m.sysctl

    def apply_sysctl(self):
        if self.m.call("apply_sysctl"):
            self.m.sysctl = True


class FakePackages:
    def __init__(self, m):
        self.m = m

    def update(self):
        self.m.call("update")

    def install(self, names):
        if self.m.call("install"):
            self.m.installed |= set(names)

    def hold(self, names):
        if self.m.call("hold"):
            self.m.held |= set(names)

    def held(self):
        return set(self.m.held)

    def is_installed(self, name):
        self.m.call("probe-packages")
        return name in self.m.installed

    def all_installed(self, names):
        return all(self.is_installed(n) for n in names)

    def fetch_signing_key(self, url):
        self.m.call("fetch_signing_key")
        return b"-----BEGIN PGP PUBLIC KEY BLOCK-----"

    def remove_legacy_keys(self, key_ids):
        self.m.call("remove_legacy_keys")

    def add_repository(self, descriptor, signing_key, list_path, keyring_path):
        if self.m.call("add_repository"):
            self.m.repository = True

    def has_repository(self, descriptor, list_path, keyring_path):
        self.m.call("probe-repository")
        return self.m.repository


class FakeService:
    def __init__(self, m, service):
        self.m = m
        self.service = service

    @property
    def _state(self):
        return self.m.services[self.service]

    def write_config(self, content, path=None):
        if self.m.call(f"{self.service}.write_config"):
            self._state["config"] = json.loads(content)

    def read_config(self):
        return self._state["config"]

    def daemon_reload(self):
        self.m.call("daemon_reload")

    def start(self):
        if self.m.call(f"{self.service}.start"):
            self._state["active"] = True

    def enable(self):
        if self.m.call(f"{self.service}.enable"):
            self._state["enabled"] = True

    def restart(self):
        if self.m.call(f"{self.service}.restart"):
            self._state["active"] = True

    def is_active(self):
        self.m.call(f"probe-{self.service}")
        return self._state["active"]

    def is_enabled(self):
        return self._state["enabled"]


class FakeControlPlane:
    """Control-plane bootstrap collaborator; also a cluster client."""

    def __init__(self, m, cluster=None):
        self.m = m
        self.cluster = cluster if cluster is not None else [m]

    def is_initialized(self):
        self.m.call("probe-initialized")
        return self.m.initialized

    def images_present(self):
        return self.m.images

    def pull_images(self):
        if self.m.call("pull_images"):
            self.m.images = True

    def init(self, pod_network_cidr):
        if self.m.call("init"):
            self.m.initialized = True
        return SimpleNamespace(admin_config="/etc/kubernetes/admin.conf", join_command=None)

    def user_kubeconfig_current(self):
        return self.m.user_kubeconfig

    def install_user_kubeconfig(self):
        if self.m.call("install_user_kubeconfig"):
            self.m.user_kubeconfig = True

    def network_plugin_installed(self):
        return self.m.network_plugin

    def apply_network_plugin(self, manifest_ref):
        if self.m.call("apply_network_plugin"):
            self.m.network_plugin = True

    def control_plane_tainted(self, node_name):
        return self.m.tainted

    def remove_control_plane_taint(self, node_name):
        if self.m.call("remove_control_plane_taint"):
            self.m.tainted = False

    def create_join_token(self):
        self.m.call("create_join_token")
        credential = make_credential()
        self.m.issued.append(credential)
        return credential

    def get_nodes(self):
        self.m.call("get_nodes")
        return ClusterView(nodes=[NodeStatus(name=n.name, ready=n.node_ready) for n in self.cluster
                                  if n.initialized or n.joined])

    def get_system_pods(self):
        if not self.m.initialized:
            raise CollaboratorError("connection refused")
        phase = "Running" if self.m.network_plugin else "Pending"
        return [
            PodStatus(name="coredns-1", namespace="kube-system", phase=phase, ready=self.m.network_plugin),
            PodStatus(name="kube-apiserver", namespace="kube-system", phase="Running", ready=True),
        ]


class FakeWorker:
    def __init__(self, m):
        self.m = m

    def join(self, credential):
        if self.m.call("join"):
            self.m.joined = True
            self.m.join_credential = credential

    def is_joined(self):
        self.m.call("probe-joined")
        return self.m.joined

    def cluster_client(self):
        return FakeControlPlane(self.m)


@pytest.fixture
def config(tmp_path):
    cfg = ProvisionConfig(state_dir=str(tmp_path / "state"))
    cfg.verify.timeout = 10
    cfg.verify.interval = 1
    cfg.cluster.system_pods_timeout = 0
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def store(tmp_path):
    return NodeStateStore(tmp_path / "state")


@pytest.fixture
def machine():
    return FakeMachine("node-1")


def make_context(m, config, cluster=None):
    return PhaseContext(
        config=config,
        host=FakeHost(m),
        packages=FakePackages(m),
        runtime=FakeService(m, "docker"),
        kubelet=FakeService(m, "kubelet"),
        control_plane=FakeControlPlane(m, cluster),
        worker=FakeWorker(m),
        node_name=m.name,
    )


@pytest.fixture
def context(machine, config):
    return make_context(machine, config)
