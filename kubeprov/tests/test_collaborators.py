import json

import pytest
import requests

from kubeprov.modules import packages as packages_module
from kubeprov.modules.cluster_client import KubectlClusterClient, KubernetesApiClient, parse_node_list, parse_pod_list
from kubeprov.modules.errors import CollaboratorError, CommandError
from kubeprov.modules.host import HostSystem
from kubeprov.modules.kubeadm import KubeadmControlPlane, KubeadmWorker, _extract_join_command
from kubeprov.modules.packages import AptPackageManager
from kubeprov.modules.runner import CommandResult, CommandRunner, LocalRunner
from kubeprov.modules.runtime import RuntimeService
from kubeprov.modules.settings import ClusterSettings, SystemSettings
from kubeprov.tests.conftest import CA_HASH, make_credential
from kubeprov.utils import redact_join_command, redact_sensitive_data


class ScriptedRunner(CommandRunner):
    """Answers commands by substring match; files live in a dict."""

    host = "fake"

    def __init__(self, rules=(), files=None, sudo=False):
        super().__init__(sudo=sudo)
        self.rules = list(rules)
        self.files = dict(files or {})
        self.commands = []
        self.inputs = []

    def _execute(self, command, input, timeout):
        self.commands.append(command)
        self.inputs.append(input)
        for needle, returncode, stdout in self.rules:
            if needle in command:
                return CommandResult(command, returncode, stdout, "" if returncode == 0 else "boom")
        return CommandResult(command, 0, "", "")

    def read_file(self, path):
        return self.files.get(path)

    def write_file(self, path, content, mode=0o644):
        self.files[path] = content.decode() if isinstance(content, bytes) else content

    def file_exists(self, path):
        return path in self.files


# runner

def test_sudo_wraps_commands():
    runner = ScriptedRunner(sudo=True)
    runner.run("swapoff -a")
    assert runner.commands == ["sudo -n sh -c 'swapoff -a'"]


def test_failed_command_raises_with_output():
    runner = ScriptedRunner([("modprobe", 1, "")])
    with pytest.raises(CommandError) as exc:
        runner.run("modprobe overlay")
    assert exc.value.returncode == 1
    assert "boom" in str(exc.value)
    assert not runner.succeeds("modprobe br_netfilter")


def test_display_hides_secret_command():
    runner = ScriptedRunner([("kubeadm join", 1, "")])
    with pytest.raises(CommandError) as exc:
        runner.run("kubeadm join x --token secret", display="kubeadm join x --token [REDACTED]")
    assert "secret" not in str(exc.value)


def test_local_runner_files(tmp_path):
    runner = LocalRunner()
    path = str(tmp_path / "nested dir" / "k8s.conf")

    assert runner.read_file(path) is None
    runner.write_file(path, "overlay\nbr_netfilter\n", mode=0o600)

    assert runner.read_file(path) == "overlay\nbr_netfilter\n"
    assert runner.file_exists(path)
    assert runner.output("echo hello") == "hello"
    assert runner.run("exit 4", check=False).returncode == 4


# host

def test_swap_detection_and_disable():
    fstab = "UUID=abc / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n# /old none swap sw 0 0\n"
    runner = ScriptedRunner(
        [("cat /proc/swaps", 0, "Filename Type Size Used Priority\n/swap.img file 1024 0 -2\n")],
        files={"/etc/fstab": fstab},
    )
    host = HostSystem(runner, SystemSettings())

    assert host.swap_active()
    assert host.fstab_swap_entries() == ["/swap.img none swap sw 0 0"]
    assert not host.swap_disabled()

    host.disable_swap()

    assert "swapoff -a" in runner.commands
    assert runner.files["/etc/fstab"].splitlines() == [
        "UUID=abc / ext4 defaults 0 1",
        "#/swap.img none swap sw 0 0",
        "# /old none swap sw 0 0",
    ]


def test_sysctl_configured_needs_live_values_and_file():
    settings = SystemSettings()
    runner = ScriptedRunner([("sysctl -n", 0, "1\n")])
    host = HostSystem(runner, settings)

    assert not host.sysctl_configured()
    host.apply_sysctl()
    assert host.sysctl_configured()
    assert "sysctl --system" in runner.commands
    assert "net.ipv4.ip_forward = 1" in runner.files[settings.sysctl_file]


def test_modules_ready_requires_persistence():
    settings = SystemSettings()
    runner = ScriptedRunner()
    host = HostSystem(runner, settings)

    assert not host.modules_ready()
    host.load_modules()
    assert host.modules_ready()
    assert "modprobe br_netfilter" in runner.commands


# packages

def test_package_probes():
    runner = ScriptedRunner([
        ("dpkg-query -W -f='${Status}' kubelet", 0, "install ok installed"),
        ("dpkg-query", 1, ""),
        ("apt-mark showhold", 0, "kubeadm\nkubelet\n"),
    ])
    apt = AptPackageManager(runner)

    assert apt.is_installed("kubelet")
    assert not apt.is_installed("kubectl")
    assert apt.held() == {"kubeadm", "kubelet"}


def test_add_repository_replaces_list_file():
    runner = ScriptedRunner()
    apt = AptPackageManager(runner)

    apt.add_repository("deb [signed-by=/k.gpg] https://pkgs.k8s.io/ /", b"KEY", "/k.list", "/k.gpg")

    gpg = next(i for i, c in enumerate(runner.commands) if c.startswith("gpg"))
    assert runner.inputs[gpg] == b"KEY"
    assert "rm -f /k.list" in runner.commands
    assert runner.files["/k.list"] == "deb [signed-by=/k.gpg] https://pkgs.k8s.io/ /\n"
    runner.files["/k.gpg"] = "binary"
    assert apt.has_repository("deb [signed-by=/k.gpg] https://pkgs.k8s.io/ /", "/k.list", "/k.gpg")


def test_remove_legacy_keys_tolerates_missing_apt_key():
    runner = ScriptedRunner([("apt-key del", 127, "")])
    apt = AptPackageManager(runner)

    apt.remove_legacy_keys(["7F92E05B31093BEF5A3C2D38FEEA9169307EA071"])

    assert len(runner.commands) == 1
    assert "command -v apt-key" in runner.commands[0]
    assert "apt-key del 7F92E05B31093BEF5A3C2D38FEEA9169307EA071" in runner.commands[0]


def test_fetch_signing_key_errors(monkeypatch):
    def fail(url, timeout):
        raise requests.ConnectionError("name resolution failed")

    monkeypatch.setattr(packages_module.requests, "get", fail)
    with pytest.raises(CollaboratorError):
        packages_module.fetch_signing_key("https://pkgs.k8s.io/core:/stable:/v1.31/deb/Release.key")


# runtime

def test_runtime_config():
    runner = ScriptedRunner([("is-active --quiet docker", 0, ""), ("is-enabled", 3, "")])
    service = RuntimeService(runner)

    assert service.read_config() is None
    service.write_config(json.dumps({"exec-opts": ["native.cgroupdriver=systemd"]}))
    assert service.read_config() == {"exec-opts": ["native.cgroupdriver=systemd"]}
    runner.files["/etc/docker/daemon.json"] = "{not json"
    assert service.read_config() is None
    assert service.is_active()
    assert not service.is_enabled()


# kubeadm

INIT_OUTPUT = f"""
Your Kubernetes control-plane has initialized successfully!

Then you can join any number of worker nodes by running the following on each as root:

kubeadm join 10.0.0.10:6443 --token abcdef.0123456789abcdef \\
\t--discovery-token-ca-cert-hash {CA_HASH}
"""


def test_extract_join_command():
    command = _extract_join_command(INIT_OUTPUT)
    assert command.startswith("kubeadm join 10.0.0.10:6443")
    assert command.endswith(CA_HASH)
    assert _extract_join_command("nothing here") is None


def test_create_join_token():
    runner = ScriptedRunner([("token create", 0, _extract_join_command(INIT_OUTPUT) + "\n")])
    credential = KubeadmControlPlane(runner, ClusterSettings()).create_join_token()
    assert credential.endpoint == "10.0.0.10:6443"


def test_create_join_token_rejects_garbage():
    runner = ScriptedRunner([("token create", 0, "error: something odd\n")])
    with pytest.raises(CollaboratorError):
        KubeadmControlPlane(runner, ClusterSettings()).create_join_token()


def test_control_plane_initialized_requires_healthy_api():
    settings = ClusterSettings()
    runner = ScriptedRunner([("--raw=/readyz", 1, "")], files={settings.admin_kubeconfig: "x"})
    control_plane = KubeadmControlPlane(runner, settings)
    assert not control_plane.is_initialized()

    runner.rules = [("--raw=/readyz", 0, "ok")]
    assert control_plane.is_initialized()


def test_control_plane_taint():
    runner = ScriptedRunner([("jsonpath", 0, "node-role.kubernetes.io/control-plane other")])
    control_plane = KubeadmControlPlane(runner, ClusterSettings())

    assert control_plane.control_plane_tainted("cp")
    control_plane.remove_control_plane_taint("cp")
    assert runner.commands[-1].endswith("taint nodes cp node-role.kubernetes.io/control-plane:NoSchedule-")


def test_worker_join_hides_token_on_failure():
    runner = ScriptedRunner([("kubeadm join", 1, "")])
    credential = make_credential(token="abcdef.0123456789abcdef")

    with pytest.raises(CommandError) as exc:
        KubeadmWorker(runner, ClusterSettings()).join(credential)

    assert "abcdef.0123456789abcdef" in runner.commands[0]
    assert "abcdef.0123456789abcdef" not in str(exc.value)
    assert CA_HASH not in str(exc.value)


def test_user_kubeconfig_goes_to_invoking_users_home():
    runner = ScriptedRunner([("getent passwd", 0, "/home/ops\n")], sudo=True)

    KubeadmControlPlane(runner, ClusterSettings()).install_user_kubeconfig()

    assert "${SUDO_USER:-$(id -un)}" in runner.commands[0]
    assert "cp -f /etc/kubernetes/admin.conf /home/ops/.kube/config" in runner.commands[-1]
    assert "~" not in runner.commands[-1]


def test_user_kubeconfig_paths_are_quoted():
    settings = ClusterSettings(user_kubeconfig="/srv/ops team/kubeconfig")
    runner = ScriptedRunner()
    control_plane = KubeadmControlPlane(runner, settings)

    assert control_plane.user_kubeconfig_current()
    control_plane.install_user_kubeconfig()

    assert runner.commands[0] == "cmp -s /etc/kubernetes/admin.conf '/srv/ops team/kubeconfig'"
    assert "chmod 600 '/srv/ops team/kubeconfig'" in runner.commands[-1]
    assert not any("getent" in c for c in runner.commands)


def test_user_kubeconfig_without_home_fails():
    runner = ScriptedRunner([("getent passwd", 2, "")])
    with pytest.raises(CommandError):
        KubeadmControlPlane(runner, ClusterSettings()).install_user_kubeconfig()


def test_worker_joined():
    settings = ClusterSettings()
    runner = ScriptedRunner(files={settings.kubelet_kubeconfig: "x"})
    assert KubeadmWorker(runner, settings).is_joined()
    assert not KubeadmWorker(ScriptedRunner(), settings).is_joined()


# cluster clients

NODE_LIST = {
    "items": [
        {
            "metadata": {"name": "cp", "labels": {"node-role.kubernetes.io/control-plane": ""}},
            "status": {"conditions": [{"type": "Ready", "status": "True"}]},
        },
        {
            "metadata": {"name": "w1", "labels": {}},
            "status": {"conditions": [{"type": "Ready", "status": "False"}]},
        },
    ]
}


def test_parse_node_list():
    view = parse_node_list(NODE_LIST)
    assert view.names() == frozenset({"cp", "w1"})
    assert view.ready_names() == frozenset({"cp"})
    assert view.nodes[0].roles == frozenset({"control-plane"})


def test_parse_pod_list():
    pods = parse_pod_list({"items": [
        {"metadata": {"name": "coredns", "namespace": "kube-system"},
         "status": {"phase": "Running", "containerStatuses": [{"ready": True}]}},
        {"metadata": {"name": "flannel", "namespace": "kube-system"},
         "status": {"phase": "Pending"}},
    ]})
    assert [p.healthy for p in pods] == [True, False]


def test_kubectl_client_rejects_bad_output():
    runner = ScriptedRunner([("get nodes", 0, "not json")])
    with pytest.raises(CollaboratorError):
        KubectlClusterClient(runner, "/etc/kubernetes/admin.conf").get_nodes()


def test_api_client_missing_kubeconfig(monkeypatch, tmp_path):
    monkeypatch.delenv("KUBECONFIG_CONTENT", raising=False)
    with pytest.raises(CollaboratorError):
        KubernetesApiClient(str(tmp_path / "missing")).get_nodes()


# redaction

def test_redaction():
    command = make_credential(token="abcdef.0123456789abcdef").to_join_command()
    assert "abcdef.0123456789abcdef" not in redact_join_command(command)
    assert redact_sensitive_data({"token": "x", "host": "h", "nested": [{"ca_cert_hash": "y"}]}) == {
        "token": "[REDACTED]", "host": "h", "nested": [{"ca_cert_hash": "[REDACTED]"}],
    }
