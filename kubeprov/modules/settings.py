"""Provisioning configuration management.

Configuration is loaded from multiple sources with the following precedence:
1. Explicitly passed parameters
2. Environment variables
3. Configuration files
4. Default values
"""
import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..config import Config

logger = logging.getLogger("kubeprov.settings")

# Default configuration paths
DEFAULT_CONFIG_PATHS = [
    Path("/etc/kubeprov/config.yaml"),
    Path("~/.config/kubeprov/config.yaml").expanduser(),
    Path("kubeprov.yaml").absolute(),
]

# (section, key) -> environment variable
ENV_OVERRIDES = {
    ("ssh", "user"): "KUBEPROV_SSH_USER",
    ("ssh", "key_path"): "KUBEPROV_SSH_KEY_PATH",
    ("ssh", "port"): "KUBEPROV_SSH_PORT",
    ("ssh", "connect_timeout"): "KUBEPROV_SSH_TIMEOUT",
    ("ssh", "command_timeout"): "KUBEPROV_COMMAND_TIMEOUT",
    ("verify", "timeout"): "KUBEPROV_VERIFY_TIMEOUT",
    ("verify", "interval"): "KUBEPROV_VERIFY_INTERVAL",
    ("cluster", "pod_network_cidr"): "KUBEPROV_POD_NETWORK_CIDR",
    ("cluster", "network_plugin_manifest"): "KUBEPROV_NETWORK_PLUGIN_MANIFEST",
    ("kubernetes", "version"): "KUBEPROV_KUBERNETES_VERSION",
    ("logging", "level"): "LOG_LEVEL",
    ("logging", "file"): "KUBEPROV_LOG_FILE",
    ("state_dir",): "KUBEPROV_STATE_DIR",
}

DEFAULT_DAEMON_CONFIG: Dict[str, Any] = {
    "exec-opts": ["native.cgroupdriver=systemd"],
    "log-driver": "json-file",
    "log-opts": {"max-size": "100m"},
    "storage-driver": "overlay2",
}


class SSHSettings(BaseModel):
    """SSH connection configuration for remote machines."""
    user: str = Field(default=Config.SSH_USER, description="Default SSH username")
    key_path: str = Field(default=Config.SSH_KEY_PATH, description="Path to SSH private key")
    port: int = Field(default=Config.SSH_PORT, description="SSH port number")
    connect_timeout: int = Field(default=Config.SSH_TIMEOUT, description="SSH connection timeout in seconds")
    command_timeout: int = Field(default=Config.COMMAND_TIMEOUT, description="Command execution timeout in seconds")
    sudo: bool = Field(default=False, description="Wrap remote commands in sudo")

    @field_validator('key_path')
    @classmethod
    def expand_key_path(cls, v: str) -> str:
        """Expand the user home directory in the key path."""
        return os.path.expanduser(v)


class SystemSettings(BaseModel):
    """Host prerequisites applied to every machine."""
    kernel_modules: List[str] = Field(default_factory=lambda: ["overlay", "br_netfilter"])
    modules_file: str = "/etc/modules-load.d/k8s.conf"
    sysctl: Dict[str, str] = Field(default_factory=lambda: {
        "net.bridge.bridge-nf-call-ip6tables": "1",
        "net.bridge.bridge-nf-call-iptables": "1",
        "net.ipv4.ip_forward": "1",
    })
    sysctl_file: str = "/etc/sysctl.d/k8s.conf"
    fstab_path: str = "/etc/fstab"


class RuntimeSettings(BaseModel):
    """Container runtime installation and daemon configuration."""
    package: str = "docker.io"
    service: str = "docker"
    config_path: str = "/etc/docker/daemon.json"
    daemon_config: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_DAEMON_CONFIG))


class KubernetesSettings(BaseModel):
    """Kubernetes package repository and tools."""
    version: str = Field(default="v1.31", description="Minor release stream on pkgs.k8s.io")
    packages: List[str] = Field(default_factory=lambda: ["kubelet", "kubeadm", "kubectl"])
    prerequisites: List[str] = Field(
        default_factory=lambda: ["apt-transport-https", "ca-certificates", "curl", "gpg"]
    )
    repository_url: str = "https://pkgs.k8s.io/core:/stable:/{version}/deb/"
    keyring_path: str = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
    list_path: str = "/etc/apt/sources.list.d/kubernetes.list"
    # Google's retired apt.kubernetes.io signing key
    legacy_key_ids: List[str] = Field(default_factory=lambda: ["7F92E05B31093BEF5A3C2D38FEEA9169307EA071"])

    @field_validator('version')
    @classmethod
    def normalize_version(cls, v: str) -> str:
        return v if v.startswith('v') else f"v{v}"

    @property
    def resolved_repository_url(self) -> str:
        return self.repository_url.format(version=self.version)

    @property
    def signing_key_url(self) -> str:
        return f"{self.resolved_repository_url}Release.key"

    @property
    def repository_line(self) -> str:
        return f"deb [signed-by={self.keyring_path}] {self.resolved_repository_url} /"


class ClusterSettings(BaseModel):
    """Control-plane bootstrap and join settings."""
    pod_network_cidr: str = "10.244.0.0/16"
    network_plugin_manifest: str = (
        "https://github.com/flannel-io/flannel/releases/latest/download/kube-flannel.yml"
    )
    network_plugin_namespace: str = "kube-flannel"
    network_plugin_daemonset: str = "kube-flannel-ds"
    admin_kubeconfig: str = "/etc/kubernetes/admin.conf"
    kubelet_kubeconfig: str = "/etc/kubernetes/kubelet.conf"
    user_kubeconfig: str = "~/.kube/config"
    single_node: bool = Field(default=False, description="Allow workloads on the control plane")
    system_pods_timeout: float = 300.0


class VerifySettings(BaseModel):
    """Bounded convergence wait."""
    timeout: float = Config.VERIFY_TIMEOUT
    interval: float = Config.VERIFY_INTERVAL


class LoggingSettings(BaseModel):
    """Logging configuration."""
    level: str = Field(default=Config.LOG_LEVEL, description="Logging level")
    file: Optional[str] = Field(default=Config.LOG_FILE or None, description="Path to log file")
    max_size_mb: int = 100
    backup_count: int = 5


class ProvisionConfig(BaseModel):
    """Provisioning configuration."""
    model_config = ConfigDict(extra="ignore")

    state_dir: str = Config.STATE_DIR
    ssh: SSHSettings = Field(default_factory=SSHSettings)
    system: SystemSettings = Field(default_factory=SystemSettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    kubernetes: KubernetesSettings = Field(default_factory=KubernetesSettings)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    verify: VerifySettings = Field(default_factory=VerifySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> 'ProvisionConfig':
        """Load configuration from file and environment variables."""
        config_data: Dict[str, Any] = {}

        if config_path:
            config_path = Path(config_path).expanduser().absolute()
            if not config_path.exists():
                raise FileNotFoundError(f"Config file not found: {config_path}")
            config_data = cls._load_config_file(config_path)
        else:
            for path in DEFAULT_CONFIG_PATHS:
                path = path.expanduser().absolute()
                if path.exists():
                    config_data = cls._load_config_file(path)
                    break

        cls._apply_env_overrides(config_data)
        return cls(**config_data)

    @classmethod
    def _load_config_file(cls, path: Path) -> Dict[str, Any]:
        """Load configuration from a YAML file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return {}
        logger.debug(f"Loaded configuration from {path}")
        return data

    @staticmethod
    def _apply_env_overrides(config_data: Dict[str, Any]) -> None:
        for keys, env_var in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value is None or value == "":
                continue
            target = config_data
            for key in keys[:-1]:
                target = target.setdefault(key, {})
            target[keys[-1]] = value

    def save(self, path: Union[str, Path]) -> None:
        """Save configuration to a file."""
        path = Path(path).expanduser().absolute()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.model_dump(exclude_none=True), f, default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[ProvisionConfig] = None

def get_config(config_path: Optional[Union[str, Path]] = None) -> ProvisionConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None or config_path:
        _config = ProvisionConfig.load(config_path)
    return _config

def set_config(config: Optional[ProvisionConfig]) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
