import os
from pathlib import Path
from typing import Optional

from kubernetes import client, config


def load_kubeconfig(path: Optional[str] = None) -> str:
    """
    Load the kubeconfig from a given path or from the KUBECONFIG_CONTENT env var.
    Returns the actual path used to load the kubeconfig.
    """
    # CI/CD secret-based loading
    if "KUBECONFIG_CONTENT" in os.environ:
        temp_path = "/tmp/ci-kubeconfig.yaml"
        with open(temp_path, "w") as f:
            f.write(os.environ["KUBECONFIG_CONTENT"])
        os.chmod(temp_path, 0o600)
        config.load_kube_config(config_file=temp_path)
        return temp_path

    path = path or os.environ.get("KUBECONFIG")
    if path:
        resolved = Path(os.path.expanduser(path)).resolve()
        if not resolved.exists():
            raise FileNotFoundError(f"❌ Kubeconfig not found: {resolved}")
        config.load_kube_config(config_file=str(resolved))
        return str(resolved)

    raise ValueError("No kubeconfig path provided and neither KUBECONFIG nor KUBECONFIG_CONTENT is set.")


def core_v1(path: Optional[str] = None) -> client.CoreV1Api:
    """Return a CoreV1Api bound to the loaded kubeconfig."""
    load_kubeconfig(path)
    return client.CoreV1Api()
