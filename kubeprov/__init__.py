"""kubeprov - phase-driven kubeadm cluster provisioning."""

__version__ = "0.1.0"
