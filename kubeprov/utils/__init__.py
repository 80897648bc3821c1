"""Utility functions and helpers for the kubeprov application."""
from typing import Any

from ..config import Config


def redact_sensitive_data(data: Any) -> Any:
    """Recursively redact sensitive data from dictionaries and lists.

    Args:
        data: Input data that might contain sensitive information

    Returns:
        Data with sensitive values redacted
    """
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if any(
                redact_key.lower() in str(k).lower()
                for redact_key in Config.REDACT_KEYS
            ) else redact_sensitive_data(v)
            for k, v in data.items()
        }
    elif isinstance(data, (list, tuple)):
        return [redact_sensitive_data(item) for item in data]
    return data


def redact_join_command(command: str) -> str:
    """Mask the token and CA hash in a ``kubeadm join`` command line."""
    parts = command.split()
    for i, part in enumerate(parts[:-1]):
        if part in ("--token", "--discovery-token-ca-cert-hash"):
            parts[i + 1] = "[REDACTED]"
    return " ".join(parts)
