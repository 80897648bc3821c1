"""Configuration management for the kubeprov application."""
import os
from typing import Tuple
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()

class Config:
    """Application configuration with sensible defaults."""

    # State
    STATE_DIR: str = os.getenv("KUBEPROV_STATE_DIR", os.path.expanduser("~/.kubeprov/state"))

    # SSH
    SSH_USER: str = os.getenv("KUBEPROV_SSH_USER", "root")
    SSH_KEY_PATH: str = os.getenv("KUBEPROV_SSH_KEY_PATH", "~/.ssh/id_rsa")
    SSH_PORT: int = int(os.getenv("KUBEPROV_SSH_PORT", "22"))
    SSH_TIMEOUT: int = int(os.getenv("KUBEPROV_SSH_TIMEOUT", "10"))
    COMMAND_TIMEOUT: int = int(os.getenv("KUBEPROV_COMMAND_TIMEOUT", "900"))  # 15 minutes

    # Convergence checks (in seconds)
    VERIFY_TIMEOUT: float = float(os.getenv("KUBEPROV_VERIFY_TIMEOUT", "300"))
    VERIFY_INTERVAL: float = float(os.getenv("KUBEPROV_VERIFY_INTERVAL", "5"))

    # Fetching repository signing keys
    HTTP_TIMEOUT: int = int(os.getenv("KUBEPROV_HTTP_TIMEOUT", "30"))

    # API
    API_KEY: str = os.getenv("KUBEPROV_API_KEY", "kubeprov-secret")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FILE: str = os.getenv("KUBEPROV_LOG_FILE", "")
    LOG_FORMAT: str = os.getenv(
        "LOG_FORMAT",
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # Security
    REDACT_KEYS: Tuple[str, ...] = ("token", "password", "secret", "api_key", "ca_cert_hash")
