"""Container runtime service management (systemd)."""

import json
import logging
import shlex
from typing import Any, Dict, Optional

from .runner import CommandRunner

logger = logging.getLogger("kubeprov.runtime")


class RuntimeService:
    """Controls the container runtime daemon and its config file."""

    def __init__(self, runner: CommandRunner, service: str = 'docker', config_path: str = '/etc/docker/daemon.json'):
        self.runner = runner
        self.service = service
        self.config_path = config_path

    def write_config(self, content: str, path: Optional[str] = None) -> None:
        self.runner.write_file(path or self.config_path, content, mode=0o644)

    def read_config(self, path: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Parsed JSON daemon config, or None when absent or unparsable."""
        raw = self.runner.read_file(path or self.config_path)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"[{self.runner.host}] {path or self.config_path} is not valid JSON")
            return None

    def daemon_reload(self) -> None:
        self.runner.run("systemctl daemon-reload")

    def start(self) -> None:
        self.runner.run(f"systemctl start {shlex.quote(self.service)}")

    def enable(self) -> None:
        self.runner.run(f"systemctl enable {shlex.quote(self.service)}")

    def restart(self) -> None:
        logger.info(f"[{self.runner.host}] 🔄 Restarting {self.service}")
        self.runner.run(f"systemctl restart {shlex.quote(self.service)}")

    def is_active(self) -> bool:
        return self.runner.succeeds(f"systemctl is-active --quiet {shlex.quote(self.service)}")

    def is_enabled(self) -> bool:
        return self.runner.succeeds(f"systemctl is-enabled --quiet {shlex.quote(self.service)}")
