"""Host prerequisites: swap, kernel modules and sysctl settings."""

import logging
import shlex
from typing import Dict, List, Optional

from .runner import CommandRunner
from .settings import SystemSettings

logger = logging.getLogger("kubeprov.host")


class HostSystem:
    """Probes and changes kernel-level settings the kubelet depends on."""

    def __init__(self, runner: CommandRunner, settings: SystemSettings):
        self.runner = runner
        self.settings = settings

    # Swap

    def swap_active(self) -> bool:
        """True when at least one swap device is in use."""
        lines = self.runner.output("cat /proc/swaps").splitlines()
        # First line is the column header
        return any(line.strip() for line in lines[1:])

    def fstab_swap_entries(self) -> List[str]:
        """Uncommented swap entries in fstab."""
        content = self.runner.read_file(self.settings.fstab_path) or ''
        entries = []
        for line in content.splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith('#'):
                continue
            fields = stripped.split()
            if len(fields) >= 3 and fields[2] == 'swap':
                entries.append(line)
        return entries

    def swap_disabled(self) -> bool:
        return not self.swap_active() and not self.fstab_swap_entries()

    def disable_swap(self) -> None:
        """Turn swap off now and keep it off after a reboot."""
        self.runner.run("swapoff -a")
        entries = set(self.fstab_swap_entries())
        if not entries:
            return
        content = self.runner.read_file(self.settings.fstab_path) or ''
        lines = [f"#{line}" if line in entries else line for line in content.splitlines()]
        self.runner.write_file(self.settings.fstab_path, "\n".join(lines) + "\n", mode=0o644)
        logger.info(f"[{self.runner.host}] Commented {len(entries)} swap entr{'y' if len(entries) == 1 else 'ies'} in {self.settings.fstab_path}")

    # Kernel modules

    def module_loaded(self, name: str) -> bool:
        return self.runner.succeeds(f"test -d /sys/module/{shlex.quote(name)}")

    def modules_persisted(self) -> bool:
        content = self.runner.read_file(self.settings.modules_file) or ''
        listed = {line.strip() for line in content.splitlines()}
        return all(name in listed for name in self.settings.kernel_modules)

    def modules_ready(self) -> bool:
        return all(self.module_loaded(m) for m in self.settings.kernel_modules) and self.modules_persisted()

    def load_modules(self) -> None:
        for name in self.settings.kernel_modules:
            self.runner.run(f"modprobe {shlex.quote(name)}")
        self.runner.write_file(
            self.settings.modules_file,
            "\n".join(self.settings.kernel_modules) + "\n",
        )

    # sysctl

    def sysctl_values(self) -> Dict[str, Optional[str]]:
        """Current values of the configured keys (None when a key does not exist)."""
        values = {}
        for key in self.settings.sysctl:
            result = self.runner.run(f"sysctl -n {shlex.quote(key)}", check=False)
            values[key] = result.stdout.strip() if result.ok else None
        return values

    def render_sysctl(self) -> str:
        return "".join(f"{key} = {value}\n" for key, value in self.settings.sysctl.items())

    def sysctl_configured(self) -> bool:
        current = self.sysctl_values()
        if any(current[key] != str(value) for key, value in self.settings.sysctl.items()):
            return False
        return self.runner.read_file(self.settings.sysctl_file) == self.render_sysctl()

    def apply_sysctl(self) -> None:
        self.runner.write_file(self.settings.sysctl_file, self.render_sysctl())
        self.runner.run("sysctl --system")
