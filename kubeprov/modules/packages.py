"""Host package manager (apt) operations."""

import logging
import shlex
from typing import Iterable, Set

import requests

from ..config import Config
from .errors import CollaboratorError
from .runner import CommandRunner

logger = logging.getLogger("kubeprov.packages")

APT_ENV = "DEBIAN_FRONTEND=noninteractive"


def fetch_signing_key(url: str, timeout: int = None) -> bytes:
    """Download an armored repository signing key."""
    try:
        response = requests.get(url, timeout=timeout or Config.HTTP_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise CollaboratorError(f"Failed to fetch signing key from {url}: {e}")
    return response.content


class AptPackageManager:
    """Installs, pins and inspects Debian packages."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    @staticmethod
    def _names(names: Iterable[str]) -> str:
        return " ".join(shlex.quote(n) for n in names)

    def update(self) -> None:
        self.runner.run(f"{APT_ENV} apt-get update")

    def install(self, names: Iterable[str]) -> None:
        names = list(names)
        logger.info(f"[{self.runner.host}] 📦 Installing {', '.join(names)}")
        self.runner.run(f"{APT_ENV} apt-get install -y {self._names(names)}")

    def hold(self, names: Iterable[str]) -> None:
        """Pin packages against unintended upgrades."""
        self.runner.run(f"apt-mark hold {self._names(names)}")

    def held(self) -> Set[str]:
        return set(self.runner.output("apt-mark showhold").split())

    def is_installed(self, name: str) -> bool:
        result = self.runner.run(
            f"dpkg-query -W -f='${{Status}}' {shlex.quote(name)}", check=False
        )
        return result.ok and 'install ok installed' in result.stdout

    def all_installed(self, names: Iterable[str]) -> bool:
        return all(self.is_installed(n) for n in names)

    def add_repository(self, descriptor: str, signing_key: bytes, list_path: str, keyring_path: str) -> None:
        """Register an apt repository signed by the given armored key.

        Any previous list file at ``list_path`` is replaced.
        """
        keyring = shlex.quote(keyring_path)
        self.runner.run(f"mkdir -p -m 755 \"$(dirname {keyring})\"")
        self.runner.run(f"gpg --batch --yes --dearmor -o {keyring}", input=signing_key)
        self.runner.run(f"chmod 644 {keyring}")
        self.runner.run(f"rm -f {shlex.quote(list_path)}")
        self.runner.write_file(list_path, descriptor + "\n", mode=0o644)

    def remove_legacy_keys(self, key_ids: Iterable[str]) -> None:
        """Drop deprecated keys from the apt-key keyring where apt-key still exists."""
        for key_id in key_ids:
            self.runner.run(
                f"if command -v apt-key >/dev/null 2>&1; then apt-key del {shlex.quote(key_id)}; fi",
                check=False,
            )

    def has_repository(self, descriptor: str, list_path: str, keyring_path: str) -> bool:
        if not self.runner.file_exists(keyring_path):
            return False
        content = self.runner.read_file(list_path)
        return content is not None and content.strip() == descriptor.strip()

    def fetch_signing_key(self, url: str) -> bytes:
        return fetch_signing_key(url)
