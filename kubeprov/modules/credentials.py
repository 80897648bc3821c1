"""Join credential issuance and transport.

The control-plane run is the only producer of join credentials; workers only
read them. Nothing here caches or persists a credential on its own. Writing
one to a file is an explicit operator choice via ``write_credential``.
"""

import logging
import os
from typing import Optional

import yaml

from .errors import ApplyFailed, MissingPrerequisite, PreconditionUnverifiable
from .models import JoinCredential

logger = logging.getLogger("kubeprov.credentials")

ISSUE_PHASE = 'issue-join-credential'


class CredentialExchange:
    """Issues join credentials from a bootstrapped control plane."""

    def __init__(self, control_plane):
        self.control_plane = control_plane

    def issue(self) -> JoinCredential:
        """Create a join credential for this control plane.

        Raises:
            MissingPrerequisite: If the control plane is not bootstrapped yet
            PreconditionUnverifiable: If bootstrap status cannot be probed
            ApplyFailed: If the bootstrap tool fails to create a token
        """
        try:
            bootstrapped = self.control_plane.is_initialized()
        except Exception as e:
            raise PreconditionUnverifiable(ISSUE_PHASE, str(e)) from e
        if not bootstrapped:
            raise MissingPrerequisite(ISSUE_PHASE, "control plane bootstrap has not completed")

        try:
            credential = self.control_plane.create_join_token()
        except Exception as e:
            raise ApplyFailed(ISSUE_PHASE, str(e)) from e

        logger.info(f"🔑 Issued join credential for {credential.endpoint}")
        return credential

    def regenerate(self) -> JoinCredential:
        """Re-issue a credential, e.g. after the original was lost.

        Earlier unexpired tokens remain valid; expiry is enforced by the
        control plane, not here.
        """
        logger.info("🔁 Regenerating join credential")
        return self.issue()


def write_credential(path: str, credential: JoinCredential) -> None:
    """Write a credential as YAML readable only by its owner."""
    path = os.path.abspath(os.path.expanduser(path))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        yaml.safe_dump(credential.to_dict(), f, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)


def read_credential(path: str) -> JoinCredential:
    """Load a credential written by ``write_credential`` or a raw join command file."""
    with open(os.path.expanduser(path), 'r', encoding='utf-8') as f:
        raw = f.read()
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError:
        data = None
    if isinstance(data, dict):
        return JoinCredential.from_dict(data)
    return JoinCredential.from_join_command(raw.strip())


def resolve_credential(
    join_file: Optional[str] = None,
    join_command: Optional[str] = None,
) -> Optional[JoinCredential]:
    """Pick the worker's credential from a file or a join command string."""
    if join_file:
        return read_credential(join_file)
    if join_command:
        return JoinCredential.from_join_command(join_command)
    return None
