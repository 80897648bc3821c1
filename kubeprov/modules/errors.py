"""Exceptions raised while provisioning a machine."""

from typing import Optional

from .models import ErrorKind


class CollaboratorError(Exception):
    """An external tool (package manager, runtime, kubeadm) reported an error."""
    pass


class CommandError(CollaboratorError):
    """A command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stdout: str = '', stderr: str = ''):
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        output = (stderr or stdout or '').strip()
        message = f"Command '{command}' failed with exit code {returncode}"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)


class ProvisionError(Exception):
    """Base class for errors that halt a provisioning run.

    Every instance names the phase it belongs to and carries the underlying
    collaborator detail verbatim.
    """
    kind: ErrorKind = ErrorKind.APPLY_FAILED

    def __init__(self, phase: Optional[str], detail: str):
        self.phase = phase
        self.detail = detail
        prefix = f"[{phase}] " if phase else ""
        super().__init__(f"{prefix}{self.kind.value}: {detail}")


class PreconditionUnverifiable(ProvisionError):
    """The phase's readiness probe itself could not run."""
    kind = ErrorKind.PRECONDITION_UNVERIFIABLE


class ApplyFailed(ProvisionError):
    """The phase's action returned an error from a collaborator."""
    kind = ErrorKind.APPLY_FAILED


class PostconditionFailed(ProvisionError):
    """The action reported success but its effect was not observed."""
    kind = ErrorKind.POSTCONDITION_FAILED


class MissingPrerequisite(ProvisionError):
    """A required external input (join credential, bootstrap) is missing."""
    kind = ErrorKind.MISSING_PREREQUISITE


class ConcurrentRunError(Exception):
    """Another run already holds the state lock for this machine."""

    def __init__(self, machine_id: str):
        self.machine_id = machine_id
        super().__init__(f"A provisioning run for '{machine_id}' is already in progress")
