"""Data models for machine provisioning."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional


class Role(str, Enum):
    """Machine roles in the cluster."""
    CONTROL_PLANE = 'control-plane'
    WORKER = 'worker'


class ProvisionState(str, Enum):
    """Per-machine provisioning state."""
    UNPROVISIONED = 'unprovisioned'
    COMMON_COMPLETE = 'common_complete'
    ROLE_COMPLETE = 'role_complete'
    VERIFIED = 'verified'
    FAILED = 'failed'


class ErrorKind(str, Enum):
    """Error taxonomy surfaced to operators."""
    PRECONDITION_UNVERIFIABLE = 'precondition_unverifiable'
    APPLY_FAILED = 'apply_failed'
    POSTCONDITION_FAILED = 'postcondition_failed'
    MISSING_PREREQUISITE = 'missing_prerequisite'
    CONVERGENCE_TIMEOUT = 'convergence_timeout'


@dataclass(frozen=True)
class Phase:
    """A named, idempotent unit of configuration work.

    ``check`` reports whether the phase's effect is already present on the
    machine, ``apply`` performs the work and ``verify`` confirms the effect
    afterwards. All three receive the run's ``PhaseContext``.
    """
    name: str
    description: str
    check: Callable[[Any], bool]
    apply: Callable[[Any], None]
    verify: Callable[[Any], bool]
    requires_credential: bool = False


@dataclass
class PhaseFailure:
    """The last recorded failure for a machine."""
    phase: str
    kind: ErrorKind
    detail: str

    def to_dict(self) -> Dict[str, str]:
        return {'phase': self.phase, 'kind': self.kind.value, 'detail': self.detail}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'PhaseFailure':
        return cls(phase=data['phase'], kind=ErrorKind(data['kind']), detail=data.get('detail', ''))


@dataclass
class NodeState:
    """Durable record of provisioning progress for one machine.

    ``completed_phases`` is always a prefix of the role's catalog order.
    """
    machine_id: str
    role: Role
    completed_phases: List[str] = field(default_factory=list)
    state: ProvisionState = ProvisionState.UNPROVISIONED
    last_error: Optional[PhaseFailure] = None
    last_attempt: Optional[str] = None

    def touch(self) -> None:
        """Record the time of the latest attempt."""
        self.last_attempt = datetime.now(timezone.utc).isoformat()

    def is_complete(self, phase_name: str) -> bool:
        return phase_name in self.completed_phases

    def to_dict(self) -> Dict[str, Any]:
        return {
            'machine_id': self.machine_id,
            'role': self.role.value,
            'completed_phases': list(self.completed_phases),
            'state': self.state.value,
            'last_error': self.last_error.to_dict() if self.last_error else None,
            'last_attempt': self.last_attempt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NodeState':
        last_error = data.get('last_error')
        return cls(
            machine_id=data['machine_id'],
            role=Role(data['role']),
            completed_phases=list(data.get('completed_phases', [])),
            state=ProvisionState(data.get('state', ProvisionState.UNPROVISIONED.value)),
            last_error=PhaseFailure.from_dict(last_error) if last_error else None,
            last_attempt=data.get('last_attempt'),
        )


TOKEN_RE = re.compile(r'^[a-z0-9]{6}\.[a-z0-9]{16}$')
CA_HASH_RE = re.compile(r'^sha256:[a-f0-9]{64}$')


@dataclass(frozen=True)
class JoinCredential:
    """Bootstrap token plus discovery information for joining a control plane."""
    token: str
    host: str
    port: int
    ca_cert_hash: str

    def __post_init__(self):
        if not TOKEN_RE.match(self.token):
            raise ValueError("Join token must look like 'abcdef.0123456789abcdef'")
        if not CA_HASH_RE.match(self.ca_cert_hash):
            raise ValueError("CA cert hash must look like 'sha256:<64 hex chars>'")
        if not self.host:
            raise ValueError("Discovery endpoint host is required")

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    def to_join_command(self) -> str:
        return (
            f"kubeadm join {self.endpoint} --token {self.token} "
            f"--discovery-token-ca-cert-hash {self.ca_cert_hash}"
        )

    @classmethod
    def from_join_command(cls, command: str) -> 'JoinCredential':
        """Parse the output of ``kubeadm token create --print-join-command``."""
        parts = command.replace('\\', ' ').split()
        try:
            start = parts.index('join')
        except ValueError:
            raise ValueError(f"Not a kubeadm join command: {command!r}")

        endpoint = None
        token = None
        ca_hash = None
        args = parts[start + 1:]
        i = 0
        while i < len(args):
            arg = args[i]
            if arg == '--token' and i + 1 < len(args):
                token = args[i + 1]
                i += 2
                continue
            if arg == '--discovery-token-ca-cert-hash' and i + 1 < len(args):
                ca_hash = args[i + 1]
                i += 2
                continue
            if arg.startswith('--token='):
                token = arg.split('=', 1)[1]
            elif arg.startswith('--discovery-token-ca-cert-hash='):
                ca_hash = arg.split('=', 1)[1]
            elif not arg.startswith('-') and endpoint is None:
                endpoint = arg
            i += 1

        if not endpoint or not token or not ca_hash:
            raise ValueError(f"Incomplete kubeadm join command: {command!r}")

        host, _, port = endpoint.rpartition(':')
        if not host or not port.isdigit():
            raise ValueError(f"Invalid discovery endpoint: {endpoint!r}")
        return cls(token=token, host=host, port=int(port), ca_cert_hash=ca_hash)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'token': self.token,
            'host': self.host,
            'port': self.port,
            'ca_cert_hash': self.ca_cert_hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'JoinCredential':
        return cls(
            token=data['token'],
            host=data['host'],
            port=int(data.get('port', 6443)),
            ca_cert_hash=data['ca_cert_hash'],
        )


@dataclass(frozen=True)
class NodeStatus:
    """Membership entry of a ClusterView."""
    name: str
    ready: bool
    roles: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class ClusterView:
    """Read-only snapshot of cluster membership and readiness."""
    nodes: List[NodeStatus] = field(default_factory=list)

    def ready_names(self) -> FrozenSet[str]:
        return frozenset(n.name for n in self.nodes if n.ready)

    def names(self) -> FrozenSet[str]:
        return frozenset(n.name for n in self.nodes)


@dataclass(frozen=True)
class PodStatus:
    """Status of a system pod."""
    name: str
    namespace: str
    phase: str
    ready: bool

    @property
    def healthy(self) -> bool:
        return self.phase == 'Succeeded' or (self.phase == 'Running' and self.ready)


@dataclass
class VerifyResult:
    """Outcome of a bounded convergence wait."""
    ready: FrozenSet[str] = frozenset()
    not_ready: FrozenSet[str] = frozenset()
    timed_out: bool = False
    cancelled: bool = False

    @property
    def converged(self) -> bool:
        return not self.not_ready and not self.timed_out and not self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ready': sorted(self.ready),
            'not_ready': sorted(self.not_ready),
            'timed_out': self.timed_out,
            'cancelled': self.cancelled,
        }


@dataclass
class RunResult:
    """Result of one orchestrator run for a machine."""
    machine_id: str
    role: Role
    success: bool
    node_name: Optional[str] = None
    completed_phases: List[str] = field(default_factory=list)
    applied_phases: List[str] = field(default_factory=list)
    state: ProvisionState = ProvisionState.UNPROVISIONED
    failed_phase: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None
    credential: Optional[JoinCredential] = None
    verification: Optional[VerifyResult] = None
    cancelled: bool = False

    @property
    def verified(self) -> bool:
        return self.state == ProvisionState.VERIFIED
