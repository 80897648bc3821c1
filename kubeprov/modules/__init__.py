"""Provisioning and bootstrap orchestration.

- models: data model (roles, phases, node state, credentials, results)
- catalog: ordered phases per role
- orchestrator: runs a machine through its catalog
- state: durable per-machine state
- credentials: join credential issuance and transport
- verifier: bounded convergence checks
- fleet: multi-machine deployment over SSH
"""

from .catalog import catalog, phase_names
from .credentials import CredentialExchange, read_credential, write_credential
from .errors import (
    ApplyFailed,
    CollaboratorError,
    CommandError,
    ConcurrentRunError,
    MissingPrerequisite,
    PostconditionFailed,
    PreconditionUnverifiable,
    ProvisionError,
)
from .models import (
    ClusterView,
    ErrorKind,
    JoinCredential,
    NodeState,
    NodeStatus,
    Phase,
    PodStatus,
    ProvisionState,
    Role,
    RunResult,
    VerifyResult,
)
from .orchestrator import Orchestrator
from .state import NodeStateStore
from .verifier import ClusterVerifier

__all__ = [
    'catalog',
    'phase_names',
    'CredentialExchange',
    'read_credential',
    'write_credential',
    'ApplyFailed',
    'CollaboratorError',
    'CommandError',
    'ConcurrentRunError',
    'MissingPrerequisite',
    'PostconditionFailed',
    'PreconditionUnverifiable',
    'ProvisionError',
    'ClusterView',
    'ErrorKind',
    'JoinCredential',
    'NodeState',
    'NodeStatus',
    'Phase',
    'PodStatus',
    'ProvisionState',
    'Role',
    'RunResult',
    'VerifyResult',
    'Orchestrator',
    'NodeStateStore',
    'ClusterVerifier',
]
