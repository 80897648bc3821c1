"""Multi-machine cluster deployment over SSH.

The control plane is provisioned first; its join credential is handed to the
workers in memory, the workers are provisioned concurrently, and one
convergence check from the control plane closes the deployment.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import yaml
from jsonschema import ValidationError, validate

from .context import build_context
from .cluster_client import KubectlClusterClient
from .credentials import CredentialExchange
from .errors import CollaboratorError, ConcurrentRunError
from .models import ErrorKind, JoinCredential, ProvisionState, Role, RunResult, VerifyResult
from .orchestrator import Orchestrator
from .runner import SSHRunner
from .settings import ProvisionConfig
from .state import NodeStateStore
from .verifier import ClusterVerifier

logger = logging.getLogger("kubeprov.fleet")

MACHINE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9._-]*$"},
        "host": {"type": "string"},
        "user": {"type": "string"},
        "ssh_key": {"type": "string"},
        "port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "sudo": {"type": "boolean"},
    },
    "required": ["name", "host"],
}

INVENTORY_SCHEMA = {
    "type": "object",
    "properties": {
        "control_plane": MACHINE_SCHEMA,
        "workers": {"type": "array", "items": MACHINE_SCHEMA},
    },
    "required": ["control_plane"],
}


@dataclass
class Machine:
    """A machine reachable over SSH."""
    name: str
    host: str
    user: Optional[str] = None
    ssh_key: Optional[str] = None
    port: Optional[int] = None
    sudo: Optional[bool] = None


@dataclass
class Inventory:
    control_plane: Machine
    workers: List[Machine] = field(default_factory=list)


@dataclass
class FleetResult:
    """Per-machine outcomes of a cluster deployment."""
    control_plane: RunResult
    workers: Dict[str, RunResult] = field(default_factory=dict)
    verification: Optional[VerifyResult] = None

    @property
    def success(self) -> bool:
        return (
            self.control_plane.success
            and all(r.success for r in self.workers.values())
            and (self.verification is None or self.verification.converged)
        )


def parse_inventory(data: Dict[str, Any]) -> Inventory:
    try:
        validate(instance=data, schema=INVENTORY_SCHEMA)
    except ValidationError as ve:
        raise ValueError(f"Invalid inventory: {ve.message}")
    names = [data["control_plane"]["name"]] + [w["name"] for w in data.get("workers", [])]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValueError(f"Invalid inventory: duplicate machine names {', '.join(duplicates)}")
    return Inventory(
        control_plane=Machine(**data["control_plane"]),
        workers=[Machine(**w) for w in data.get("workers", [])],
    )


def load_inventory(path: str) -> Inventory:
    with open(path) as f:
        return parse_inventory(yaml.safe_load(f) or {})


def connect(machine: Machine, config: ProvisionConfig) -> SSHRunner:
    ssh = config.ssh
    return SSHRunner(
        host=machine.host,
        username=machine.user or ssh.user,
        key_path=machine.ssh_key or ssh.key_path,
        port=machine.port or ssh.port,
        connect_timeout=ssh.connect_timeout,
        sudo=ssh.sudo if machine.sudo is None else machine.sudo,
        timeout=ssh.command_timeout,
    )


def provision_machine(
    machine: Machine,
    role: Role,
    config: ProvisionConfig,
    store: NodeStateStore,
    credential: Optional[JoinCredential] = None,
    cancel: Optional[threading.Event] = None,
) -> RunResult:
    """Provision one inventory machine over SSH."""
    try:
        with connect(machine, config) as runner:
            ctx = build_context(runner, config)
            verifier = None
            credentials = None
            if role == Role.CONTROL_PLANE:
                verifier = ClusterVerifier(ctx.control_plane)
                credentials = CredentialExchange(ctx.control_plane)
            orchestrator = Orchestrator(
                store,
                ctx,
                verifier=verifier,
                credentials=credentials,
                verify_timeout=config.verify.timeout,
                verify_interval=config.verify.interval,
            )
            return orchestrator.run(machine.name, role, credential=credential, cancel=cancel)
    except (CollaboratorError, ConcurrentRunError) as e:
        logger.error(f"❌ {machine.name}: {e}")
        return RunResult(
            machine_id=machine.name,
            role=role,
            success=False,
            error_kind=ErrorKind.PRECONDITION_UNVERIFIABLE,
            error=str(e),
        )


def record_verified(store: NodeStateStore, runs: List[RunResult], verification: VerifyResult) -> None:
    """Mark machines whose node the cluster-wide check saw Ready as verified."""
    for run in runs:
        if not run.success or run.node_name not in verification.ready:
            continue
        try:
            with store.lock(run.machine_id):
                state = store.load(run.machine_id)
                if state is None or state.state != ProvisionState.ROLE_COMPLETE:
                    continue
                state.state = ProvisionState.VERIFIED
                state.touch()
                store.save(state)
        except ConcurrentRunError as e:
            logger.warning(f"⚠️  Not recording {run.machine_id} as verified: {e}")
            continue
        run.state = ProvisionState.VERIFIED
        logger.info(f"✅ {run.machine_id}: verified")


def _control_plane_client(inventory: Inventory, config: ProvisionConfig):
    runner = connect(inventory.control_plane, config)
    return KubectlClusterClient(runner, config.cluster.admin_kubeconfig)


def deploy_cluster(
    inventory: Inventory,
    config: ProvisionConfig,
    store: NodeStateStore,
    max_workers: int = 10,
    cancel: Optional[threading.Event] = None,
    provision: Callable[..., RunResult] = provision_machine,
    client_factory: Callable[[Inventory, ProvisionConfig], Any] = _control_plane_client,
) -> FleetResult:
    """Deploy a control plane and its workers.

    Worker failures do not stop the other workers; every failure is reported
    in the returned FleetResult.
    """
    cp = inventory.control_plane
    logger.info(f"🚀 Deploying control plane {cp.name} ({cp.host})")
    cp_result = provision(cp, Role.CONTROL_PLANE, config, store, cancel=cancel)
    result = FleetResult(control_plane=cp_result)

    if not cp_result.success or cp_result.credential is None:
        logger.error(f"❌ Control plane {cp.name} failed; skipping {len(inventory.workers)} worker(s)")
        return result

    if inventory.workers:
        logger.info(f"🚀 Deploying {len(inventory.workers)} worker(s)")
        with ThreadPoolExecutor(max_workers=min(max_workers, len(inventory.workers))) as executor:
            future_to_machine = {
                executor.submit(
                    provision, worker, Role.WORKER, config, store,
                    credential=cp_result.credential, cancel=cancel,
                ): worker
                for worker in inventory.workers
            }
            for future in as_completed(future_to_machine):
                worker = future_to_machine[future]
                run = future.result()
                result.workers[worker.name] = run
                if run.success:
                    logger.info(f"✅ Worker {worker.name} provisioned")
                else:
                    logger.error(f"❌ Worker {worker.name} failed at {run.failed_phase}: {run.error}")

    expected = [r.node_name for r in [cp_result, *result.workers.values()] if r.node_name]
    client = client_factory(inventory, config)
    try:
        result.verification = ClusterVerifier(client).await_ready(
            expected,
            timeout=config.verify.timeout,
            poll_interval=config.verify.interval,
            cancel=cancel,
        )
    finally:
        close = getattr(getattr(client, 'runner', None), 'close', None)
        if close is not None:
            close()
    record_verified(store, list(result.workers.values()), result.verification)
    return result
