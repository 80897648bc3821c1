"""Drives one machine through its role's phase catalog.

Phases run strictly in order. A phase is recorded complete only after its
postcondition holds, and the first failure halts the run. Re-running resumes:
recorded phases whose check still passes are skipped, so only the failed
phase (and what follows it) is attempted again. A set cancel event stops the
run before its next phase.
"""

import logging
import threading
from typing import Callable, List, Optional, Sequence

from .catalog import COMMON_PHASES, catalog
from .credentials import CredentialExchange
from .errors import (
    ApplyFailed,
    MissingPrerequisite,
    PostconditionFailed,
    PreconditionUnverifiable,
    ProvisionError,
)
from .models import (
    ErrorKind,
    JoinCredential,
    NodeState,
    Phase,
    PhaseFailure,
    ProvisionState,
    Role,
    RunResult,
)
from .state import NodeStateStore
from .verifier import ClusterVerifier

logger = logging.getLogger("kubeprov.orchestrator")


def valid_prefix(completed: Sequence[str], names: Sequence[str]) -> List[str]:
    """Longest prefix of ``completed`` that matches the catalog order."""
    prefix = []
    for done, expected in zip(completed, names):
        if done != expected:
            break
        prefix.append(done)
    return prefix


class Orchestrator:
    """Runs the phase catalog for a machine against durable NodeState."""

    def __init__(
        self,
        store: NodeStateStore,
        context,
        verifier: Optional[ClusterVerifier] = None,
        credentials: Optional[CredentialExchange] = None,
        verify_timeout: float = 300.0,
        verify_interval: float = 5.0,
        phases: Optional[Callable[[Role], List[Phase]]] = None,
        common_phase_count: Optional[int] = None,
    ):
        self.store = store
        self.context = context
        self.verifier = verifier
        self.credentials = credentials
        self.verify_timeout = verify_timeout
        self.verify_interval = verify_interval
        self.phases = phases or catalog
        self.common_phase_count = len(COMMON_PHASES) if common_phase_count is None else common_phase_count

    def _derive_state(self, state: NodeState, names: List[str]) -> ProvisionState:
        done = len(state.completed_phases)
        if done >= len(names):
            return ProvisionState.ROLE_COMPLETE
        if done >= self.common_phase_count:
            return ProvisionState.COMMON_COMPLETE
        return ProvisionState.UNPROVISIONED

    def _save(self, state: NodeState) -> None:
        state.touch()
        self.store.save(state)

    def _run_phase(self, phase: Phase, state: NodeState, credential: Optional[JoinCredential]) -> bool:
        """Bring one phase to its postcondition.

        Returns:
            True if the phase's action ran, False if it was skipped or adopted

        Raises:
            ProvisionError: On the first failed probe, action or verification
        """
        ctx = self.context
        recorded = state.is_complete(phase.name)

        try:
            satisfied = bool(phase.check(ctx))
        except Exception as e:
            raise PreconditionUnverifiable(phase.name, str(e)) from e

        if satisfied and recorded:
            logger.info(f"⏭️  {phase.name}: already complete")
            return False

        if satisfied:
            try:
                verified = bool(phase.verify(ctx))
            except Exception as e:
                raise PostconditionFailed(phase.name, f"verification probe failed: {e}") from e
            if not verified:
                raise PostconditionFailed(phase.name, "check reported satisfied but verification did not")
            logger.info(f"✅ {phase.name}: already in place, recorded complete")
            return False

        if recorded:
            # Externally reverted; later phases depended on it, so drop them too
            index = state.completed_phases.index(phase.name)
            logger.warning(
                f"⚠️  {phase.name}: recorded complete but no longer in effect; re-applying "
                f"and forgetting {len(state.completed_phases) - index} recorded phase(s)"
            )
            state.completed_phases = state.completed_phases[:index]
            self._save(state)

        if phase.requires_credential and credential is None:
            raise MissingPrerequisite(phase.name, "no join credential was supplied for this worker")

        logger.info(f"🔧 {phase.name}: {phase.description}")
        try:
            phase.apply(ctx)
        except Exception as e:
            raise ApplyFailed(phase.name, str(e)) from e

        try:
            verified = bool(phase.verify(ctx))
        except Exception as e:
            raise PostconditionFailed(phase.name, f"verification probe failed: {e}") from e
        if not verified:
            raise PostconditionFailed(
                phase.name, "action reported success but its effect was not observed"
            )
        logger.info(f"✅ {phase.name}: done")
        return True

    def _fail(self, state: NodeState, result: RunResult, error: ProvisionError) -> RunResult:
        state.last_error = PhaseFailure(phase=error.phase or '', kind=error.kind, detail=error.detail)
        state.state = ProvisionState.FAILED
        self._save(state)
        logger.error(f"❌ {state.machine_id}: {error}")
        result.success = False
        result.failed_phase = error.phase
        result.error_kind = error.kind
        result.error = error.detail
        result.state = state.state
        result.completed_phases = list(state.completed_phases)
        return result

    def _stop(self, state: NodeState, result: RunResult, next_phase: str) -> RunResult:
        """Halt between phases on cancellation; recorded progress stays resumable."""
        self._save(state)
        logger.warning(f"🛑 {state.machine_id}: cancelled before {next_phase}")
        result.success = False
        result.cancelled = True
        result.error = f"cancelled before phase {next_phase}"
        result.state = state.state
        result.completed_phases = list(state.completed_phases)
        return result

    def run(
        self,
        machine_id: str,
        role: Role,
        credential: Optional[JoinCredential] = None,
        cancel: Optional[threading.Event] = None,
    ) -> RunResult:
        """Provision ``machine_id`` as ``role``.

        Raises:
            ConcurrentRunError: If another run holds this machine's lock
        """
        role = Role(role)
        with self.store.lock(machine_id):
            state = self.store.load(machine_id) or NodeState(machine_id=machine_id, role=role)
            result = RunResult(
                machine_id=machine_id, role=role, success=False, node_name=self.context.node_name
            )

            if state.role != role:
                # Recorded progress belongs to the other role and stays untouched
                error = MissingPrerequisite(
                    None,
                    f"{machine_id} was provisioned as {state.role.value}; "
                    f"reset its state before provisioning it as {role.value}",
                )
                logger.error(f"❌ {machine_id}: {error}")
                result.error_kind = error.kind
                result.error = error.detail
                result.state = state.state
                result.completed_phases = list(state.completed_phases)
                return result

            phases = self.phases(role)
            names = [p.name for p in phases]
            state.completed_phases = valid_prefix(state.completed_phases, names)
            self.context.credential = credential
            self.context.cancel = cancel

            logger.info(
                f"🚀 Provisioning {machine_id} as {role.value} "
                f"({len(state.completed_phases)}/{len(names)} phases recorded)"
            )

            for i, phase in enumerate(phases, 1):
                if cancel is not None and cancel.is_set():
                    return self._stop(state, result, phase.name)
                logger.debug(f"Phase {i}/{len(phases)}: {phase.name}")
                try:
                    if self._run_phase(phase, state, credential):
                        result.applied_phases.append(phase.name)
                except ProvisionError as e:
                    return self._fail(state, result, e)

                if phase.name not in state.completed_phases:
                    state.completed_phases.append(phase.name)
                state.state = self._derive_state(state, names)
                self._save(state)

            state.last_error = None
            state.state = ProvisionState.ROLE_COMPLETE
            result.success = True

            if self.verifier is not None:
                verification = self.verifier.await_ready(
                    [self.context.node_name],
                    timeout=self.verify_timeout,
                    poll_interval=self.verify_interval,
                    cancel=cancel,
                )
                result.verification = verification
                if verification.converged:
                    state.state = ProvisionState.VERIFIED
                else:
                    result.error_kind = ErrorKind.CONVERGENCE_TIMEOUT
                    result.error = (
                        f"{self.context.node_name} did not report Ready within {self.verify_timeout}s"
                        if verification.timed_out else "convergence wait cancelled"
                    )
                    logger.warning(f"⚠️  {result.error}")

            if role == Role.CONTROL_PLANE and self.credentials is not None:
                try:
                    result.credential = self.credentials.issue()
                except ProvisionError as e:
                    return self._fail(state, result, e)

            self._save(state)
            result.state = state.state
            result.completed_phases = list(state.completed_phases)
            logger.info(f"🏁 {machine_id}: {state.state.value}")
            return result
