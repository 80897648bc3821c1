"""Cluster convergence checks.

The verifier polls the control plane's view of the cluster until the expected
members report Ready, the timeout elapses, or an operator cancels the wait.
A timeout is returned as part of the result, never raised.
"""

import logging
import threading
import time
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import CollaboratorError
from .models import PodStatus, VerifyResult

logger = logging.getLogger("kubeprov.verifier")


class ClusterVerifier:
    """Bounded, cancellable polling of a cluster client."""

    def __init__(
        self,
        client,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.clock = clock
        self.sleep = sleep

    def _wait(self, seconds: float, cancel: Optional[threading.Event]) -> bool:
        """Sleep for up to ``seconds``; True if cancelled meanwhile."""
        if cancel is not None:
            return cancel.wait(seconds)
        self.sleep(seconds)
        return False

    @staticmethod
    def _check_bounds(timeout: float, poll_interval: float) -> None:
        if timeout is None or timeout < 0:
            raise ValueError("A non-negative timeout is required")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")

    def await_ready(
        self,
        expected_members: Iterable[str],
        timeout: float,
        poll_interval: float,
        cancel: Optional[threading.Event] = None,
    ) -> VerifyResult:
        """Wait until every expected member reports Ready.

        Args:
            expected_members: Node names that must converge
            timeout: Maximum seconds to wait; 0 returns immediately
            poll_interval: Seconds between polls
            cancel: Optional event that aborts the wait when set

        Returns:
            VerifyResult with the members seen Ready, those still not Ready,
            and whether the wait timed out or was cancelled
        """
        self._check_bounds(timeout, poll_interval)
        expected = frozenset(expected_members)
        if not expected:
            return VerifyResult()
        if timeout == 0:
            return VerifyResult(not_ready=expected, timed_out=True)

        deadline = self.clock() + timeout
        ready = frozenset()
        polls = 0
        logger.info(f"⏳ Waiting for {len(expected)} node(s) to report Ready (timeout: {timeout}s)")

        while True:
            polls += 1
            try:
                view = self.client.get_nodes()
                ready = view.ready_names() & expected
            except CollaboratorError as e:
                logger.warning(f"⚠️  Could not read cluster nodes: {e}")

            not_ready = expected - ready
            if not not_ready:
                logger.info(f"✅ All {len(expected)} node(s) Ready after {polls} poll(s)")
                return VerifyResult(ready=ready, not_ready=not_ready)

            if cancel is not None and cancel.is_set():
                logger.warning("🛑 Convergence wait cancelled")
                return VerifyResult(ready=ready, not_ready=not_ready, cancelled=True)

            remaining = deadline - self.clock()
            if remaining <= 0:
                logger.warning(f"❌ Timed out waiting for: {', '.join(sorted(not_ready))}")
                return VerifyResult(ready=ready, not_ready=not_ready, timed_out=True)

            logger.debug(f"Not Ready yet: {', '.join(sorted(not_ready))}")
            if self._wait(min(poll_interval, remaining), cancel):
                logger.warning("🛑 Convergence wait cancelled")
                return VerifyResult(ready=ready, not_ready=not_ready, cancelled=True)

    def unhealthy_system_pods(self) -> List[PodStatus]:
        pods = self.client.get_system_pods()
        if not pods:
            raise CollaboratorError("No system pods reported yet")
        return [p for p in pods if not p.healthy]

    def await_system_pods(
        self,
        timeout: float,
        poll_interval: float,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[bool, List[PodStatus]]:
        """Wait until all system pods run.

        Returns:
            (healthy, pods still unhealthy at the end of the wait)
        """
        self._check_bounds(timeout, poll_interval)
        deadline = self.clock() + timeout
        unhealthy: List[PodStatus] = []
        while True:
            try:
                unhealthy = self.unhealthy_system_pods()
                if not unhealthy:
                    logger.info("✅ All system pods are running")
                    return True, []
            except CollaboratorError as e:
                logger.debug(f"System pods not readable yet: {e}")

            remaining = deadline - self.clock()
            if remaining <= 0 or (cancel is not None and cancel.is_set()):
                return False, unhealthy
            if self._wait(min(poll_interval, remaining), cancel):
                return False, unhealthy
