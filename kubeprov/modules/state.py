"""Durable per-machine provisioning state.

Each machine's NodeState lives in ``<state_dir>/<machine_id>.json``. Writes go
through a temporary file and a rename so a crash never leaves a half-written
document. ``lock()`` serializes runs for one machine across threads and
processes; a second run is rejected rather than queued.
"""

import fcntl
import json
import logging
import os
import re
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from .errors import ConcurrentRunError
from .models import NodeState

logger = logging.getLogger("kubeprov.state")

MACHINE_ID_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]*$')


class NodeStateStore:
    """JSON-file store of NodeState documents."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(os.path.expanduser(str(state_dir)))
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _path(self, machine_id: str, suffix: str = '.json') -> Path:
        if not MACHINE_ID_RE.match(machine_id):
            raise ValueError(f"Invalid machine identifier: {machine_id!r}")
        return self.state_dir / f"{machine_id}{suffix}"

    def load(self, machine_id: str) -> Optional[NodeState]:
        path = self._path(machine_id)
        if not path.exists():
            return None
        with open(path, 'r') as f:
            return NodeState.from_dict(json.load(f))

    def save(self, state: NodeState) -> None:
        path = self._path(state.machine_id)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.state_dir, prefix=f".{state.machine_id}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(state.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def list(self) -> List[NodeState]:
        if not self.state_dir.exists():
            return []
        states = []
        for path in sorted(self.state_dir.glob('*.json')):
            with open(path, 'r') as f:
                states.append(NodeState.from_dict(json.load(f)))
        return states

    def reset(self, machine_id: str) -> bool:
        """Forget a machine's progress; True if there was anything to remove."""
        path = self._path(machine_id)
        if path.exists():
            path.unlink()
            logger.info(f"🧹 Reset provisioning state for {machine_id}")
            return True
        return False

    def _thread_lock(self, machine_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(machine_id, threading.Lock())

    @contextmanager
    def lock(self, machine_id: str) -> Iterator[None]:
        """Hold the exclusive writer lock for a machine.

        Raises:
            ConcurrentRunError: If another thread or process holds it
        """
        thread_lock = self._thread_lock(machine_id)
        if not thread_lock.acquire(blocking=False):
            raise ConcurrentRunError(machine_id)
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            with open(self._path(machine_id, '.lock'), 'w') as lock_file:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    raise ConcurrentRunError(machine_id)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            thread_lock.release()
