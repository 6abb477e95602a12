# flowgraph/checkpoint.py
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import List, Optional

from .config import get_settings
from .models import Checkpoint
from .state import State

logger = logging.getLogger(__name__)


class MemoryCheckpointStore:
    """Per-thread execution snapshots kept in process memory.

    Each save replaces the whole record for a thread id, so a run that is
    aborted mid-step leaves the last committed step in place. The store holds
    at most `max_threads` records; saving past that evicts the thread that was
    written least recently.
    """

    def __init__(self, max_threads: Optional[int] = None):
        self.max_threads = max_threads if max_threads is not None else get_settings().max_checkpoints
        if self.max_threads < 1:
            raise ValueError(f"max_threads must be at least 1, got {self.max_threads}")
        self._checkpoints: "OrderedDict[str, Checkpoint]" = OrderedDict()
        self._lock = threading.Lock()

    def save(
        self,
        thread_id: str,
        state: State,
        next_nodes: List[str],
        step: int,
        workflow_id: Optional[str] = None,
        completed: bool = False,
    ) -> Checkpoint:
        checkpoint = Checkpoint(
            thread_id=thread_id,
            workflow_id=workflow_id,
            step=step,
            state=dict(state),
            next_nodes=list(next_nodes),
            completed=completed,
            updated_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._checkpoints[thread_id] = checkpoint
            self._checkpoints.move_to_end(thread_id)
            while len(self._checkpoints) > self.max_threads:
                evicted, _ = self._checkpoints.popitem(last=False)
                logger.debug(f"checkpoint store full; evicted thread {evicted}")
        return checkpoint

    def get(self, thread_id: str) -> Optional[Checkpoint]:
        with self._lock:
            checkpoint = self._checkpoints.get(thread_id)
        if checkpoint is None:
            return None
        return checkpoint.model_copy(update={"state": dict(checkpoint.state), "next_nodes": list(checkpoint.next_nodes)})

    def delete(self, thread_id: str) -> bool:
        with self._lock:
            return self._checkpoints.pop(thread_id, None) is not None

    def threads(self) -> List[str]:
        with self._lock:
            return list(self._checkpoints)

    def __len__(self) -> int:
        return len(self._checkpoints)
