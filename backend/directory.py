"""
Submitter display-name lookup with an injected, bounded cache
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class SubmitterDirectory:
    """
    LRU + TTL cache in front of an external identity lookup.
    Entries are dropped by invalidate()/clear() or when they expire;
    nothing depends on the process living long.
    """

    def __init__(self, lookup: Optional[Callable[[str], Optional[str]]] = None,
                 max_size: int = 256, ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.lookup = lookup
        self.max_size = max_size
        self.ttl = ttl
        self.clock = clock
        self._entries = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def get(self, submitter_id: str) -> Optional[str]:
        """Cached label if present and fresh"""
        with self._lock:
            entry = self._entries.get(submitter_id)
            if entry is None:
                return None
            label, stored_at = entry
            if self.clock() - stored_at >= self.ttl:
                del self._entries[submitter_id]
                return None
            self._entries.move_to_end(submitter_id)
            return label

    def set(self, submitter_id: str, label: str):
        with self._lock:
            self._entries[submitter_id] = (label, self.clock())
            self._entries.move_to_end(submitter_id)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def invalidate(self, submitter_id: str):
        with self._lock:
            self._entries.pop(submitter_id, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def resolve(self, job) -> str:
        """Label stored on the job, else cached/looked-up label, else the raw id"""
        if job.submitter_label:
            return job.submitter_label

        submitter_id = job.submitter_id
        label = self.get(submitter_id)
        if label is not None:
            return label

        if self.lookup is not None:
            try:
                label = self.lookup(submitter_id)
            except Exception as e:
                logger.warning(f"Submitter lookup failed for {submitter_id}: {e}")
                label = None
            if label:
                self.set(submitter_id, label)
                return label

        return submitter_id
