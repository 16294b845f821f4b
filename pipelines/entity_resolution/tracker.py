"""
Resolved-Set Tracker.

Responsibilities:
- Remember, for one working session, which group keys have been resolved.
- Read through to the durable resolution store on a cache miss.

Non-Responsibilities:
- Not the correctness boundary. The resolution transaction re-checks the
  durable store before committing.

Invariant:
Starts empty. A key is only ever added, never removed, until reset().
"""

import threading
from typing import Callable, Dict, List, Optional

from lessondedupe.models import ResolutionRecord

# Durable lookup: group_key -> ResolutionRecord or None.
DurableLookup = Callable[[str], Optional[ResolutionRecord]]


class ResolvedSetTracker:
    def __init__(self, durable_lookup: Optional[DurableLookup] = None):
        self._durable_lookup = durable_lookup
        self._resolved: Dict[str, ResolutionRecord] = {}
        self._lock = threading.Lock()

    def has(self, group_key: str) -> bool:
        with self._lock:
            if group_key in self._resolved:
                return True
        if self._durable_lookup is None:
            return False
        record = self._durable_lookup(group_key)
        if record is None:
            return False
        self.record(record)
        return True

    def get(self, group_key: str) -> Optional[ResolutionRecord]:
        if not self.has(group_key):
            return None
        with self._lock:
            return self._resolved.get(group_key)

    def record(self, resolution: ResolutionRecord) -> None:
        with self._lock:
            # First observation wins; durable records are immutable.
            self._resolved.setdefault(resolution.group_key, resolution)

    def all(self) -> List[ResolutionRecord]:
        with self._lock:
            return list(self._resolved.values())

    def keys(self) -> set:
        with self._lock:
            return set(self._resolved)

    def reset(self) -> None:
        with self._lock:
            self._resolved.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._resolved)
