import heapq
import itertools
from datetime import datetime
from typing import Dict, List, Optional, Tuple


class TimerQueue:
    """
    Due-time priority queue with at most one armed timer per job id.

    Re-arming or cancelling leaves the old heap entry in place; stale entries
    are skipped when they reach the top. Not thread-safe on its own: the
    scheduler only touches it while holding its lock.
    """

    def __init__(self):
        self._heap: List[Tuple[datetime, int, str]] = []
        self._armed: Dict[str, Tuple[datetime, int]] = {}
        self._seq = itertools.count()

    def arm(self, job_id: str, due: datetime) -> None:
        """Arm (or re-arm) the timer for a job, replacing any earlier one."""
        seq = next(self._seq)
        self._armed[job_id] = (due, seq)
        heapq.heappush(self._heap, (due, seq, job_id))

    def cancel(self, job_id: str) -> bool:
        return self._armed.pop(job_id, None) is not None

    def is_armed(self, job_id: str) -> bool:
        return job_id in self._armed

    def due_at(self, job_id: str) -> Optional[datetime]:
        entry = self._armed.get(job_id)
        return entry[0] if entry else None

    def pop_due(self, now: datetime) -> List[str]:
        """Disarm and return every job whose timer is due, earliest first."""
        fired: List[str] = []
        while self._heap and self._heap[0][0] <= now:
            due, seq, job_id = heapq.heappop(self._heap)
            if self._armed.get(job_id) == (due, seq):
                del self._armed[job_id]
                fired.append(job_id)
        return fired

    def next_due(self) -> Optional[datetime]:
        self._drop_stale()
        return self._heap[0][0] if self._heap else None

    def clear(self) -> None:
        self._heap.clear()
        self._armed.clear()

    def __len__(self) -> int:
        return len(self._armed)

    def _drop_stale(self) -> None:
        while self._heap:
            due, seq, job_id = self._heap[0]
            if self._armed.get(job_id) == (due, seq):
                return
            heapq.heappop(self._heap)
