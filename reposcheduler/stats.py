from typing import Dict, Iterable

from .models import Job, JobStatus


def compute_stats(jobs: Iterable[Job], active_timers: int = 0) -> Dict[str, int]:
    """Counts per status, total, and the number of currently armed timers."""
    counts = {status.value: 0 for status in JobStatus}
    total = 0
    for job in jobs:
        counts[job.status.value] += 1
        total += 1
    return {"total": total, **counts, "active_timers": active_timers}
