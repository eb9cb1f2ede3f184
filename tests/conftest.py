"""
Pytest configuration and shared fixtures.
"""

import os
import tempfile
import threading

# Module-level loggers are created at import time; keep their files out of the repo.
os.environ.setdefault("REPOSCHEDULER_LOG_DIR", tempfile.mkdtemp(prefix="reposcheduler-logs-"))

import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional

from reposcheduler.clock import ManualClock
from reposcheduler.errors import ExecutionError
from reposcheduler.github import ExecutionResult
from reposcheduler.scheduler import JobScheduler
from reposcheduler.storage import JobStore

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeCreator:
    """Stands in for RepositoryCreator; records every call."""

    def __init__(self, result_url: str = "http://x/y", error: Optional[str] = None):
        self.result_url = result_url
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.release = threading.Event()
        self.release.set()
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def execute(self, job, token):
        with self._lock:
            self.calls.append({"job_id": job.id, "name": job.name, "token": token})
        self.entered.set()
        self.release.wait(5)
        if self.error is not None:
            return ExecutionResult.failure(ExecutionError(self.error, status_code=422))
        return ExecutionResult.success(self.result_url, 42)

    def block(self):
        """Hold executions inside execute() until unblock() is called."""
        self.release.clear()

    def unblock(self):
        self.release.set()


class FakeCredentials:
    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = {"default": "ghp_test"} if tokens is None else tokens

    def get_token(self, credential_ref):
        return self.tokens.get(credential_ref)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def store(tmp_path) -> JobStore:
    return JobStore(tmp_path / "jobs.json")


@pytest.fixture
def creator() -> FakeCreator:
    return FakeCreator()


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def make_scheduler(store, creator, credentials, clock):
    """Factory for schedulers sharing the same store; all are shut down afterwards."""
    created = []

    def _make(**overrides) -> JobScheduler:
        kwargs = dict(
            store=store,
            creator=creator,
            credentials=credentials,
            clock=clock,
            sweep_interval=10.0,
            max_workers=4,
        )
        kwargs.update(overrides)
        scheduler = JobScheduler(**kwargs)
        created.append(scheduler)
        return scheduler

    yield _make
    for scheduler in created:
        scheduler.shutdown(wait=True)


@pytest.fixture
def scheduler(make_scheduler) -> JobScheduler:
    return make_scheduler()


@pytest.fixture
def job_spec(clock) -> Dict[str, Any]:
    """Valid spec for a repository due in two seconds."""
    return {
        "name": "my-new-repo",
        "description": "Scheduled from tests",
        "scheduled_at": clock.now() + timedelta(seconds=2),
        "private": True,
        "auto_init": True,
        "gitignore_template": "Python",
    }


@pytest.fixture
def snapshot_file(tmp_path) -> Path:
    """A store written by an earlier run: one overdue pending job, one interrupted."""
    store_file = tmp_path / "jobs.json"
    store_file.write_text(
        """{
  "jobs": [
    {
      "id": "overdue1",
      "owner_ref": null,
      "name": "late-repo",
      "description": "",
      "scheduled_at": "2026-03-01T11:00:00+00:00",
      "private": false,
      "auto_init": true,
      "gitignore_template": null,
      "credential_ref": "default",
      "status": "pending",
      "created_at": "2026-02-28T10:00:00+00:00"
    },
    {
      "id": "inflight1",
      "name": "half-done",
      "scheduled_at": "2026-03-01T10:00:00+00:00",
      "status": "creating",
      "created_at": "2026-02-28T10:00:00+00:00",
      "started_at": "2026-03-01T10:00:01+00:00"
    }
  ]
}
""",
        encoding="utf-8",
    )
    return store_file
