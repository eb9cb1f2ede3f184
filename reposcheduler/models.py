"""Job model and status values."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class JobStatus(str, Enum):
    """Lifecycle of a scheduled repository."""

    PENDING = "pending"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.CREATED, JobStatus.FAILED)


DEFAULT_CREDENTIAL_REF = "default"

# Fields a caller may change while a job is still pending.
EDITABLE_FIELDS = (
    "name",
    "description",
    "scheduled_at",
    "private",
    "auto_init",
    "gitignore_template",
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Accept a datetime or an ISO-8601 string (a trailing 'Z' is allowed)."""
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise TypeError(f"Expected datetime or ISO string, got {type(value).__name__}")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _opt_ts(value: Optional[str]) -> Optional[datetime]:
    return parse_timestamp(value) if value else None


@dataclass
class Job:
    """One scheduled repository-creation request and its lifecycle state."""

    name: str
    scheduled_at: datetime
    id: str = field(default_factory=new_job_id)
    owner_ref: Optional[str] = None
    description: str = ""
    private: bool = False
    auto_init: bool = True
    gitignore_template: Optional[str] = None
    credential_ref: str = DEFAULT_CREDENTIAL_REF
    status: JobStatus = JobStatus.PENDING
    result_url: Optional[str] = None
    github_id: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        return self.status == JobStatus.PENDING and self.scheduled_at <= now

    def copy(self) -> "Job":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner_ref": self.owner_ref,
            "name": self.name,
            "description": self.description,
            "scheduled_at": _iso(self.scheduled_at),
            "private": self.private,
            "auto_init": self.auto_init,
            "gitignore_template": self.gitignore_template,
            "credential_ref": self.credential_ref,
            "status": self.status.value,
            "result_url": self.result_url,
            "github_id": self.github_id,
            "error_message": self.error_message,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Job":
        return cls(
            id=d["id"],
            owner_ref=d.get("owner_ref"),
            name=d["name"],
            description=d.get("description") or "",
            scheduled_at=parse_timestamp(d["scheduled_at"]),
            private=bool(d.get("private", False)),
            auto_init=bool(d.get("auto_init", True)),
            gitignore_template=d.get("gitignore_template"),
            credential_ref=d.get("credential_ref") or DEFAULT_CREDENTIAL_REF,
            status=JobStatus(d.get("status", JobStatus.PENDING.value)),
            result_url=d.get("result_url"),
            github_id=d.get("github_id"),
            error_message=d.get("error_message"),
            created_at=_opt_ts(d.get("created_at")) or utc_now(),
            started_at=_opt_ts(d.get("started_at")),
            completed_at=_opt_ts(d.get("completed_at")),
        )
