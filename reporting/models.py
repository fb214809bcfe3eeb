"""Task and history domain models."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from reporting.recurrence import Recurrence, parse_recurrence, to_utc


class HistoryType(str, Enum):
    """Kinds of task history entries."""

    CREATION = "creation"
    EDITION = "edition"
    GENERATION_SUCCESS = "generation-success"
    GENERATION_ERROR = "generation-error"
    UNSUBSCRIPTION = "unsubscription"


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit record attached to a task."""

    id: int
    task_id: UUID
    type: HistoryType
    message: str
    meta: Optional[dict[str, Any]] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": str(self.task_id),
            "type": self.type.value,
            "message": self.message,
            "meta": self.meta,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Task:
    """A recurring report generation configuration."""

    id: UUID
    name: str
    institution: str
    recurrence: Recurrence
    next_run: datetime
    template: dict[str, Any]
    targets: list[str] = field(default_factory=list)
    enabled: bool = True
    last_run: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None
    history: list[HistoryEntry] = field(default_factory=list)

    def snapshot(self, **overrides: Any) -> "Task":
        """Copy of the task without its history, for job payloads."""
        return replace(self, history=[], targets=list(self.targets), **overrides)

    def to_dict(self, with_history: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": str(self.id),
            "name": self.name,
            "institution": self.institution,
            "recurrence": self.recurrence.value,
            "next_run": self.next_run.isoformat(),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "template": self.template,
            "targets": list(self.targets),
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if with_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Rebuild a task snapshot stored in a job payload."""
        last_run = data.get("last_run")
        updated_at = data.get("updated_at")
        return cls(
            id=UUID(str(data["id"])),
            name=data["name"],
            institution=data["institution"],
            recurrence=parse_recurrence(data["recurrence"]),
            next_run=_parse_dt(data["next_run"]),
            last_run=_parse_dt(last_run) if last_run else None,
            template=data.get("template") or {},
            targets=list(data.get("targets") or []),
            enabled=data.get("enabled", True),
            created_at=_parse_dt(data["created_at"]) if data.get("created_at") else datetime.now(timezone.utc),
            updated_at=_parse_dt(updated_at) if updated_at else None,
        )


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_utc(datetime.fromisoformat(text))
