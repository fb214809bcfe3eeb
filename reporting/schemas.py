"""Pydantic models for request validation."""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from reporting.recurrence import Interval, Recurrence
from reporting.templates.models import TaskTemplate

# Loose check, delivery is the mail service's business
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_emails(values: list[str]) -> list[str]:
    for value in values:
        if not EMAIL_RE.match(value):
            raise ValueError(f'"{value}" is not a valid email')
    return values


class TaskCreate(BaseModel):
    """Body of a task creation."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    institution: str = Field(..., min_length=1)
    recurrence: Recurrence
    template: TaskTemplate
    targets: list[str] = Field(default_factory=list)
    next_run: Optional[datetime] = Field(
        default=None, description="Defaults to one recurrence from now"
    )
    enabled: bool = True

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: list[str]) -> list[str]:
        return _check_emails(v)

    def to_data(self) -> dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        data["template"] = self.template.model_dump()
        return data


class TaskUpdate(BaseModel):
    """Body of a task edition; only set fields change."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    recurrence: Optional[Recurrence] = None
    template: Optional[TaskTemplate] = None
    targets: Optional[list[str]] = None
    next_run: Optional[datetime] = None
    enabled: Optional[bool] = None

    @field_validator("targets")
    @classmethod
    def validate_targets(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _check_emails(v) if v is not None else v

    def to_changes(self) -> dict[str, Any]:
        changes = self.model_dump(exclude_unset=True, exclude_none=True)
        if self.template is not None:
            changes["template"] = self.template.model_dump()
        return changes


class RunRequest(BaseModel):
    """Options of an on-demand generation.

    With ``test_emails`` the report goes to those addresses only and the
    task's history is left untouched.
    """

    model_config = ConfigDict(extra="forbid")

    test_emails: Optional[list[str]] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    debug: bool = False

    @field_validator("test_emails")
    @classmethod
    def validate_test_emails(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        return _check_emails(v) if v is not None else v

    @model_validator(mode="after")
    def check_period(self) -> "RunRequest":
        if (self.period_start is None) != (self.period_end is None):
            raise ValueError("Missing part of custom period")
        return self

    @property
    def custom_period(self) -> Optional[Interval]:
        if self.period_start is None or self.period_end is None:
            return None
        return Interval.from_dict({"start": self.period_start, "end": self.period_end})


class UnsubscribeRequest(BaseModel):
    unsub_id: str = Field(..., min_length=1)
    email: str

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _check_emails([v])[0]
