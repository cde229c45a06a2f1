from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ----------------------------
# Parsed lines
# ----------------------------
class LogEntry(BaseModel):
    """
    One structured record derived from one input line.

    Only the fields of the grammar that matched are populated; `raw` is
    always the trimmed source line.
    """
    timestamp: datetime = Field(default_factory=utcnow)
    level: Optional[str] = None
    message: Optional[str] = None

    # access-combined fields
    method: Optional[str] = None
    path: Optional[str] = None
    protocol: Optional[str] = None
    status: Optional[int] = None
    size: Optional[int] = None
    ip: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None

    extra: dict = Field(default_factory=dict)   # undeclared keys of a JSON line
    raw: str
    unparsed: bool = False
    format: str = "unparsed"                    # json/application/access/simple/unparsed


class ErrorRecord(BaseModel):
    timestamp: datetime
    message: str
    entry: LogEntry

    @classmethod
    def from_entry(cls, entry: LogEntry) -> "ErrorRecord":
        message = entry.message or f"{entry.method} {entry.path} - {entry.status}"
        return cls(timestamp=entry.timestamp, message=message, entry=entry)


# ----------------------------
# Alerting
# ----------------------------
class AlertPattern(BaseModel):
    """
    A configured alert rule. Predicates are OR-ed; a rule without any
    predicate never matches.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = "Unnamed Alert"
    level: Optional[str] = None
    status: Optional[int] = None
    status_range: Optional[Tuple[int, int]] = Field(default=None, alias="statusRange")
    regex: Optional[str] = None

    _compiled: Optional[re.Pattern] = PrivateAttr(default=None)

    @field_validator("level")
    @classmethod
    def _upper_level(cls, v):
        return v.upper() if v else v

    @field_validator("status_range")
    @classmethod
    def _check_range(cls, v):
        if v is not None and v[0] > v[1]:
            raise ValueError(f"status range min {v[0]} is greater than max {v[1]}")
        return v

    @model_validator(mode="after")
    def _compile_regex(self):
        if self.regex:
            try:
                self._compiled = re.compile(self.regex, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"invalid regex {self.regex!r}: {e}") from e
        return self

    @property
    def compiled(self) -> Optional[re.Pattern]:
        return self._compiled

    @property
    def has_predicates(self) -> bool:
        return any(
            v is not None
            for v in (self.level, self.status, self.status_range, self._compiled)
        )


class AlertEvent(BaseModel):
    pattern_name: str
    entry: LogEntry
    timestamp: datetime = Field(default_factory=utcnow)


def to_jsonable(payload: Any) -> Any:
    """Turn models (or containers of models) into plain JSON-ready data."""
    if isinstance(payload, BaseModel):
        return payload.model_dump(mode="json")
    if isinstance(payload, dict):
        return {k: to_jsonable(v) for k, v in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [to_jsonable(v) for v in payload]
    if isinstance(payload, datetime):
        return payload.isoformat()
    return payload
