from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence

from pydantic import ValidationError

from logtide.errors import ConfigurationError
from logtide.models import AlertEvent, AlertPattern, LogEntry

DEFAULT_ALERT_RULES: List[Dict[str, Any]] = [
    {"name": "5xx Server Errors", "status_range": (500, 599)},
    {"name": "4xx Client Errors", "status_range": (400, 499)},
    {"name": "ERROR Level", "level": "ERROR"},
    {"name": "Database Error", "regex": "database|mysql|postgres|mongo"},
    {"name": "Authentication Failed", "regex": "authentication failed|unauthorized|forbidden"},
]


def load_alert_patterns(rules: Iterable[Dict[str, Any]]) -> List[AlertPattern]:
    """
    Build alert patterns from plain dicts (e.g. a JSON config file).
    Any malformed rule fails the whole load.
    """
    patterns: List[AlertPattern] = []
    for i, rule in enumerate(rules):
        if not isinstance(rule, dict):
            raise ConfigurationError(f"alert rule #{i} must be an object, got {type(rule).__name__}")
        try:
            patterns.append(AlertPattern.model_validate(rule))
        except ValidationError as e:
            raise ConfigurationError(f"invalid alert rule #{i} ({rule.get('name', 'unnamed')}): {e}") from e
    return patterns


DEFAULT_ALERT_PATTERNS: List[AlertPattern] = load_alert_patterns(DEFAULT_ALERT_RULES)


def matches(pattern: AlertPattern, entry: LogEntry) -> bool:
    if pattern.level is not None and entry.level == pattern.level:
        return True

    status = entry.status or None    # 0 means the line carried "-"
    if pattern.status is not None and status is not None and status == pattern.status:
        return True

    if pattern.compiled is not None:
        text = entry.message or entry.raw
        if pattern.compiled.search(text):
            return True

    if pattern.status_range is not None and status is not None:
        lo, hi = pattern.status_range
        if lo <= status <= hi:
            return True

    return False


def check(entry: LogEntry, patterns: Sequence[AlertPattern]) -> List[AlertEvent]:
    """One alert per matching pattern, in configuration order."""
    return [
        AlertEvent(pattern_name=p.name, entry=entry)
        for p in patterns
        if matches(p, entry)
    ]
