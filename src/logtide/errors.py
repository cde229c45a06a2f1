from __future__ import annotations


class LogtideError(Exception):
    """Base exception for logtide."""


class ConfigurationError(LogtideError):
    """Settings or alert rules could not be loaded."""


class IngestionError(LogtideError):
    """The upstream chunk source failed during a run."""

    def __init__(self, message: str, *, source: str | None = None):
        super().__init__(message)
        self.source = source


class SubscriberClosed(LogtideError):
    """A live subscriber can no longer accept events."""


class RunInProgress(LogtideError):
    """Another ingestion run is still streaming."""
