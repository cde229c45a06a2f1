from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from logtide.alerts import DEFAULT_ALERT_RULES, load_alert_patterns
from logtide.errors import ConfigurationError
from logtide.models import AlertPattern

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")
    if not value > 0:
        raise ConfigurationError(f"{key} must be > 0, got {raw!r}")
    return value


def _flag(env: Mapping[str, str], key: str) -> bool:
    return env.get(key, "0").strip().lower() in ("1", "true", "yes", "on")


def load_alert_file(path: str) -> List[AlertPattern]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            rules = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Alert pattern file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in alert pattern file {path}: {e}")
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Alert pattern file {path} is not valid UTF-8: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read alert pattern file {path}: {e}")
    if not isinstance(rules, list):
        raise ConfigurationError(f"Alert pattern file {path} must contain a JSON list")
    return load_alert_patterns(rules)


@dataclass
class Settings:
    host: str = "127.0.0.1"
    port: int = 7000
    token: str = "dev-secret"
    reload: bool = False
    log_level: str = "info"

    log_file: Optional[str] = None          # ingested at startup when set
    follow: bool = False                    # tail log_file instead of reading it once
    tail_from_start: bool = False
    chunk_size: int = 64 * 1024

    max_errors: int = 50
    max_recent_logs: int = 100
    max_alerts: int = 100
    stats_every: int = 1000
    subscriber_queue: int = 5000
    keepalive: float = 15.0                 # seconds between SSE keep-alive comments

    alert_patterns: List[AlertPattern] = field(
        default_factory=lambda: load_alert_patterns(DEFAULT_ALERT_RULES)
    )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if env is None else env

        patterns_path = env.get("LOGTIDE_ALERT_PATTERNS", "").strip()
        patterns = (
            load_alert_file(patterns_path)
            if patterns_path
            else load_alert_patterns(DEFAULT_ALERT_RULES)
        )

        log_level = env.get("LOGTIDE_LOG_LEVEL", "info").strip().lower()
        if log_level not in ("critical", "error", "warning", "info", "debug", "trace"):
            raise ConfigurationError(f"LOGTIDE_LOG_LEVEL not recognised: {log_level!r}")

        return cls(
            host=env.get("LOGTIDE_HOST", "127.0.0.1"),
            port=_int(env, "LOGTIDE_PORT", 7000, minimum=1),
            token=env.get("LOGTIDE_TOKEN", "dev-secret"),
            reload=_flag(env, "LOGTIDE_RELOAD"),
            log_level=log_level,
            log_file=env.get("LOGTIDE_LOG_FILE", "").strip() or None,
            follow=_flag(env, "LOGTIDE_FOLLOW"),
            tail_from_start=_flag(env, "LOGTIDE_TAIL_FROM_START"),
            chunk_size=_int(env, "LOGTIDE_CHUNK_SIZE", 64 * 1024, minimum=1),
            max_errors=_int(env, "LOGTIDE_MAX_ERRORS", 50, minimum=1),
            max_recent_logs=_int(env, "LOGTIDE_MAX_RECENT_LOGS", 100, minimum=1),
            max_alerts=_int(env, "LOGTIDE_MAX_ALERTS", 100, minimum=1),
            stats_every=_int(env, "LOGTIDE_STATS_EVERY", 1000),
            subscriber_queue=_int(env, "LOGTIDE_SUBSCRIBER_QUEUE", 5000, minimum=1),
            keepalive=_float(env, "LOGTIDE_KEEPALIVE", 15.0),
            alert_patterns=patterns,
        )


def setup_logging(log_level: str = "info") -> None:
    """Console logging for the service process."""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=DEFAULT_LOG_FORMAT)
