"""
Runtime settings read from environment variables.

Every value has a default so the CLI works from a fresh checkout; command
line flags override whatever is loaded here.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .env import load_env

DEFAULT_DB_PATH = "data/lessons.db"
DEFAULT_REPORT = "data/duplicate-report.json"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """Typed settings for the dedupe tooling."""

    db_path: Path
    report_source: str
    log_level: str
    log_dir: Path
    http_timeout: float


def _parse_float(raw: Optional[str], default: float, name: str) -> float:
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


def _parse_level(raw: Optional[str]) -> str:
    level = (raw or "INFO").strip().upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"DEDUPE_LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {raw!r}")
    return level


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    Args:
        environ: Mapping to read instead of os.environ (used by tests).
            When omitted, .env is loaded first.

    Returns:
        Settings instance
    """
    if environ is None:
        load_env()
        environ = os.environ

    return Settings(
        db_path=Path(environ.get("DEDUPE_DB_PATH") or DEFAULT_DB_PATH),
        report_source=environ.get("DEDUPE_REPORT") or DEFAULT_REPORT,
        log_level=_parse_level(environ.get("DEDUPE_LOG_LEVEL")),
        log_dir=Path(environ.get("DEDUPE_LOG_DIR") or "logs"),
        http_timeout=_parse_float(environ.get("DEDUPE_HTTP_TIMEOUT"), 15.0, "DEDUPE_HTTP_TIMEOUT"),
    )
