"""
Structured logging for the dedupe tooling.

Provides centralized logging with console and file outputs plus counters
for monitoring how duplicate groups are listed and resolved.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks listing and resolution metrics for a session.
    """

    def __init__(
        self,
        name: str = "lessondedupe",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers

        self.metrics = self._empty_metrics()

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"lessondedupe_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "groups_listed": 0,
            "groups_dropped": 0,
            "members_dropped": 0,
            "resolutions_attempted": 0,
            "resolutions_succeeded": 0,
            "resolutions_conflicted": 0,
            "resolutions_failed": 0,
            "errors_by_type": {},
            "resolutions_by_type": {},
        }

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_groups_listed(self, count: int):
        self.metrics["groups_listed"] += count

    def record_group_dropped(self):
        self.metrics["groups_dropped"] += 1

    def record_member_dropped(self):
        self.metrics["members_dropped"] += 1

    def record_resolution_attempt(self, group_type: str):
        """Record a resolution attempt for a group type."""
        self.metrics["resolutions_attempted"] += 1
        if group_type not in self.metrics["resolutions_by_type"]:
            self.metrics["resolutions_by_type"][group_type] = {
                "attempts": 0,
                "successes": 0
            }
        self.metrics["resolutions_by_type"][group_type]["attempts"] += 1

    def record_resolution_success(self, group_type: str):
        """Record a committed resolution."""
        self.metrics["resolutions_succeeded"] += 1
        if group_type in self.metrics["resolutions_by_type"]:
            self.metrics["resolutions_by_type"][group_type]["successes"] += 1

    def record_resolution_conflict(self):
        self.metrics["resolutions_conflicted"] += 1

    def record_resolution_failure(self, error_type: str):
        """Record a failed resolution by error class name."""
        self.metrics["resolutions_failed"] += 1

        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        metrics_copy = self.metrics.copy()
        for group_type, stats in metrics_copy["resolutions_by_type"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def reset_metrics(self):
        self.metrics = self._empty_metrics()

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        attempts = metrics["resolutions_attempted"]
        successes = metrics["resolutions_succeeded"]
        overall_rate = 0
        if attempts > 0:
            overall_rate = round(successes / attempts * 100, 1)

        self.info("=== Dedupe Session Metrics ===")
        self.info(
            f"Groups listed: {metrics['groups_listed']} "
            f"(dropped {metrics['groups_dropped']}, members dropped {metrics['members_dropped']})"
        )
        self.info(f"Resolutions: {successes}/{attempts} ({overall_rate}% success)")
        self.info(
            f"Conflicts: {metrics['resolutions_conflicted']}, failures: {metrics['resolutions_failed']}"
        )

        if metrics["resolutions_by_type"]:
            self.info("Resolutions by group type:")
            for group_type, stats in metrics["resolutions_by_type"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {group_type}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "lessondedupe",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
