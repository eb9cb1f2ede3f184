"""
Structured logging system for reposcheduler.

Provides centralized logging with console and file outputs,
log levels, and metrics tracking for monitoring execution health.
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring repository creation runs.
    """

    def __init__(
        self,
        name: str = "reposcheduler",
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
            log_dir: Directory for log files (default: $REPOSCHEDULER_LOG_DIR or logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers.clear()  # Remove existing handlers
        self._console_handler = None

        self.metrics = {
            "executions_attempted": 0,
            "executions_succeeded": 0,
            "executions_failed": 0,
            "persistence_errors": 0,
            "errors_by_type": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)
            self._console_handler = console_handler

        if enable_file:
            if log_dir is None:
                log_dir = Path(os.getenv("REPOSCHEDULER_LOG_DIR", "logs"))
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"reposcheduler_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def set_level(self, level: str):
        """Change the logger and console threshold; the file handler keeps DEBUG."""
        self.logger.setLevel(getattr(logging, level.upper()))
        if self._console_handler is not None:
            self._console_handler.setLevel(getattr(logging, level.upper()))

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
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_execution_attempt(self):
        self.metrics["executions_attempted"] += 1

    def record_execution_success(self):
        self.metrics["executions_succeeded"] += 1

    def record_execution_failure(self, error_type: str):
        """Record a failed creation and bucket it by error type."""
        self.metrics["executions_failed"] += 1
        self._count_error(error_type)

    def record_persistence_error(self):
        self.metrics["persistence_errors"] += 1
        self._count_error("PersistenceError")

    def _count_error(self, error_type: str):
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return current metrics, with the overall success rate."""
        metrics_copy = self.metrics.copy()
        metrics_copy["errors_by_type"] = dict(self.metrics["errors_by_type"])
        attempts = metrics_copy["executions_attempted"]
        if attempts > 0:
            metrics_copy["success_rate"] = round(
                metrics_copy["executions_succeeded"] / attempts, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        attempts = metrics["executions_attempted"]
        successes = metrics["executions_succeeded"]
        overall_rate = 0
        if attempts > 0:
            overall_rate = round(successes / attempts * 100, 1)

        self.info("=== Scheduler Session Metrics ===")
        self.info(f"Creations: {successes}/{attempts} ({overall_rate}% success)")
        self.info(f"Persistence errors: {metrics['persistence_errors']}")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "reposcheduler",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level; defaults to $REPOSCHEDULER_LOG_LEVEL or INFO
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        level = level or os.getenv("REPOSCHEDULER_LOG_LEVEL", "INFO")
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
