"""
Structured logging system for clinicresolve.

Provides centralized logging with console and file outputs, log levels,
and metrics tracking for the health of resolution strategies and record
sources (the "fetch path" diagnostics).
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks per-channel metrics, where a channel is a resolution strategy
    ("exact-id", "loose-name", ...) or an aggregation source ("lab-test", ...).
    """

    def __init__(
        self,
        name: str = "clinicresolve",
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
        self.logger.handlers.clear()

        self._lock = threading.Lock()
        self.metrics = {
            "probes_attempted": 0,
            "probes_successful": 0,
            "probes_failed": 0,
            "cache_hits": 0,
            "errors_by_type": {},
            "channel_success_rate": {},
        }

        if enable_console:
            self._attach(logging.StreamHandler(sys.stderr), level.upper(), "%(name)s")

        if enable_file:
            log_dir = log_dir or Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = log_dir / f"clinicresolve_{datetime.now().strftime('%Y%m%d')}.log"
            # Files always get DEBUG
            self._attach(logging.FileHandler(log_file, encoding='utf-8'), "DEBUG", "%(name)s:%(lineno)d")

    def _attach(self, handler: logging.Handler, level: str, origin: str):
        handler.setLevel(getattr(logging, level))
        handler.setFormatter(logging.Formatter(
            fmt=f'%(asctime)s | %(levelname)-8s | {origin} | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        self.logger.addHandler(handler)

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

    def _log(self, level: int, message: str, context: dict):
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message)

    # Channel metrics; probe and source threads update them concurrently

    def _channel(self, channel: str) -> dict:
        return self.metrics["channel_success_rate"].setdefault(channel, {"attempts": 0, "successes": 0})

    def record_cache_hit(self):
        """Count a resolution hint that was tried before the strategies."""
        with self._lock:
            self.metrics["cache_hits"] += 1

    def record_probe_attempt(self, channel: str):
        with self._lock:
            self.metrics["probes_attempted"] += 1
            self._channel(channel)["attempts"] += 1

    def record_probe_success(self, channel: str):
        with self._lock:
            self.metrics["probes_successful"] += 1
            self._channel(channel)["successes"] += 1

    def record_probe_failure(self, channel: str, error_type: str):
        """Count a failed request by its error type (NotFound, Timeout, ...)."""
        with self._lock:
            self.metrics["probes_failed"] += 1
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def get_metrics(self) -> dict:
        """Snapshot of the counters with a success rate per channel."""
        with self._lock:
            channels = {
                name: dict(stats, success_rate=round(stats["successes"] / stats["attempts"], 3))
                if stats["attempts"] else dict(stats)
                for name, stats in self.metrics["channel_success_rate"].items()
            }
            return {
                **self.metrics,
                "errors_by_type": dict(self.metrics["errors_by_type"]),
                "channel_success_rate": channels,
            }

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        total_attempts = metrics["probes_attempted"]
        total_successes = metrics["probes_successful"]
        overall_rate = 0
        if total_attempts > 0:
            overall_rate = round(total_successes / total_attempts * 100, 1)

        self.info("=== Resolution Session Metrics ===")
        self.info(f"Cache hits: {metrics['cache_hits']}")
        self.info(f"Probes: {total_successes}/{total_attempts} ({overall_rate}% success)")

        if metrics["channel_success_rate"]:
            self.info("Channel Success Rates:")
            for channel, stats in metrics["channel_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {channel}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "clinicresolve",
    level: Optional[str] = None,
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Level, log directory and file output default to the CLINIC_LOG_LEVEL,
    CLINIC_LOG_DIR and CLINIC_LOG_FILE environment variables.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        if level is None:
            level = os.getenv("CLINIC_LOG_LEVEL", "INFO")
        kwargs.setdefault("enable_file", os.getenv("CLINIC_LOG_FILE", "1") != "0")
        if os.getenv("CLINIC_LOG_DIR"):
            kwargs.setdefault("log_dir", Path(os.environ["CLINIC_LOG_DIR"]))
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
