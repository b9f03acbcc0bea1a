"""
Structured logging system for MathTunis.

Provides centralized logging with console and file outputs, plus metrics
tracking so operators can see which solving strategies are degrading.
"""

import copy
import json
import logging
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks per-strategy metrics for the resolution pipeline.
    """

    def __init__(
        self,
        name: str = "mathtunis",
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

        # Resolutions for different questions may run in parallel
        self._lock = threading.Lock()
        self.metrics = {
            "resolutions": 0,
            "fallbacks": 0,
            "strategy_attempts": 0,
            "strategy_successes": 0,
            "strategy_failures": 0,
            "errors_by_kind": {},
            "strategy_success_rate": {},
        }

        if enable_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"mathtunis_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

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
            message = f"{message} | Context: {json.dumps(context, ensure_ascii=False, default=str)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def record_resolution(self, fallback: bool = False):
        """Count one finished resolve() call."""
        with self._lock:
            self.metrics["resolutions"] += 1
            if fallback:
                self.metrics["fallbacks"] += 1

    def record_strategy_attempt(self, strategy: str):
        """Record that a strategy was invoked."""
        with self._lock:
            self.metrics["strategy_attempts"] += 1
            stats = self.metrics["strategy_success_rate"].setdefault(
                strategy, {"attempts": 0, "successes": 0}
            )
            stats["attempts"] += 1

    def record_strategy_success(self, strategy: str):
        """Record that a strategy's solution was accepted."""
        with self._lock:
            self.metrics["strategy_successes"] += 1
            if strategy in self.metrics["strategy_success_rate"]:
                self.metrics["strategy_success_rate"][strategy]["successes"] += 1

    def record_strategy_failure(self, strategy: str, error_kind: str):
        """Record a recovered strategy failure."""
        with self._lock:
            self.metrics["strategy_failures"] += 1
            errors = self.metrics["errors_by_kind"].setdefault(strategy, {})
            errors[error_kind] = errors.get(error_kind, 0) + 1

    def get_metrics(self) -> dict:
        """Return a snapshot of current metrics."""
        with self._lock:
            metrics_copy = copy.deepcopy(self.metrics)
        for strategy, stats in metrics_copy["strategy_success_rate"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        total = metrics["resolutions"]
        fallback_rate = 0
        if total > 0:
            fallback_rate = round(metrics["fallbacks"] / total * 100, 1)

        self.info("=== Resolution Metrics ===")
        self.info(f"Resolutions: {total} ({metrics['fallbacks']} fallbacks, {fallback_rate}%)")
        self.info(
            f"Strategy calls: {metrics['strategy_successes']}/{metrics['strategy_attempts']} accepted"
        )

        if metrics["strategy_success_rate"]:
            self.info("Strategy Success Rates:")
            for strategy, stats in metrics["strategy_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {strategy}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_kind"]:
            self.info("Errors:")
            for strategy, kinds in metrics["errors_by_kind"].items():
                for kind, count in kinds.items():
                    self.info(f"  {strategy}/{kind}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "mathtunis",
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
