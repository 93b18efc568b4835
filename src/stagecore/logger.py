"""
Structured logging for stage events.

Outputs JSON-formatted lines (or plain text for interactive use) so stage
progress can be followed in CI logs and filtered by log pipelines.

Logged events:
- stage.entered
- stage.skipped
- stage.completed
- stage.failed
- stage.statement   (a statement sent to the provisioned resource)
- teardown.failed   (cleanup failed; external resources may have leaked)

Usage:
    from stagecore.logger import StageLogger

    logger = StageLogger(test_name="cloud-sql-mysql")
    logger.log_entered("deploy")
    logger.log_completed("deploy", duration_seconds=412.3)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Stage event logger
_stage_logger = logging.getLogger("stagecore.stages")
_stage_logger.setLevel(logging.INFO)

# Default handler outputs lines to stdout so they interleave with test output
if not _stage_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _stage_logger.addHandler(handler)


class StageLogger:
    """
    Structured logger for stage events.

    Each entry includes the fields needed to follow one test run:
    - test name and stage name
    - event type and event-specific attributes
    """

    def __init__(
        self,
        test_name: str,
        service_name: str = "stagecore",
        log_format: str = "json",
        extra_labels: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize stage logger.

        Args:
            test_name: Name of the test the stages belong to
            service_name: Service name for log attribution
            log_format: "json" for one JSON object per line, "text" for console
            extra_labels: Additional labels attached to every entry
        """
        self.test_name = test_name
        self.service_name = service_name
        self.log_format = log_format
        self.extra_labels = extra_labels or {}
        self._logger = _stage_logger

    def _emit(
        self,
        event: str,
        stage: str,
        level: str = "info",
        **extra_fields: Any,
    ) -> None:
        """
        Emit a structured log entry.

        Args:
            event: Event type (e.g., "stage.entered")
            stage: Stage name
            level: Log level (info, warn, error)
            **extra_fields: Event-specific fields
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "test": self.test_name,
            "stage": stage,
        }
        entry.update({k: v for k, v in extra_fields.items() if v is not None})

        if self.extra_labels:
            entry["labels"] = self.extra_labels

        if self.log_format == "text":
            details = " ".join(
                f"{k}={v}" for k, v in extra_fields.items() if v is not None
            )
            log_line = f"[{self.test_name}] {stage}: {event}"
            if details:
                log_line = f"{log_line} {details}"
        else:
            log_line = json.dumps(entry, default=str)

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_entered(self, stage: str) -> None:
        """Log stage entry."""
        self._emit("stage.entered", stage)

    def log_skipped(self, stage: str, reason: str, directive: Optional[str] = None) -> None:
        """Log that a stage was bypassed."""
        self._emit("stage.skipped", stage, reason=reason, directive=directive)

    def log_completed(self, stage: str, duration_seconds: Optional[float] = None) -> None:
        """Log successful stage completion."""
        self._emit("stage.completed", stage, duration_seconds=duration_seconds)

    def log_failed(
        self,
        stage: str,
        error: str,
        error_type: Optional[str] = None,
        duration_seconds: Optional[float] = None,
    ) -> None:
        """Log stage failure with the specific error."""
        self._emit(
            "stage.failed",
            stage,
            level="error",
            error=error,
            error_type=error_type,
            duration_seconds=duration_seconds,
        )

    def log_teardown_failed(self, stage: str, error: str) -> None:
        """
        Log a failed cleanup stage.

        Cleanup is not retried, so this is the operator's only signal that
        provisioned resources may still exist and cost money.
        """
        self._emit(
            "teardown.failed",
            stage,
            level="error",
            error=error,
            notice="cleanup did not complete; provisioned resources may have leaked",
        )

    def log_statement(self, stage: str, action: str, statement: str) -> None:
        """Log a statement sent to the provisioned resource."""
        self._emit("stage.statement", stage, action=action, statement=statement)

    def log_message(self, stage: str, message: str, **fields: Any) -> None:
        """Log free-form progress inside a stage body."""
        self._emit("stage.progress", stage, message=message, **fields)
