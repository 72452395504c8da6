"""
StorePilot — Structured Logging with Correlation IDs

Emits structured JSON log lines for every workflow event. Each turn
gets a StructuredLogger bound to its trace_id and workflow_id so a
paused-then-resumed workflow can be followed across two requests.

Design decisions:
  - Transport: Python logging with JSON formatter
  - Schema: OTel-compatible field names (trace_id, span_id, service.name)
  - Configurable log level: DEBUG (full prompts/plans), INFO (stages), WARNING (errors only)

Usage:
    from pilot.logging import StructuredLogger, configure_logging

    configure_logging(level="INFO")
    slog = StructuredLogger(workflow_id="wf_ab12", session_id="s-1")
    slog.on_workflow_start(message="change price of HP-BLK-001 to 49.99")
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "storepilot"

# StorePilotError.severity values
_SEVERITY_LEVELS = {
    "low": logging.WARNING,
    "medium": logging.ERROR,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter (OTel-compatible)
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON lines.

    OTel semantic conventions used:
      - trace_id: maps to OTel trace ID
      - span_id: maps to OTel span ID
      - service.name: "storepilot"
      - service.version: from env
    """

    def __init__(self, service_name: str = ROOT_LOGGER):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("SP_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════

def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = ROOT_LOGGER,
) -> logging.Logger:
    """
    Configure the storepilot logger with JSON output.

    Args:
        level: DEBUG, INFO, WARNING, ERROR
        stream: Output stream (default: sys.stderr)
        service_name: Service name in log entries

    Returns:
        The configured root logger for storepilot
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers on reconfigure
    logger.handlers.clear()

    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith(f"{ROOT_LOGGER}."):
            child = logging.getLogger(name)
            child.handlers.clear()
            child.setLevel(logging.NOTSET)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the storepilot namespace."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return logging.getLogger(ROOT_LOGGER)


# ═══════════════════════════════════════════════════════════════════
# ID Generation
# ═══════════════════════════════════════════════════════════════════

def generate_trace_id() -> str:
    """Generate an OTel-compatible trace ID (32 hex chars)."""
    return uuid.uuid4().hex


def generate_span_id() -> str:
    """Generate an OTel-compatible span ID (16 hex chars)."""
    return uuid.uuid4().hex[:16]


def generate_workflow_id() -> str:
    return f"wf_{uuid.uuid4().hex[:12]}"


# ═══════════════════════════════════════════════════════════════════
# Structured Logger
# ═══════════════════════════════════════════════════════════════════

class StructuredLogger:
    """
    Structured logger for one workflow turn.

    Every entry carries trace_id and workflow_id for end-to-end
    correlation across pause and resume.
    """

    def __init__(
        self,
        workflow_id: str = "",
        session_id: str = "",
        trace_id: str | None = None,
    ):
        self.workflow_id = workflow_id
        self.session_id = session_id
        self.trace_id = trace_id or generate_trace_id()
        self._logger = get_logger("workflow")
        self._stage_spans: dict[str, str] = {}

    def _base_fields(self) -> dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "workflow_id": self.workflow_id,
            "session_id": self.session_id,
        }

    def _emit(self, level: int, action: str, **fields):
        if not self._logger.isEnabledFor(level):
            return
        structured = {**self._base_fields(), "action": action, **fields}
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=action,
            args=(), exc_info=None,
        )
        record.structured = structured
        self._logger.handle(record)

    # ── Lifecycle ───────────────────────────────────────────────

    def on_workflow_start(self, message: str = "") -> None:
        fields: dict[str, Any] = {"message_chars": len(message)}
        if self._logger.isEnabledFor(logging.DEBUG):
            fields["user_message"] = message
        self._emit(logging.INFO, "workflow_start", **fields)

    def on_workflow_end(self, status: str, total_latency_ms: float | None = None) -> None:
        self._emit(
            logging.INFO, "workflow_end",
            status=status,
            total_latency_ms=round(total_latency_ms, 1) if total_latency_ms is not None else None,
        )

    def on_workflow_resumed(self, approved: bool, pending_for_s: float | None = None) -> None:
        self._emit(
            logging.INFO, "workflow_resumed",
            approved=approved,
            pending_for_s=round(pending_for_s, 2) if pending_for_s is not None else None,
        )

    # ── Stages ──────────────────────────────────────────────────

    def on_stage_start(self, stage: str) -> None:
        span_id = generate_span_id()
        self._stage_spans[stage] = span_id
        self._emit(logging.INFO, "stage_start", stage=stage, span_id=span_id)

    def on_stage_end(self, stage: str, latency_ms: float, **fields) -> None:
        extra = dict(fields)
        if stage in self._stage_spans:
            extra["span_id"] = self._stage_spans[stage]
        self._emit(
            logging.INFO, "stage_end",
            stage=stage,
            latency_ms=round(latency_ms, 1),
            **extra,
        )

    def on_plan(self, intent: str, confidence: float, entities: dict[str, Any]) -> None:
        self._emit(
            logging.INFO, "plan_extracted",
            intent=intent,
            confidence=confidence,
            entity_keys=sorted(entities.keys()),
        )
        if self._logger.isEnabledFor(logging.DEBUG):
            self._emit(logging.DEBUG, "plan_full", entities=entities)

    def on_validation(self, valid: bool, risk_flag: str | None, errors: list[str]) -> None:
        level = logging.INFO if valid else logging.WARNING
        self._emit(
            level, "validation_result",
            valid=valid,
            risk_flag=risk_flag,
            errors=[e[:300] for e in errors],
        )

    # ── HITL ────────────────────────────────────────────────────

    def on_policy_decision(self, outcome: str, risk_flag: str | None, reason: str | None) -> None:
        self._emit(
            logging.INFO, "policy_decision",
            outcome=outcome,
            risk_flag=risk_flag,
            reason=(reason or "")[:500],
        )

    def on_confirmation_requested(self, intent: str, risk_flag: str | None,
                                  original_value: Any, requested_value: Any) -> None:
        self._emit(
            logging.INFO, "confirmation_requested",
            intent=intent,
            risk_flag=risk_flag,
            original_value=original_value,
            requested_value=requested_value,
        )

    # ── Collaborators ───────────────────────────────────────────

    def on_collaborator_fallback(self, collaborator: str, error: str) -> None:
        self._emit(
            logging.WARNING, "collaborator_fallback",
            collaborator=collaborator,
            error=error[:500],
        )

    def on_execution(self, intent: str, success: bool, error: str | None = None) -> None:
        self._emit(
            logging.INFO if success else logging.WARNING, "execution_result",
            intent=intent,
            success=success,
            error=error,
        )

    def on_failure(self, stage: str, error: str, severity: str = "medium") -> None:
        level = _SEVERITY_LEVELS.get(severity, logging.ERROR)
        self._emit(level, "workflow_failed", stage=stage, error=error[:500], severity=severity)
