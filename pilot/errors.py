"""
StorePilot — Structured Exception Hierarchy

Typed errors so the orchestrator can tell apart:
- Structural failures → abort the turn (malformed plan)
- Business-rule failures → end the turn FAILED, nothing mutated
- Execution failures → surfaced verbatim, workflow FAILED
- Collaborator failures → extractor fatal, explainer degraded

Each error carries a severity (the level its failure is logged at) and
a user_facing flag (whether its message is shown to the user).
"""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ═══════════════════════════════════════════════════════════════
# Base
# ═══════════════════════════════════════════════════════════════

class StorePilotError(Exception):
    """Base exception for all StorePilot errors."""
    severity: Severity = Severity.MEDIUM
    user_facing: bool = True

    def __init__(self, message: str = "", **kwargs):
        self.detail = kwargs
        super().__init__(message)


# ═══════════════════════════════════════════════════════════════
# Turn-level errors
# ═══════════════════════════════════════════════════════════════

class StructuralError(StorePilotError):
    """Plan is malformed (no intent). Fatal for the turn."""
    severity = Severity.HIGH


class ValidationFailed(StorePilotError):
    """Business rule violation (unknown SKU, illegal transition...)."""
    severity = Severity.LOW

    def __init__(self, errors: list[str], intent: str = ""):
        self.errors = list(errors)
        self.intent = intent
        super().__init__(errors[0] if errors else "Validation failed", intent=intent)


class ExecutionError(StorePilotError):
    """A mutation against the record store failed."""
    severity = Severity.MEDIUM


# ═══════════════════════════════════════════════════════════════
# Collaborator errors — extractor / explainer
# ═══════════════════════════════════════════════════════════════

class CollaboratorError(StorePilotError):
    """An external text-in/text-out collaborator failed."""
    severity = Severity.MEDIUM


class ExtractionError(CollaboratorError):
    """Intent extractor produced an error, empty, or unparseable output."""
    severity = Severity.HIGH

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message, raw=raw[:500])


class ExplanationError(CollaboratorError):
    """Explanation generator failed or timed out. Never fatal."""
    severity = Severity.LOW


# ═══════════════════════════════════════════════════════════════
# Store errors
# ═══════════════════════════════════════════════════════════════

class DuplicateIdError(StorePilotError):
    """A record with this id already exists in the collection."""
    user_facing = False

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(
            f"Item with id {record_id} already exists in {collection}",
            collection=collection, record_id=record_id,
        )


# ═══════════════════════════════════════════════════════════════
# Workflow lifecycle errors — resumption misuse
# ═══════════════════════════════════════════════════════════════

class WorkflowNotFound(StorePilotError):
    """No persisted workflow with this id."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}", workflow_id=workflow_id)


class NotPendingError(StorePilotError):
    """Workflow exists but is not waiting for confirmation."""

    def __init__(self, workflow_id: str, status: str):
        self.workflow_id = workflow_id
        self.status = status
        super().__init__(
            f"Workflow {workflow_id} is {status}, not pending confirmation",
            workflow_id=workflow_id, status=status,
        )
