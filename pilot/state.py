"""
StorePilot — Workflow State

Data structures for one admin turn: the extracted Plan, the
validation verdict, the policy decision, the paused PendingAction,
the execution result, and per-stage timing metrics.

WorkflowState is a small explicit state machine. Every status change
goes through `transition()`, which checks WORKFLOW_TRANSITIONS and
keeps the PendingAction invariant: a pending action exists if and
only if the status is PENDING_CONFIRMATION.

Everything here round-trips through `to_dict()` / `from_dict()` so a
paused workflow can be persisted and restored by the workflow store.
"""

from __future__ import annotations

import copy
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


# ═══════════════════════════════════════════════════════════════════
# Intents
# ═══════════════════════════════════════════════════════════════════

class Intent(str, Enum):
    # Product writes
    UPDATE_PRODUCT_PRICE = "UPDATE_PRODUCT_PRICE"
    UPDATE_PRODUCT_DESCRIPTION = "UPDATE_PRODUCT_DESCRIPTION"
    UPDATE_PRODUCT_NAME = "UPDATE_PRODUCT_NAME"
    UPDATE_PRODUCT_STATUS = "UPDATE_PRODUCT_STATUS"
    UPDATE_PRODUCT_TAGS = "UPDATE_PRODUCT_TAGS"
    UPDATE_VARIANT_COMPARE_AT_PRICE = "UPDATE_VARIANT_COMPARE_AT_PRICE"
    UPDATE_VARIANT_COST_PRICE = "UPDATE_VARIANT_COST_PRICE"
    ARCHIVE_PRODUCT = "ARCHIVE_PRODUCT"
    UNARCHIVE_PRODUCT = "UNARCHIVE_PRODUCT"
    # Order writes
    CANCEL_ORDER = "CANCEL_ORDER"
    UPDATE_ORDER_STATUS = "UPDATE_ORDER_STATUS"
    ADD_ORDER_NOTE = "ADD_ORDER_NOTE"
    UPDATE_ORDER_SHIPPING_ADDRESS = "UPDATE_ORDER_SHIPPING_ADDRESS"
    UPDATE_ORDER_BILLING_ADDRESS = "UPDATE_ORDER_BILLING_ADDRESS"
    ARCHIVE_ORDER = "ARCHIVE_ORDER"
    UNARCHIVE_ORDER = "UNARCHIVE_ORDER"
    # Reads
    LIST_PRODUCTS = "LIST_PRODUCTS"
    LIST_ORDERS = "LIST_ORDERS"
    LIST_PROMOTIONS = "LIST_PROMOTIONS"
    SHOW_PRODUCT_INFO = "SHOW_PRODUCT_INFO"
    SHOW_ORDER_INFO = "SHOW_ORDER_INFO"


READ_ONLY_INTENTS = frozenset({
    Intent.LIST_PRODUCTS.value,
    Intent.LIST_ORDERS.value,
    Intent.LIST_PROMOTIONS.value,
    Intent.SHOW_PRODUCT_INFO.value,
    Intent.SHOW_ORDER_INFO.value,
})

PRODUCT_INTENTS = frozenset({
    Intent.UPDATE_PRODUCT_PRICE.value,
    Intent.UPDATE_PRODUCT_DESCRIPTION.value,
    Intent.UPDATE_PRODUCT_NAME.value,
    Intent.UPDATE_PRODUCT_STATUS.value,
    Intent.UPDATE_PRODUCT_TAGS.value,
    Intent.UPDATE_VARIANT_COMPARE_AT_PRICE.value,
    Intent.UPDATE_VARIANT_COST_PRICE.value,
    Intent.ARCHIVE_PRODUCT.value,
    Intent.UNARCHIVE_PRODUCT.value,
})

ORDER_INTENTS = frozenset({
    Intent.CANCEL_ORDER.value,
    Intent.UPDATE_ORDER_STATUS.value,
    Intent.ADD_ORDER_NOTE.value,
    Intent.UPDATE_ORDER_SHIPPING_ADDRESS.value,
    Intent.UPDATE_ORDER_BILLING_ADDRESS.value,
    Intent.ARCHIVE_ORDER.value,
    Intent.UNARCHIVE_ORDER.value,
})


def is_read_only(intent: str) -> bool:
    return intent in READ_ONLY_INTENTS


# ═══════════════════════════════════════════════════════════════════
# Stage outputs
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Plan:
    """Structured intent from the extractor. Immutable once built."""
    intent: str
    entities: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "entities", copy.deepcopy(dict(self.entities or {})))
        object.__setattr__(self, "confidence", float(self.confidence))

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "entities": copy.deepcopy(self.entities),
            "confidence": self.confidence,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Plan:
        return Plan(
            intent=d.get("intent", ""),
            entities=d.get("entities") or {},
            confidence=d.get("confidence", 0.0),
        )


@dataclass
class ValidationResult:
    valid: bool = True
    risk_flag: str | None = None
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    old_value: Any = None
    new_value: Any = None
    deviation_percent: float | None = None
    requires_confirmation: bool = False
    entity_exists: bool = True
    business_rules_passed: bool = True

    def fail(self, error: str, *, entity_missing: bool = False, risk_flag: str | None = None) -> ValidationResult:
        """Mark invalid and record the error. Returns self for early return."""
        self.valid = False
        self.errors.append(error)
        if entity_missing:
            self.entity_exists = False
        else:
            self.business_rules_passed = False
        if risk_flag:
            self.risk_flag = risk_flag
        return self

    @property
    def first_error(self) -> str | None:
        """First blocking error, skipping non-blocking 'Warning:' entries."""
        for e in self.errors:
            if not e.startswith("Warning:"):
                return e
        return self.errors[0] if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> ValidationResult:
        return ValidationResult(**{k: v for k, v in d.items() if k in ValidationResult.__dataclass_fields__})


class PolicyOutcome(str, Enum):
    PROCEED = "PROCEED"
    CONFIRM = "CONFIRM"


@dataclass
class PolicyDecision:
    outcome: PolicyOutcome
    reason: str | None = None
    risk_flag: str | None = None
    message: str | None = None
    original_value: Any = None
    requested_value: Any = None
    confirmation_phrase: str | None = None

    @property
    def requires_confirmation(self) -> bool:
        return self.outcome == PolicyOutcome.CONFIRM

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["outcome"] = self.outcome.value
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PolicyDecision:
        fields_ = {k: v for k, v in d.items() if k in PolicyDecision.__dataclass_fields__}
        fields_["outcome"] = PolicyOutcome(fields_.get("outcome", "PROCEED"))
        return PolicyDecision(**fields_)


@dataclass
class PendingAction:
    """Snapshot of a paused action, keyed by the owning workflow id."""
    intent: str
    entity: dict[str, Any]
    risk_flag: str | None = None
    original_value: Any = None
    requested_value: Any = None
    timestamp: float = 0.0
    expires_at: float | None = None
    reason: str | None = None
    confirmation_phrase: str | None = None
    message: str | None = None
    pending: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> PendingAction:
        return PendingAction(**{k: v for k, v in d.items() if k in PendingAction.__dataclass_fields__})


@dataclass
class ExecutionResult:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> ExecutionResult:
        return ExecutionResult(
            success=bool(d.get("success")),
            data=d.get("data"),
            error=d.get("error"),
        )


@dataclass
class StageMetrics:
    stage: str
    started_at: float = 0.0
    ended_at: float | None = None
    latency_ms: float | None = None
    counters: dict[str, Any] = field(default_factory=dict)

    def finish(self, **counters) -> None:
        self.ended_at = time.time()
        self.latency_ms = (self.ended_at - self.started_at) * 1000
        self.counters.update(counters)


# ═══════════════════════════════════════════════════════════════════
# Workflow state machine
# ═══════════════════════════════════════════════════════════════════

class WorkflowStatus(str, Enum):
    PLANNING = "PLANNING"
    VALIDATING = "VALIDATING"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
    EXECUTING = "EXECUTING"
    RESPONDING = "RESPONDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class IllegalStateTransition(Exception):
    """Raised when an invalid workflow status transition is attempted."""
    pass


# Valid transitions: {from_status: [valid_to_statuses]}
WORKFLOW_TRANSITIONS = {
    WorkflowStatus.PLANNING: [WorkflowStatus.VALIDATING, WorkflowStatus.EXECUTING, WorkflowStatus.FAILED],
    WorkflowStatus.VALIDATING: [
        WorkflowStatus.PENDING_CONFIRMATION, WorkflowStatus.EXECUTING, WorkflowStatus.FAILED,
    ],
    WorkflowStatus.PENDING_CONFIRMATION: [
        WorkflowStatus.EXECUTING, WorkflowStatus.CANCELLED, WorkflowStatus.FAILED,
    ],
    WorkflowStatus.EXECUTING: [WorkflowStatus.RESPONDING, WorkflowStatus.FAILED],
    WorkflowStatus.RESPONDING: [WorkflowStatus.COMPLETED, WorkflowStatus.FAILED],
    WorkflowStatus.COMPLETED: [],  # Terminal
    WorkflowStatus.FAILED: [],  # Terminal
    WorkflowStatus.CANCELLED: [],  # Terminal
}

TERMINAL_STATUSES = frozenset({
    WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED,
})


@dataclass
class WorkflowInput:
    message: str
    session_id: str
    trace_id: str
    workflow_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class WorkflowState:
    input: WorkflowInput
    status: WorkflowStatus = WorkflowStatus.PLANNING
    plan: Plan | None = None
    validation: ValidationResult | None = None
    policy: PolicyDecision | None = None
    pending_action: PendingAction | None = None
    execution: ExecutionResult | None = None
    response: str | None = None
    error: str | None = None
    metrics: dict[str, StageMetrics] = field(default_factory=dict)
    history: list[dict[str, Any]] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    total_latency_ms: float | None = None

    @property
    def workflow_id(self) -> str:
        return self.input.workflow_id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, to_status: WorkflowStatus, reason: str = "") -> None:
        valid = WORKFLOW_TRANSITIONS.get(self.status, [])
        if to_status not in valid:
            raise IllegalStateTransition(
                f"Cannot transition from {self.status.value} to {to_status.value}. "
                f"Valid: {[s.value for s in valid]}"
            )
        if to_status == WorkflowStatus.PENDING_CONFIRMATION and self.pending_action is None:
            raise IllegalStateTransition("PENDING_CONFIRMATION requires a pending action")
        if to_status != WorkflowStatus.PENDING_CONFIRMATION:
            self.pending_action = None
        self.history.append({
            "from": self.status.value,
            "to": to_status.value,
            "at": time.time(),
            "reason": reason,
        })
        self.status = to_status
        if to_status in TERMINAL_STATUSES:
            self.ended_at = time.time()
            self.total_latency_ms = (self.ended_at - self.started_at) * 1000

    def suspend(self, pending: PendingAction) -> None:
        self.pending_action = pending
        self.transition(WorkflowStatus.PENDING_CONFIRMATION, reason=pending.reason or "")

    def start_stage(self, stage: str) -> StageMetrics:
        m = StageMetrics(stage=stage, started_at=time.time())
        self.metrics[stage] = m
        return m

    # ─── Serialization ──────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return {
            "input": asdict(self.input),
            "status": self.status.value,
            "plan": self.plan.to_dict() if self.plan else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "policy": self.policy.to_dict() if self.policy else None,
            "pending_action": self.pending_action.to_dict() if self.pending_action else None,
            "execution": self.execution.to_dict() if self.execution else None,
            "response": self.response,
            "error": self.error,
            "metrics": {k: asdict(v) for k, v in self.metrics.items()},
            "history": list(self.history),
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "total_latency_ms": self.total_latency_ms,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> WorkflowState:
        return WorkflowState(
            input=WorkflowInput(**d["input"]),
            status=WorkflowStatus(d["status"]),
            plan=Plan.from_dict(d["plan"]) if d.get("plan") else None,
            validation=ValidationResult.from_dict(d["validation"]) if d.get("validation") else None,
            policy=PolicyDecision.from_dict(d["policy"]) if d.get("policy") else None,
            pending_action=PendingAction.from_dict(d["pending_action"]) if d.get("pending_action") else None,
            execution=ExecutionResult.from_dict(d["execution"]) if d.get("execution") else None,
            response=d.get("response"),
            error=d.get("error"),
            metrics={k: StageMetrics(**v) for k, v in (d.get("metrics") or {}).items()},
            history=list(d.get("history") or []),
            started_at=d.get("started_at", 0.0),
            ended_at=d.get("ended_at"),
            total_latency_ms=d.get("total_latency_ms"),
        )
