"""
StorePilot — Workflow Orchestrator

Sequences one admin turn through its stages:

    PLANNING → VALIDATING → (PENDING_CONFIRMATION) → EXECUTING → RESPONDING → COMPLETED

with FAILED reachable from every non-terminal status and CANCELLED
reachable from PENDING_CONFIRMATION.

A CONFIRM policy decision suspends the workflow: the PendingAction
snapshot is persisted in the WorkflowStore and control returns to the
caller. `resume()` picks the workflow up at EXECUTING (approval) or
ends it CANCELLED (rejection). Planning, validation and policy are
never re-run on resume, and a workflow resumes at most once.

Every exception raised inside a stage is caught once, here, and turns
the workflow FAILED with a user-facing message.

Usage:
    wf = AdminWorkflow(extractor, explainer, registry, store=WorkflowStore(":memory:"))
    turn = wf.run("change price of HP-BLK-001 to $49.99", session_id="s1")
    turn.status                          # "PENDING_CONFIRMATION"
    turn = wf.resume(turn.workflow_id, approved=True)
    turn.status                          # "COMPLETED"
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable

from orchestrator.store import WorkflowStore
from pilot.actions import ExecutorRegistry, create_store_executors
from pilot.catalog import Catalog
from pilot.config import Settings
from pilot.confirmation import (
    create_confirmation_state,
    is_confirmation_command,
    is_expired,
    is_rejection_command,
)
from pilot.errors import (
    ExplanationError,
    ExtractionError,
    NotPendingError,
    Severity,
    StorePilotError,
    ValidationFailed,
    WorkflowNotFound,
)
from pilot.hitl_policy import PolicyEngine
from pilot.llm import ExplanationGenerator, IntentExtractor, parse_plan
from pilot.logging import StructuredLogger, generate_trace_id, generate_workflow_id
from pilot.prompts import build_explanation_context, fallback_message
from pilot.records import StoreRegistry
from pilot.state import (
    WorkflowInput,
    WorkflowState,
    WorkflowStatus,
    is_read_only,
)
from pilot.tools import ToolRegistry, create_catalog_tools
from pilot.validate import ValidationStage

logger = logging.getLogger("storepilot.runtime")

GENERIC_FAILURE = "Something went wrong while processing your request. No changes were made."
EXPIRED_MESSAGE = "This confirmation request has expired. Please submit the command again."
CANCELLED_MESSAGE = "Action cancelled. No changes were made."
SUPERSEDED_REASON = "Superseded by a new request"


@dataclass
class TurnResult:
    """What the caller gets back for one turn or resumption."""
    workflow_id: str
    session_id: str
    trace_id: str
    status: str
    response: str
    intent: str | None = None
    error: str | None = None
    pending_action: dict[str, Any] | None = None
    data: dict[str, Any] | None = None
    total_latency_ms: float | None = None

    @property
    def ok(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED.value

    @property
    def awaiting_confirmation(self) -> bool:
        return self.status == WorkflowStatus.PENDING_CONFIRMATION.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "session_id": self.session_id,
            "trace_id": self.trace_id,
            "status": self.status,
            "response": self.response,
            "intent": self.intent,
            "error": self.error,
            "pending_action": self.pending_action,
            "data": self.data,
            "total_latency_ms": self.total_latency_ms,
        }

    @staticmethod
    def from_state(state: WorkflowState, response: str | None = None) -> TurnResult:
        return TurnResult(
            workflow_id=state.workflow_id,
            session_id=state.input.session_id,
            trace_id=state.input.trace_id,
            status=state.status.value,
            response=response if response is not None else (state.response or ""),
            intent=state.plan.intent if state.plan else None,
            error=state.error,
            pending_action=state.pending_action.to_dict() if state.pending_action else None,
            data=state.execution.data if state.execution else None,
            total_latency_ms=state.total_latency_ms,
        )


class AdminWorkflow:
    """The orchestrator. One instance serves many turns."""

    def __init__(
        self,
        extractor: IntentExtractor | None,
        explainer: ExplanationGenerator | None,
        registry: StoreRegistry,
        store: WorkflowStore | None = None,
        settings: Settings | None = None,
        executors: ExecutorRegistry | None = None,
        tools: ToolRegistry | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or Settings()
        self.extractor = extractor
        self.explainer = explainer
        self.registry = registry
        self.catalog = Catalog(registry)
        self.executors = executors or create_store_executors(self.catalog)
        self.tools = tools or create_catalog_tools(self.catalog)
        self.store = store or WorkflowStore(self.settings.workflow.db_path)
        self.validation = ValidationStage(registry, self.settings.policy.price_deviation_percent)
        self.policy = PolicyEngine(self.settings.policy)
        self.clock = clock

    # ═══════════════════════════════════════════════════════════════
    # Public API
    # ═══════════════════════════════════════════════════════════════

    def run(self, message: str, session_id: str = "default", trace_id: str | None = None) -> TurnResult:
        """Start a new workflow for one user message."""
        state = WorkflowState(input=WorkflowInput(
            message=message,
            session_id=session_id,
            trace_id=trace_id or generate_trace_id(),
            workflow_id=generate_workflow_id(),
            timestamp=self.clock(),
        ))
        slog = self._slog(state)
        slog.on_workflow_start(message)
        self.store.log_action(
            state.workflow_id, state.input.trace_id, "start",
            {"session_id": session_id, "message_chars": len(message)},
            idempotency_key=f"start:{state.workflow_id}",
        )

        try:
            self._plan(state, slog)
            proceed = True
            if is_read_only(state.plan.intent):
                state.transition(WorkflowStatus.EXECUTING, "read-only intent")
            else:
                proceed = self._validate_and_gate(state, slog)
            if proceed:
                self._execute_and_respond(state, slog)
        except ValidationFailed as e:
            self._fail(state, slog, "validating", str(e), response=str(e), severity=e.severity)
        except Exception as e:
            self._fail_unexpected(state, slog, e)

        return self._finish(state, slog)

    def resume(self, workflow_id: str, approved: bool) -> TurnResult:
        """
        Continue a paused workflow after a human decision.

        Raises WorkflowNotFound for an unknown id and NotPendingError when
        the workflow is not waiting for confirmation (including a second
        resume of the same workflow).
        """
        state = self._load_pending(workflow_id)
        slog = self._slog(state)
        pending = state.pending_action
        now = self.clock()

        if is_expired(pending, now):
            if not self._expire(state, slog):
                raise NotPendingError(workflow_id, "already resolved")
            return self._finish(state, slog)

        claimed = self.store.log_action(
            workflow_id, state.input.trace_id, "approve" if approved else "reject",
            {"intent": pending.intent, "risk_flag": pending.risk_flag},
            idempotency_key=f"resume:{workflow_id}",
        )
        if not claimed:
            raise NotPendingError(workflow_id, "already resumed")

        slog.on_workflow_resumed(approved, pending_for_s=now - pending.timestamp)

        try:
            if not approved:
                state.response = CANCELLED_MESSAGE
                state.transition(WorkflowStatus.CANCELLED, "rejected by user")
            else:
                state.transition(WorkflowStatus.EXECUTING, "approved by user")
                self._execute_and_respond(state, slog)
        except Exception as e:
            self._fail_unexpected(state, slog, e)

        return self._finish(state, slog)

    def resume_from_message(self, workflow_id: str, message: str) -> TurnResult:
        """
        Interpret a free-text reply to a pending confirmation. A reply that
        neither confirms nor rejects leaves the workflow paused.
        """
        state = self._load_pending(workflow_id)
        pending = state.pending_action
        if is_confirmation_command(message, pending):
            return self.resume(workflow_id, approved=True)
        if is_rejection_command(message):
            return self.resume(workflow_id, approved=False)

        phrase = pending.confirmation_phrase or "CONFIRM"
        return TurnResult.from_state(
            state,
            response=f"Still waiting for confirmation. Reply \"{phrase}\" to proceed or \"cancel\" to abort.",
        )

    def abandon(self, workflow_id: str, reason: str = SUPERSEDED_REASON) -> TurnResult:
        """Cancel a pending workflow without asking the user."""
        state = self._load_pending(workflow_id)
        slog = self._slog(state)
        claimed = self.store.log_action(
            workflow_id, state.input.trace_id, "abandon", {"reason": reason},
            idempotency_key=f"resume:{workflow_id}",
        )
        if not claimed:
            raise NotPendingError(workflow_id, "already resolved")
        state.error = reason
        state.response = CANCELLED_MESSAGE
        state.transition(WorkflowStatus.CANCELLED, reason)
        return self._finish(state, slog)

    def sweep_expired(self, now: float | None = None) -> list[str]:
        """Fail every pending workflow whose confirmation window has closed."""
        now = self.clock() if now is None else now
        expired = []
        for state in self.store.find_expired(now):
            slog = self._slog(state)
            if not self._expire(state, slog):
                continue
            self._finish(state, slog)
            expired.append(state.workflow_id)
        if expired:
            logger.info("Expired %d pending workflow(s)", len(expired))
        return expired

    def get(self, workflow_id: str) -> WorkflowState | None:
        return self.store.get_workflow(workflow_id)

    def list_pending(self, session_id: str | None = None) -> list[WorkflowState]:
        return self.store.list_pending(session_id)

    # ═══════════════════════════════════════════════════════════════
    # Stages
    # ═══════════════════════════════════════════════════════════════

    @contextmanager
    def _stage(self, state: WorkflowState, slog: StructuredLogger, name: str):
        m = state.start_stage(name)
        slog.on_stage_start(name)
        try:
            yield m
        finally:
            if m.ended_at is None:
                m.finish()
            slog.on_stage_end(name, m.latency_ms or 0.0, **m.counters)

    def _plan(self, state: WorkflowState, slog: StructuredLogger) -> None:
        with self._stage(state, slog, "planning") as m:
            if self.extractor is None:
                raise ExtractionError("No intent extractor configured")
            try:
                raw = self.extractor.extract(state.input.message, self.tools)
            except StorePilotError:
                raise
            except Exception as e:
                raise ExtractionError(f"Intent extraction failed: {e}") from e
            plan = parse_plan(raw)
            state.plan = plan
            m.finish(intent=plan.intent, confidence=plan.confidence)
        slog.on_plan(plan.intent, plan.confidence, plan.entities)

    def _validate_and_gate(self, state: WorkflowState, slog: StructuredLogger) -> bool:
        """Run validation and policy. False means the turn pauses for confirmation."""
        state.transition(WorkflowStatus.VALIDATING)
        with self._stage(state, slog, "validating") as m:
            result = self.validation.validate(state.plan)
            state.validation = result
            m.finish(valid=result.valid, error_count=len(result.errors))
        slog.on_validation(result.valid, result.risk_flag, result.errors)

        if not result.valid:
            first = result.first_error or "Validation failed"
            raise ValidationFailed([first] + [e for e in result.errors if e != first],
                                   intent=state.plan.intent)

        decision = self.policy.evaluate_state(state)
        state.policy = decision
        slog.on_policy_decision(decision.outcome.value, decision.risk_flag, decision.reason)
        if not decision.requires_confirmation:
            state.transition(WorkflowStatus.EXECUTING, "policy: proceed")
            return True

        pending = create_confirmation_state(
            state.plan, result, decision,
            ttl_seconds=self.settings.workflow.confirmation_ttl_seconds,
            now=self.clock(),
        )
        state.suspend(pending)
        state.response = self._confirmation_prompt(decision.message, pending.confirmation_phrase)
        slog.on_confirmation_requested(
            pending.intent, pending.risk_flag, pending.original_value, pending.requested_value,
        )
        self.store.log_action(
            state.workflow_id, state.input.trace_id, "suspend",
            {"intent": pending.intent, "risk_flag": pending.risk_flag, "reason": pending.reason},
            idempotency_key=f"suspend:{state.workflow_id}",
        )
        return False

    def _execute_and_respond(self, state: WorkflowState, slog: StructuredLogger) -> None:
        plan = state.plan
        with self._stage(state, slog, "executing") as m:
            claimed = self.store.log_action(
                state.workflow_id, state.input.trace_id, "execute",
                {"intent": plan.intent, "entities": plan.entities},
                idempotency_key=f"execute:{state.workflow_id}",
            )
            if not claimed:
                raise NotPendingError(state.workflow_id, "already executed")
            result = self.executors.execute(plan.intent, plan.entities)
            state.execution = result
            m.finish(success=result.success)
        slog.on_execution(plan.intent, result.success, result.error)

        if not result.success:
            error = result.error or "Execution failed"
            self._fail(state, slog, "executing", error, response=error)
            return

        state.transition(WorkflowStatus.RESPONDING)
        with self._stage(state, slog, "responding") as m:
            prompt = build_explanation_context(
                plan.intent, state.validation, result,
                max_records=self.settings.workflow.max_listed_records,
            )
            text, used_fallback = self._explain(prompt, plan.intent, state, slog)
            state.response = text
            m.finish(fallback=used_fallback, response_chars=len(text))
        state.transition(WorkflowStatus.COMPLETED)

    def _explain(self, prompt: str, intent: str, state: WorkflowState,
                 slog: StructuredLogger) -> tuple[str, bool]:
        """Explainer call bounded by the explanation timeout. Falls back on any failure."""
        if self.explainer is None:
            return fallback_message(intent, state.execution), True
        timeout = self.settings.workflow.explanation_timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="storepilot-explainer")
        try:
            future = pool.submit(self.explainer.explain, prompt)
            text = future.result(timeout=timeout)
            if not text or not str(text).strip():
                raise ExplanationError("Explanation generator returned an empty response")
            return str(text).strip(), False
        except FutureTimeout:
            slog.on_collaborator_fallback("explainer", f"timed out after {timeout}s")
        except Exception as e:
            slog.on_collaborator_fallback("explainer", f"{type(e).__name__}: {e}")
        finally:
            pool.shutdown(wait=False)
        return fallback_message(intent, state.execution), True

    # ═══════════════════════════════════════════════════════════════
    # Terminal handling
    # ═══════════════════════════════════════════════════════════════

    def _fail(self, state: WorkflowState, slog: StructuredLogger, stage: str,
              error: str, response: str | None = None,
              severity: Severity = Severity.MEDIUM) -> None:
        state.error = error
        state.response = response or GENERIC_FAILURE
        if not state.is_terminal:
            state.transition(WorkflowStatus.FAILED, f"{stage}: {error}"[:200])
        slog.on_failure(stage, error, severity=severity.value)

    def _fail_unexpected(self, state: WorkflowState, slog: StructuredLogger, e: Exception) -> None:
        stage = state.status.value.lower()
        severity = e.severity if isinstance(e, StorePilotError) else Severity.CRITICAL
        if isinstance(e, StorePilotError) and e.user_facing:
            response = str(e)
        else:
            logger.exception("Unexpected error in workflow %s", state.workflow_id)
            response = GENERIC_FAILURE
        self._fail(state, slog, stage, f"{type(e).__name__}: {e}", response=response, severity=severity)

    def _expire(self, state: WorkflowState, slog: StructuredLogger) -> bool:
        """Claim and fail an expired workflow. False if another resolver got there first."""
        claimed = self.store.log_action(
            state.workflow_id, state.input.trace_id, "expire",
            {"expires_at": state.pending_action.expires_at if state.pending_action else None},
            idempotency_key=f"resume:{state.workflow_id}",
        )
        if not claimed:
            return False
        self._fail(state, slog, "pending_confirmation", "Confirmation expired",
                   response=EXPIRED_MESSAGE, severity=Severity.LOW)
        return True

    def _finish(self, state: WorkflowState, slog: StructuredLogger) -> TurnResult:
        session_id = state.input.session_id
        with self.store.transaction():
            self.store.save_workflow(state)
            if state.status == WorkflowStatus.PENDING_CONFIRMATION:
                self.store.set_session_pending(session_id, state.workflow_id)
            else:
                self.store.clear_session_pending(session_id, state.workflow_id)
        if state.is_terminal:
            slog.on_workflow_end(state.status.value, state.total_latency_ms)
        return TurnResult.from_state(state)

    # ═══════════════════════════════════════════════════════════════
    # Helpers
    # ═══════════════════════════════════════════════════════════════

    def _load_pending(self, workflow_id: str) -> WorkflowState:
        state = self.store.get_workflow(workflow_id)
        if state is None:
            raise WorkflowNotFound(workflow_id)
        if state.status != WorkflowStatus.PENDING_CONFIRMATION or state.pending_action is None:
            raise NotPendingError(workflow_id, state.status.value)
        return state

    @staticmethod
    def _slog(state: WorkflowState) -> StructuredLogger:
        return StructuredLogger(
            workflow_id=state.workflow_id,
            session_id=state.input.session_id,
            trace_id=state.input.trace_id,
        )

    @staticmethod
    def _confirmation_prompt(message: str | None, phrase: str | None) -> str:
        text = message or "This action needs your confirmation."
        if phrase and phrase not in text:
            text = f"{text} Reply \"{phrase}\" to proceed or \"cancel\" to abort."
        elif not phrase:
            text = f"{text} Reply \"CONFIRM\" to proceed or \"cancel\" to abort."
        return text
