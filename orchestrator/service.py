"""
StorePilot — Agent Service

Session-aware front door over AdminWorkflow. A session has at most one
pending workflow. While one is pending:

  - a confirm directive ("CONFIRM price change for HP-BLK-001 ...")
    approves it
  - a rejection ("cancel", "no", "reject", "abort") rejects it
  - anything else abandons it and starts a new turn

Usage:
    service = build_service(load_settings())
    turn = service.handle_message("change price of HP-BLK-001 to 49.99", "s1")
    turn = service.handle_message("CONFIRM price change for HP-BLK-001 to $49.99", "s1")
"""

from __future__ import annotations

import logging

from orchestrator.runtime import AdminWorkflow, TurnResult
from orchestrator.store import WorkflowStore
from pilot.config import Settings
from pilot.confirmation import is_confirmation_command, is_rejection_command
from pilot.errors import NotPendingError, WorkflowNotFound
from pilot.llm import (
    ExplanationGenerator,
    IntentExtractor,
    LLMExplanationGenerator,
    LLMIntentExtractor,
    create_llm,
)
from pilot.records import StoreLocation, StoreRegistry
from pilot.state import WorkflowStatus

logger = logging.getLogger("storepilot.service")


class AgentService:
    def __init__(self, workflow: AdminWorkflow):
        self.workflow = workflow

    @property
    def store(self) -> WorkflowStore:
        return self.workflow.store

    def handle_message(self, message: str, session_id: str = "default") -> TurnResult:
        pending_id = self.store.get_session_pending(session_id)
        state = self.workflow.get(pending_id) if pending_id else None

        if pending_id and (state is None or state.status != WorkflowStatus.PENDING_CONFIRMATION):
            # Stale link: the workflow was resolved elsewhere (CLI, sweep)
            self.store.clear_session_pending(session_id, pending_id)
            state = None

        if state is not None:
            if is_confirmation_command(message, state.pending_action):
                return self.handle_confirmation(state.workflow_id, True)
            if is_rejection_command(message):
                return self.handle_confirmation(state.workflow_id, False)
            logger.info("New message in session %s abandons pending workflow %s",
                        session_id, state.workflow_id)
            try:
                self.workflow.abandon(state.workflow_id)
            except (WorkflowNotFound, NotPendingError) as e:
                # Resolved elsewhere between the lookup and the claim
                logger.warning("Could not abandon %s: %s", state.workflow_id, e)
                self.store.clear_session_pending(session_id, state.workflow_id)

        return self.workflow.run(message, session_id=session_id)

    def handle_confirmation(self, workflow_id: str, confirmed: bool) -> TurnResult:
        """Explicit approve/reject for a paused workflow (button-style)."""
        try:
            return self.workflow.resume(workflow_id, approved=confirmed)
        except (WorkflowNotFound, NotPendingError) as e:
            logger.warning("Confirmation for %s refused: %s", workflow_id, e)
            state = self.workflow.get(workflow_id)
            if state is None:
                return TurnResult(
                    workflow_id=workflow_id, session_id="", trace_id="",
                    status="NOT_FOUND", response=str(e), error=str(e),
                )
            turn = TurnResult.from_state(state, response=str(e))
            turn.error = str(e)
            return turn


def build_registry(settings: Settings) -> StoreRegistry:
    s = settings.store
    registry = StoreRegistry(StoreLocation(s.seed_dir, s.working_dir, s.mode), cache_ttl=s.cache_ttl_seconds)
    for name in s.collections:
        registry.create(name)
    return registry


def build_service(
    settings: Settings,
    extractor: IntentExtractor | None = None,
    explainer: ExplanationGenerator | None = None,
    store: WorkflowStore | None = None,
) -> AgentService:
    """Wire the record stores, collaborators and workflow store from settings."""
    if extractor is None or explainer is None:
        llm = create_llm(
            model=settings.llm.model,
            temperature=settings.llm.temperature,
            provider=settings.llm.provider or None,
        )
        extractor = extractor or LLMIntentExtractor(llm, settings.llm.max_tool_rounds)
        explainer = explainer or LLMExplanationGenerator(llm)

    workflow = AdminWorkflow(
        extractor=extractor,
        explainer=explainer,
        registry=build_registry(settings),
        store=store or WorkflowStore(settings.workflow.db_path),
        settings=settings,
    )
    return AgentService(workflow)
