"""
StorePilot — Core Package

Deterministic building blocks of the admin workflow: record store,
guards, validation, HITL policy, confirmation state, executors and
read tools, plus the collaborator interfaces for the language model.

Light imports (stdlib + PyYAML only):
  - pilot.records:    RecordStore, StoreRegistry, StoreLocation
  - pilot.state:      Plan, ValidationResult, PolicyDecision, WorkflowState
  - pilot.hitl_policy: PolicyEngine, evaluate_policy
  - pilot.validate:   ValidationStage

pilot.llm imports langchain-core and is left to explicit import.
"""

from pilot.config import Settings, load_settings
from pilot.errors import (
    StorePilotError, StructuralError, ValidationFailed, ExecutionError,
    CollaboratorError, ExtractionError, ExplanationError,
    DuplicateIdError, WorkflowNotFound, NotPendingError,
)
from pilot.records import RecordStore, StoreLocation, StoreRegistry, paginate
from pilot.state import (
    Intent, Plan, ValidationResult, PolicyOutcome, PolicyDecision,
    PendingAction, ExecutionResult, WorkflowStatus, WorkflowState,
)
from pilot.hitl_policy import PolicyEngine, evaluate_policy
from pilot.validate import ValidationStage
