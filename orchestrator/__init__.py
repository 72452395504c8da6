"""
StorePilot — Orchestrator

Runs admin turns end to end and owns their persistence.

Usage:
    from orchestrator.service import build_service

    service = build_service(load_settings())
    turn = service.handle_message("change price of HP-BLK-001 to 49.99", "s1")
"""

from orchestrator.runtime import AdminWorkflow, TurnResult
from orchestrator.store import WorkflowStore
