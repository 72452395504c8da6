"""
StorePilot — Operator CLI

Usage:
    # Send one admin command (or start an interactive session)
    python -m orchestrator.cli chat "change price of HP-BLK-001 to 49.99"
    python -m orchestrator.cli chat --session ops-1

    # Resolve a paused workflow
    python -m orchestrator.cli approve <workflow_id>
    python -m orchestrator.cli reject <workflow_id>

    # Housekeeping
    python -m orchestrator.cli pending
    python -m orchestrator.cli sweep
    python -m orchestrator.cli ledger [--workflow <id>]
    python -m orchestrator.cli stats
    python -m orchestrator.cli reset-data
"""

import argparse
import json
import sys
import time

from orchestrator.runtime import AdminWorkflow, TurnResult
from orchestrator.service import AgentService, build_registry, build_service
from orchestrator.store import WorkflowStore
from pilot.config import load_settings
from pilot.logging import configure_logging


def _print_turn(turn: TurnResult, verbose: bool = False):
    print(f"\n{'═' * 70}", file=sys.stderr)
    print(f"  {turn.status}  {turn.workflow_id}  intent={turn.intent or '-'}", file=sys.stderr)
    print(f"{'═' * 70}", file=sys.stderr)
    print(turn.response)
    if turn.pending_action:
        p = turn.pending_action
        print(f"\n  risk:      {p.get('risk_flag')}", file=sys.stderr)
        print(f"  before:    {p.get('original_value')}", file=sys.stderr)
        print(f"  after:     {p.get('requested_value')}", file=sys.stderr)
    if turn.error and verbose:
        print(f"\n  error: {turn.error}", file=sys.stderr)
    if verbose and turn.data:
        print(json.dumps(turn.data, indent=2, default=str), file=sys.stderr)


def _offline_workflow(settings, store: WorkflowStore) -> AdminWorkflow:
    """Workflow without language collaborators. Responses use the templated fallback."""
    return AdminWorkflow(None, None, build_registry(settings), store=store, settings=settings)


def cmd_chat(args, settings, store: WorkflowStore):
    service = build_service(settings, store=store)
    if args.message:
        _print_turn(service.handle_message(" ".join(args.message), args.session), args.verbose)
        return

    print("StorePilot — type a command, 'quit' to exit.", file=sys.stderr)
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)
            break
        if not line:
            continue
        if line.lower() in ("quit", "exit"):
            break
        _print_turn(service.handle_message(line, args.session), args.verbose)


def cmd_resolve(args, settings, store: WorkflowStore, approved: bool):
    if args.offline:
        service = AgentService(_offline_workflow(settings, store))
    else:
        service = build_service(settings, store=store)
    _print_turn(service.handle_confirmation(args.workflow_id, approved), args.verbose)


def cmd_pending(args, settings, store: WorkflowStore):
    pending = store.list_pending(args.session)
    if not pending:
        print("No workflows awaiting confirmation.")
        return
    now = time.time()
    for state in pending:
        p = state.pending_action
        age = now - p.timestamp if p else 0
        print(f"  {state.workflow_id}  session={state.input.session_id}  "
              f"{p.intent if p else '-'}  risk={p.risk_flag if p else '-'}  "
              f"{p.original_value} → {p.requested_value}  ({age:.0f}s ago)")


def cmd_sweep(args, settings, store: WorkflowStore):
    expired = _offline_workflow(settings, store).sweep_expired()
    print(f"Expired {len(expired)} pending workflow(s).")
    for wid in expired:
        print(f"  {wid}")


def cmd_ledger(args, settings, store: WorkflowStore):
    for entry in store.get_ledger(args.workflow):
        ts = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(entry["created_at"]))
        print(f"  {ts}  {entry['workflow_id']}  {entry['action_type']:<8} "
              f"{json.dumps(entry['details'], default=str)[:120]}")


def cmd_stats(args, settings, store: WorkflowStore):
    print(json.dumps(store.stats(), indent=2))


def cmd_reset_data(args, settings, store: WorkflowStore):
    removed = build_registry(settings).reset_working()
    if removed:
        print(f"Removed working data: {', '.join(removed)} (re-seeded on next access)")
    else:
        print("No working data to remove.")


def main():
    parser = argparse.ArgumentParser(
        prog="storepilot",
        description="StorePilot admin workflow CLI",
    )
    parser.add_argument("--env", default="", help="Config overlay name (config/<env>.yaml)")
    parser.add_argument("--db", default=None, help="Workflow database path (overrides config)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR")
    subs = parser.add_subparsers(dest="command")

    chat_p = subs.add_parser("chat", help="Send an admin command")
    chat_p.add_argument("message", nargs="*", help="Command text; omit for an interactive session")
    chat_p.add_argument("--session", default="cli", help="Session ID")
    chat_p.add_argument("--verbose", "-v", action="store_true")

    for name, help_text in (("approve", "Approve a paused workflow"),
                            ("reject", "Reject a paused workflow")):
        p = subs.add_parser(name, help=help_text)
        p.add_argument("workflow_id")
        p.add_argument("--offline", action="store_true",
                       help="Skip the language model; reply with the templated message")
        p.add_argument("--verbose", "-v", action="store_true")

    pending_p = subs.add_parser("pending", help="List workflows awaiting confirmation")
    pending_p.add_argument("--session", default=None)

    subs.add_parser("sweep", help="Expire pending workflows past their confirmation TTL")

    ledger_p = subs.add_parser("ledger", help="Show the action ledger")
    ledger_p.add_argument("--workflow", help="Filter by workflow ID")

    subs.add_parser("stats", help="Show workflow statistics")
    subs.add_parser("reset-data", help="Delete working data so it is re-seeded")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = load_settings(env=args.env)
    configure_logging(level=args.log_level or settings.log_level)
    store = WorkflowStore(args.db or settings.workflow.db_path)

    try:
        if args.command == "chat":
            cmd_chat(args, settings, store)
        elif args.command == "approve":
            cmd_resolve(args, settings, store, approved=True)
        elif args.command == "reject":
            cmd_resolve(args, settings, store, approved=False)
        elif args.command == "pending":
            cmd_pending(args, settings, store)
        elif args.command == "sweep":
            cmd_sweep(args, settings, store)
        elif args.command == "ledger":
            cmd_ledger(args, settings, store)
        elif args.command == "stats":
            cmd_stats(args, settings, store)
        elif args.command == "reset-data":
            cmd_reset_data(args, settings, store)
    finally:
        store.close()


if __name__ == "__main__":
    main()
