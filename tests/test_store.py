"""
StorePilot — Workflow Store Tests

Tests:
  - workflow snapshot save/restore round trip
  - pending listing and expiry lookup
  - session pending links
  - action ledger idempotency
  - transactions roll back together
  - a failed BEGIN does not leave the store locked
"""

import os
import sqlite3
import sys
import threading
import unittest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import support  # noqa: F401

from orchestrator.store import WorkflowStore
from pilot.state import (
    PendingAction,
    Plan,
    ValidationResult,
    WorkflowInput,
    WorkflowState,
    WorkflowStatus,
)


def _pending_state(workflow_id, session_id="s1", expires_at=None):
    state = WorkflowState(input=WorkflowInput("change price", session_id, "trace-1", workflow_id))
    state.plan = Plan("UPDATE_PRODUCT_PRICE", {"sku": "HP-BLK-001", "newPrice": 49.99}, 0.9)
    state.transition(WorkflowStatus.VALIDATING)
    state.validation = ValidationResult(old_value=29.99, new_value=49.99, risk_flag="PRICE_OUTLIER")
    state.suspend(PendingAction(
        "UPDATE_PRODUCT_PRICE", dict(state.plan.entities), risk_flag="PRICE_OUTLIER",
        original_value=29.99, requested_value=49.99, timestamp=100.0, expires_at=expires_at,
    ))
    return state


class TestWorkflowPersistence(unittest.TestCase):

    def setUp(self):
        self.store = WorkflowStore(":memory:")

    def tearDown(self):
        self.store.close()

    def test_round_trip(self):
        state = _pending_state("wf_1", expires_at=500.0)
        self.store.save_workflow(state)
        restored = self.store.get_workflow("wf_1")
        self.assertEqual(restored.status, WorkflowStatus.PENDING_CONFIRMATION)
        self.assertEqual(restored.plan, state.plan)
        self.assertEqual(restored.pending_action.original_value, 29.99)
        self.assertEqual(restored.validation.risk_flag, "PRICE_OUTLIER")
        self.assertEqual(restored.history, state.history)

    def test_unknown_workflow(self):
        self.assertIsNone(self.store.get_workflow("wf_missing"))

    def test_list_pending_by_session(self):
        self.store.save_workflow(_pending_state("wf_1", "s1"))
        self.store.save_workflow(_pending_state("wf_2", "s2"))
        done = _pending_state("wf_3", "s1")
        done.transition(WorkflowStatus.CANCELLED)
        self.store.save_workflow(done)
        self.assertEqual({s.workflow_id for s in self.store.list_pending()}, {"wf_1", "wf_2"})
        self.assertEqual([s.workflow_id for s in self.store.list_pending("s1")], ["wf_1"])

    def test_find_expired(self):
        self.store.save_workflow(_pending_state("wf_old", expires_at=100.0))
        self.store.save_workflow(_pending_state("wf_new", expires_at=900.0))
        self.store.save_workflow(_pending_state("wf_forever", expires_at=None))
        self.assertEqual([s.workflow_id for s in self.store.find_expired(now=100.0)], ["wf_old"])
        self.assertEqual(len(self.store.find_expired(now=1000.0)), 2)

    def test_stats(self):
        self.store.save_workflow(_pending_state("wf_1"))
        self.store.log_action("wf_1", "t", "start", {})
        stats = self.store.stats()
        self.assertEqual(stats["workflows"], {"PENDING_CONFIRMATION": 1})
        self.assertEqual(stats["action_ledger_entries"], 1)


class TestSessions(unittest.TestCase):

    def setUp(self):
        self.store = WorkflowStore(":memory:")

    def tearDown(self):
        self.store.close()

    def test_set_and_get(self):
        self.assertIsNone(self.store.get_session_pending("s1"))
        self.store.set_session_pending("s1", "wf_1")
        self.assertEqual(self.store.get_session_pending("s1"), "wf_1")

    def test_clear_only_if_matching(self):
        self.store.set_session_pending("s1", "wf_2")
        self.store.clear_session_pending("s1", "wf_1")
        self.assertEqual(self.store.get_session_pending("s1"), "wf_2")
        self.store.clear_session_pending("s1", "wf_2")
        self.assertIsNone(self.store.get_session_pending("s1"))

    def test_clear_unconditional(self):
        self.store.set_session_pending("s1", "wf_2")
        self.store.clear_session_pending("s1")
        self.assertIsNone(self.store.get_session_pending("s1"))


class TestLedger(unittest.TestCase):

    def setUp(self):
        self.store = WorkflowStore(":memory:")

    def tearDown(self):
        self.store.close()

    def test_idempotency_key(self):
        self.assertTrue(self.store.log_action("wf_1", "t", "approve", {}, idempotency_key="resume:wf_1"))
        self.assertFalse(self.store.log_action("wf_1", "t", "reject", {}, idempotency_key="resume:wf_1"))
        ledger = self.store.get_ledger("wf_1")
        self.assertEqual([e["action_type"] for e in ledger], ["approve"])

    def test_entries_without_key_always_logged(self):
        self.store.log_action("wf_1", "t", "note", {"n": 1})
        self.store.log_action("wf_1", "t", "note", {"n": 2})
        self.store.log_action("wf_2", "t", "note", {"n": 3})
        self.assertEqual([e["details"]["n"] for e in self.store.get_ledger("wf_1")], [1, 2])
        self.assertEqual(len(self.store.get_ledger()), 3)


class TestTransactions(unittest.TestCase):

    def setUp(self):
        self.store = WorkflowStore(":memory:")

    def tearDown(self):
        self.store.close()

    def test_commit(self):
        with self.store.transaction():
            self.store.save_workflow(_pending_state("wf_1"))
            self.store.set_session_pending("s1", "wf_1")
        self.assertIsNotNone(self.store.get_workflow("wf_1"))
        self.assertEqual(self.store.get_session_pending("s1"), "wf_1")

    def test_rollback(self):
        with self.assertRaises(RuntimeError):
            with self.store.transaction():
                self.store.save_workflow(_pending_state("wf_1"))
                self.store.set_session_pending("s1", "wf_1")
                raise RuntimeError("crash between writes")
        self.assertIsNone(self.store.get_workflow("wf_1"))
        self.assertIsNone(self.store.get_session_pending("s1"))

    def test_failed_begin_releases_lock(self):
        with self.assertRaises(sqlite3.OperationalError):
            with self.store.transaction():
                with self.store.transaction():
                    pass
        self.assertFalse(self.store._in_transaction)

        acquired = []

        def other_thread():
            got = self.store._lock.acquire(timeout=1)
            acquired.append(got)
            if got:
                self.store._lock.release()

        t = threading.Thread(target=other_thread)
        t.start()
        t.join()
        self.assertEqual(acquired, [True])

        with self.store.transaction():
            self.store.save_workflow(_pending_state("wf_1"))
        self.assertIsNotNone(self.store.get_workflow("wf_1"))


if __name__ == "__main__":
    unittest.main()
