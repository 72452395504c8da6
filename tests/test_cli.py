"""
StorePilot — Operator CLI Tests

Offline commands only (no language model): stats, pending, sweep,
ledger, and approve --offline against a pre-seeded workflow database.
"""

import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest import mock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from support import ScriptedExtractor, WorkflowFixture, plan_json

from orchestrator import cli
from orchestrator.store import WorkflowStore


class TestCli(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db = os.path.join(self.tmp.name, "wf.db")
        env = {k: v for k, v in os.environ.items() if not k.startswith("SP_")}
        env["SP_STORE__WORKING_DIR"] = os.path.join(self.tmp.name, "working")
        self.env = mock.patch.dict(os.environ, env, clear=True)
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self.tmp.cleanup()

    def run_cli(self, *argv):
        out, err = io.StringIO(), io.StringIO()
        with mock.patch.object(sys, "argv", ["storepilot", "--db", self.db, "--log-level", "ERROR", *argv]):
            with redirect_stdout(out), redirect_stderr(err):
                cli.main()
        return out.getvalue()

    def test_stats_empty(self):
        stats = json.loads(self.run_cli("stats"))
        self.assertEqual(stats, {"workflows": {}, "action_ledger_entries": 0})

    def test_pending_empty(self):
        self.assertIn("No workflows awaiting confirmation.", self.run_cli("pending"))

    def test_sweep_empty(self):
        self.assertIn("Expired 0 pending workflow(s).", self.run_cli("sweep"))

    def test_no_command(self):
        with mock.patch.object(sys, "argv", ["storepilot"]), redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit):
                cli.main()

    def test_offline_approve(self):
        fx = WorkflowFixture(ScriptedExtractor(
            plan_json("UPDATE_PRODUCT_PRICE", sku="HP-BLK-001", newPrice=49.99)))
        fx.store.close()
        fx.store = WorkflowStore(self.db)
        fx.workflow.store = fx.store
        try:
            paused = fx.workflow.run("change price", session_id="ops")
        finally:
            fx.close()

        self.assertIn(paused.workflow_id, self.run_cli("pending"))
        out = self.run_cli("approve", paused.workflow_id, "--offline")
        self.assertIn("Price for HP-BLK-001 updated from $29.99 to $49.99.", out)
        ledger = self.run_cli("ledger", "--workflow", paused.workflow_id)
        self.assertIn("execute", ledger)


if __name__ == "__main__":
    unittest.main()
