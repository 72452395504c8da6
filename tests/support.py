"""
Shared fixtures for the StorePilot test suite.

Record stores run in working mode over the repo's seed data with a
temporary working directory, so tests mutate copies and never the
committed seed files.
"""

import json
import os
import sys
import tempfile
import time

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _base not in sys.path:
    sys.path.insert(0, _base)

from orchestrator.runtime import AdminWorkflow
from orchestrator.store import WorkflowStore
from pilot.config import Settings
from pilot.records import StoreLocation, StoreRegistry

SEED_DIR = os.path.join(_base, "data", "seed")


def make_registry(working_dir, cache_ttl=0.0, clock=time.monotonic):
    registry = StoreRegistry(StoreLocation(SEED_DIR, working_dir, "working"),
                             cache_ttl=cache_ttl, clock=clock)
    for name in ("products", "orders", "promotions"):
        registry.create(name)
    return registry


def plan_json(intent, confidence=0.95, **entities):
    return json.dumps({"intent": intent, "entities": entities, "confidence": confidence})


class ScriptedExtractor:
    """Returns canned extractor output in order; repeats the last one."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    def extract(self, message, tools=None):
        self.calls.append(message)
        out = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if isinstance(out, Exception):
            raise out
        return out


class StaticExplainer:
    def __init__(self, text="Done."):
        self.text = text
        self.prompts = []

    def explain(self, prompt):
        self.prompts.append(prompt)
        return self.text


class SlowExplainer:
    def __init__(self, delay=0.5):
        self.delay = delay

    def explain(self, prompt):
        time.sleep(self.delay)
        return "too late"


class FailingExplainer:
    def explain(self, prompt):
        raise RuntimeError("model unavailable")


class Clock:
    """Manually advanced wall clock."""

    def __init__(self, start=1_800_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class WorkflowFixture:
    """Temporary working dir + in-memory workflow store + AdminWorkflow."""

    def __init__(self, extractor, explainer=None, settings=None, clock=None):
        self._tmp = tempfile.TemporaryDirectory()
        self.registry = make_registry(self._tmp.name)
        self.store = WorkflowStore(":memory:")
        self.clock = clock or Clock()
        self.settings = settings or Settings()
        self.workflow = AdminWorkflow(
            extractor, explainer, self.registry,
            store=self.store, settings=self.settings, clock=self.clock,
        )

    def variant_price(self, sku):
        _, variant = self.workflow.catalog.get_product_by_sku(sku)
        return variant["price"]

    def order_status(self, order_number):
        return self.workflow.catalog.get_order(order_number)["status"]

    def close(self):
        self.store.close()
        self._tmp.cleanup()
