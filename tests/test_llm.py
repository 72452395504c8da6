"""
StorePilot — Language Collaborator and Prompt Tests

Uses langchain-core's FakeListChatModel so no provider is needed.

Tests:
  - extract_json / parse_plan tolerance and failure modes
  - LLMIntentExtractor tool rounds
  - LLMExplanationGenerator empty reply
  - provider detection and model alias resolution
  - explanation context (record cap, truncation note) and fallback text
"""

import json
import os
import sys
import unittest
from unittest import mock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import support  # noqa: F401

from langchain_core.language_models.fake_chat_models import FakeListChatModel

from pilot.errors import ExplanationError, ExtractionError
from pilot.llm import (
    LLMExplanationGenerator,
    LLMIntentExtractor,
    create_llm,
    detect_provider,
    extract_json,
    parse_plan,
    resolve_model,
)
from pilot.prompts import build_explanation_context, build_planner_prompt, fallback_message
from pilot.state import ExecutionResult, ValidationResult
from pilot.tools import ToolRegistry


class TestParsing(unittest.TestCase):

    def test_code_fence(self):
        text = 'Sure!\n```json\n{"intent": "LIST_ORDERS", "entities": {}}\n```'
        self.assertEqual(extract_json(text)["intent"], "LIST_ORDERS")

    def test_braces_inside_strings(self):
        text = 'plan: {"intent": "ADD_ORDER_NOTE", "entities": {"content": "use {gift} wrap"}} thanks'
        self.assertEqual(extract_json(text)["entities"]["content"], "use {gift} wrap")

    def test_no_object(self):
        with self.assertRaises(ValueError):
            extract_json("I cannot help with that")

    def test_plan_normalized(self):
        plan = parse_plan('{"intent": " update_product_price ", "entities": {"sku": "A"}, "confidence": 1.7}')
        self.assertEqual(plan.intent, "UPDATE_PRODUCT_PRICE")
        self.assertEqual(plan.confidence, 1.0)
        self.assertEqual(plan.entities, {"sku": "A"})

    def test_missing_intent_still_parses(self):
        plan = parse_plan('{"entities": {}, "confidence": 0.9}')
        self.assertEqual(plan.intent, "")

    def test_empty_output(self):
        for raw in (None, "", "   "):
            with self.assertRaises(ExtractionError):
                parse_plan(raw)

    def test_unparseable_output(self):
        with self.assertRaises(ExtractionError) as ctx:
            parse_plan("{not json at all")
        self.assertEqual(ctx.exception.raw, "{not json at all")

    def test_bad_shapes(self):
        with self.assertRaises(ExtractionError):
            parse_plan('{"intent": "LIST_ORDERS", "entities": ["sku"]}')
        with self.assertRaises(ExtractionError):
            parse_plan('{"intent": "LIST_ORDERS", "confidence": "high"}')

    def test_plan_is_immutable(self):
        plan = parse_plan('{"intent": "LIST_ORDERS", "entities": {}, "confidence": 0.9}')
        with self.assertRaises(Exception):
            plan.intent = "OTHER"


class TestLangChainCollaborators(unittest.TestCase):

    def setUp(self):
        self.lookups = []
        self.tools = ToolRegistry()

        def lookup(args):
            self.lookups.append(args)
            return {"variant": {"sku": args.get("sku"), "price": 29.99}}
        self.tools.register("get_product_by_sku", lookup, "Look up a SKU", params="sku")

    def test_plain_plan(self):
        llm = FakeListChatModel(responses=['{"intent": "LIST_ORDERS", "entities": {}, "confidence": 0.9}'])
        raw = LLMIntentExtractor(llm).extract("show orders", self.tools)
        self.assertEqual(parse_plan(raw).intent, "LIST_ORDERS")
        self.assertEqual(self.lookups, [])

    def test_tool_round_then_plan(self):
        llm = FakeListChatModel(responses=[
            '{"tool": "get_product_by_sku", "args": {"sku": "HP-BLK-001"}}',
            '{"intent": "UPDATE_PRODUCT_PRICE", "entities": {"sku": "HP-BLK-001", "newPrice": 49.99}, "confidence": 0.92}',
        ])
        raw = LLMIntentExtractor(llm).extract("raise headphones to 49.99", self.tools)
        self.assertEqual(self.lookups, [{"sku": "HP-BLK-001"}])
        self.assertEqual(parse_plan(raw).entities["newPrice"], 49.99)

    def test_tool_rounds_capped(self):
        request = '{"tool": "get_product_by_sku", "args": {"sku": "X"}}'
        llm = FakeListChatModel(responses=[request, request, request])
        raw = LLMIntentExtractor(llm, max_tool_rounds=1).extract("?", self.tools)
        self.assertEqual(len(self.lookups), 1)
        self.assertEqual(json.loads(raw)["tool"], "get_product_by_sku")

    def test_explainer(self):
        llm = FakeListChatModel(responses=["  Price updated.  "])
        self.assertEqual(LLMExplanationGenerator(llm).explain("ctx"), "Price updated.")

    def test_explainer_empty(self):
        llm = FakeListChatModel(responses=["   "])
        with self.assertRaises(ExplanationError):
            LLMExplanationGenerator(llm).explain("ctx")


class TestProviderFactory(unittest.TestCase):

    def test_detect_from_explicit_env(self):
        with mock.patch.dict(os.environ, {"LLM_PROVIDER": "Ollama"}, clear=True):
            self.assertEqual(detect_provider(), "ollama")

    def test_detect_from_key(self):
        with mock.patch.dict(os.environ, {"GOOGLE_API_KEY": "k"}, clear=True):
            self.assertEqual(detect_provider(), "google")

    def test_nothing_configured(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(EnvironmentError):
                detect_provider()

    def test_unknown_provider(self):
        with self.assertRaises(ValueError):
            create_llm(provider="carrier-pigeon")

    def test_aliases(self):
        self.assertEqual(resolve_model("default", "google"), "gemini-2.0-flash")
        self.assertEqual(resolve_model("strong", "openai"), "gpt-4o")
        self.assertEqual(resolve_model("my-model", "openai"), "my-model")


class TestPrompts(unittest.TestCase):

    def test_planner_prompt_lists_intents_and_tools(self):
        prompt = build_planner_prompt("  - get_product_by_sku(sku): Look up")
        self.assertIn("UPDATE_ORDER_BILLING_ADDRESS", prompt)
        self.assertIn("get_product_by_sku(sku)", prompt)
        self.assertIn('{"intent": "<INTENT>"', prompt)

    def test_context_contains_before_after(self):
        validation = ValidationResult(old_value=29.99, new_value=49.99, risk_flag="PRICE_OUTLIER",
                                      warnings=["Warning: New price ($4) is below cost price ($5)"])
        execution = ExecutionResult(True, {"sku": "HP-BLK-001", "oldPrice": 29.99, "newPrice": 49.99})
        text = build_explanation_context("UPDATE_PRODUCT_PRICE", validation, execution)
        self.assertIn("Intent: UPDATE_PRODUCT_PRICE", text)
        self.assertIn("Before: 29.99", text)
        self.assertIn("After: 49.99", text)
        self.assertIn("Risk flag: PRICE_OUTLIER", text)
        self.assertIn("Warning: New price ($4) is below cost price ($5)", text)
        self.assertNotIn("Warning: Warning:", text)
        self.assertIn("Result: success", text)
        self.assertIn('sku: "HP-BLK-001"', text)

    def test_context_caps_records(self):
        orders = [{"orderNumber": str(1000 + i)} for i in range(60)]
        execution = ExecutionResult(True, {"orders": orders, "total": 60})
        text = build_explanation_context("LIST_ORDERS", None, execution)
        self.assertIn("Records (60):", text)
        self.assertIn('"orderNumber": "1049"', text)
        self.assertNotIn('"orderNumber": "1050"', text)
        self.assertIn("(Showing first 50 of 60 records; 10 more not listed.)", text)

    def test_context_without_execution(self):
        text = build_explanation_context("CANCEL_ORDER", ValidationResult(), None)
        self.assertIn("Result: not executed", text)

    def test_context_is_deterministic(self):
        execution = ExecutionResult(True, {"product": {"b": 1, "a": 2}})
        self.assertEqual(
            build_explanation_context("SHOW_PRODUCT_INFO", None, execution),
            build_explanation_context("SHOW_PRODUCT_INFO", None, execution),
        )

    def test_fallback_messages(self):
        price = ExecutionResult(True, {"sku": "HP-BLK-001", "oldPrice": 29.99, "newPrice": 49.99})
        self.assertEqual(fallback_message("UPDATE_PRODUCT_PRICE", price),
                         "Price for HP-BLK-001 updated from $29.99 to $49.99.")
        listing = ExecutionResult(True, {"orders": [{}, {}], "total": 7})
        self.assertEqual(fallback_message("LIST_ORDERS", listing), "Found 7 orders.")
        self.assertEqual(fallback_message("CANCEL_ORDER", ExecutionResult(False, error="boom")),
                         "CANCEL_ORDER failed: boom")
        self.assertEqual(fallback_message("ARCHIVE_ORDER", ExecutionResult(True, {"archived": True})),
                         "ARCHIVE_ORDER completed successfully.")
        self.assertEqual(fallback_message("CANCEL_ORDER", None), "CANCEL_ORDER: no action was executed.")


if __name__ == "__main__":
    unittest.main()
