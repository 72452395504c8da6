"""
StorePilot — Prompts

Prompt templates for the two language collaborators and the
deterministic pieces around them:

  - build_planner_prompt:      message + intent catalog + tool list
  - build_explanation_context: ValidationResult/ExecutionResult/intent
                               rendered into one prompt string, listing
                               at most MAX_LISTED_RECORDS records verbatim
  - fallback_message:          templated reply used when the explainer
                               times out or errors

Everything here is a pure function of its inputs so the same turn
always produces the same prompt.
"""

from __future__ import annotations

import json
from typing import Any

from pilot.state import ExecutionResult, Intent, ValidationResult

MAX_LISTED_RECORDS = 50

# Keys in ExecutionResult.data that hold record lists
_RECORD_LIST_KEYS = ("products", "orders", "promotions")
# Keys in ExecutionResult.data that hold a single record
_RECORD_KEYS = ("product", "variant", "order")


PLANNER_TEMPLATE = """You are the command planner for an e-commerce admin console.
Turn the admin's message into exactly one JSON object:

{{"intent": "<INTENT>", "entities": {{...}}, "confidence": <0.0-1.0>}}

Supported intents:
{intents}

Entity names:
  sku, newPrice, description, newName, newStatus, tags, compareAtPrice,
  costPrice, targetStatus, orderNumber, status, cancelReason, content,
  isPrivate, shippingAddress, billingAddress, query, page, limit

If you need to look something up first, reply ONLY with
{{"tool": "<name>", "args": {{...}}}}
Available read-only tools:
{tools}

Use the literal string "ambiguous" for an entity you cannot pin down.
Reply with JSON only.
"""

EXPLANATION_TEMPLATE = """You are the assistant of an e-commerce admin console.
Explain the outcome below to the admin in two or three plain sentences.
Do not invent values that are not listed.

{context}
"""


def build_planner_prompt(tool_descriptions: str = "") -> str:
    intents = "\n".join(f"  - {i.value}" for i in Intent)
    return PLANNER_TEMPLATE.format(intents=intents, tools=tool_descriptions or "  (none)")


def _affected_records(data: dict[str, Any] | None) -> tuple[list[Any], dict[str, Any]]:
    """Split execution data into (record list, remaining scalar fields)."""
    if not data:
        return [], {}
    records: list[Any] = []
    rest: dict[str, Any] = {}
    for key, value in data.items():
        if key in _RECORD_LIST_KEYS and isinstance(value, list):
            records.extend(value)
        elif key in _RECORD_KEYS and isinstance(value, dict):
            records.append(value)
        else:
            rest[key] = value
    return records, rest


def build_explanation_context(
    intent: str,
    validation: ValidationResult | None,
    execution: ExecutionResult | None,
    max_records: int = MAX_LISTED_RECORDS,
) -> str:
    lines = [f"Intent: {intent}"]

    if validation is not None:
        if validation.old_value is not None or validation.new_value is not None:
            lines.append(f"Before: {validation.old_value}")
            lines.append(f"After: {validation.new_value}")
        if validation.risk_flag:
            lines.append(f"Risk flag: {validation.risk_flag}")
        for w in validation.warnings:
            lines.append(f"Warning: {w.removeprefix('Warning: ')}")

    if execution is None:
        lines.append("Result: not executed")
        return EXPLANATION_TEMPLATE.format(context="\n".join(lines))

    lines.append(f"Result: {'success' if execution.success else 'failed'}")
    if execution.error:
        lines.append(f"Error: {execution.error}")

    records, rest = _affected_records(execution.data)
    for key, value in rest.items():
        lines.append(f"{key}: {json.dumps(value, default=str)}")

    if records:
        shown = records[:max_records]
        lines.append(f"Records ({len(records)}):")
        for r in shown:
            lines.append(json.dumps(r, default=str, sort_keys=True))
        if len(records) > max_records:
            lines.append(
                f"(Showing first {max_records} of {len(records)} records; "
                f"{len(records) - max_records} more not listed.)"
            )

    return EXPLANATION_TEMPLATE.format(context="\n".join(lines))


def fallback_message(intent: str, execution: ExecutionResult | None) -> str:
    """Deterministic reply built from the execution result alone."""
    if execution is None:
        return f"{intent}: no action was executed."
    if not execution.success:
        return f"{intent} failed: {execution.error or 'unknown error'}"

    data = execution.data or {}
    if intent == Intent.UPDATE_PRODUCT_PRICE.value and "newPrice" in data:
        return (
            f"Price for {data.get('sku')} updated from "
            f"${float(data.get('oldPrice') or 0):.2f} to ${float(data['newPrice']):.2f}."
        )

    records, _ = _affected_records(data)
    for key in _RECORD_LIST_KEYS:
        if key in data:
            total = data.get("total", len(records))
            return f"Found {total} {key}."
    if records:
        return f"{intent} completed."
    return f"{intent} completed successfully."
