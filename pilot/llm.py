"""
StorePilot — Language Collaborators

The orchestrator talks to two opaque text-in/text-out collaborators:

  IntentExtractor.extract(message, tools) -> str   raw JSON text
  ExplanationGenerator.explain(prompt) -> str      free text

Any object with those methods works. The LangChain-backed defaults
below wrap a BaseChatModel built by `create_llm`, the single point of
chat-model construction.

Configuration (in priority order):
  1. Explicit `provider` argument to create_llm()
  2. SP_LLM__PROVIDER via Settings.llm.provider
  3. Auto-detect from API key env vars

Supported providers:
  openai   — OpenAI (langchain-openai)
  google   — Google Gemini (langchain-google-genai)
  ollama   — local Ollama server (langchain-ollama)

Provider packages are imported lazily so only the one in use needs
to be installed.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Protocol

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from pilot.errors import ExplanationError, ExtractionError
from pilot.prompts import build_planner_prompt
from pilot.state import Plan
from pilot.tools import ToolRegistry

logger = logging.getLogger("storepilot.llm")


# ═══════════════════════════════════════════════════════════════════
# Collaborator interfaces
# ═══════════════════════════════════════════════════════════════════

class IntentExtractor(Protocol):
    def extract(self, message: str, tools: ToolRegistry | None = None) -> str: ...


class ExplanationGenerator(Protocol):
    def explain(self, prompt: str) -> str: ...


# ═══════════════════════════════════════════════════════════════════
# Provider factory
# ═══════════════════════════════════════════════════════════════════

_ALIASES: dict[str, dict[str, str]] = {
    "default": {
        "openai": "gpt-4o-mini",
        "google": "gemini-2.0-flash",
        "ollama": "llama3.1",
    },
    "strong": {
        "openai": "gpt-4o",
        "google": "gemini-2.5-pro",
        "ollama": "llama3.1:70b",
    },
}


def detect_provider() -> str:
    explicit = os.environ.get("LLM_PROVIDER", "").lower().strip()
    if explicit:
        return explicit
    if os.environ.get("OPENAI_API_KEY"):
        return "openai"
    if os.environ.get("GOOGLE_API_KEY"):
        return "google"
    if os.environ.get("OLLAMA_HOST"):
        return "ollama"
    raise EnvironmentError(
        "No LLM provider detected. Set one of:\n"
        "  LLM_PROVIDER=openai|google|ollama\n"
        "  SP_LLM__PROVIDER=...\n"
        "  OPENAI_API_KEY=... / GOOGLE_API_KEY=... / OLLAMA_HOST=..."
    )


def resolve_model(model: str, provider: str) -> str:
    """Map a logical alias ("default", "strong") to a provider model id; pass others through."""
    if model in _ALIASES and provider in _ALIASES[model]:
        return _ALIASES[model][provider]
    return model


def _create_openai(model: str, temperature: float, **kwargs) -> BaseChatModel:
    from langchain_openai import ChatOpenAI
    return ChatOpenAI(model=model, temperature=temperature, **kwargs)


def _create_google(model: str, temperature: float, **kwargs) -> BaseChatModel:
    from langchain_google_genai import ChatGoogleGenerativeAI
    return ChatGoogleGenerativeAI(model=model, temperature=temperature, **kwargs)


def _create_ollama(model: str, temperature: float, **kwargs) -> BaseChatModel:
    from langchain_ollama import ChatOllama
    base_url = os.environ.get("OLLAMA_HOST")
    if base_url and "base_url" not in kwargs:
        kwargs["base_url"] = base_url
    return ChatOllama(model=model, temperature=temperature, **kwargs)


_FACTORIES = {
    "openai": _create_openai,
    "google": _create_google,
    "ollama": _create_ollama,
}


def create_llm(
    model: str = "default",
    temperature: float = 0.1,
    provider: str | None = None,
    **kwargs,
) -> BaseChatModel:
    """Build a chat model. Every other module gets its LLM from here."""
    provider = (provider or detect_provider()).lower().strip()
    if provider not in _FACTORIES:
        raise ValueError(
            f"Unknown provider '{provider}'. "
            f"Supported: {', '.join(_FACTORIES.keys())}"
        )
    resolved = resolve_model(model, provider)
    logger.info("Creating %s chat model %s", provider, resolved)
    return _FACTORIES[provider](resolved, temperature, **kwargs)


# ═══════════════════════════════════════════════════════════════════
# Plan parsing
# ═══════════════════════════════════════════════════════════════════

def extract_json(text: str) -> Any:
    """Pull the first JSON object out of model output, tolerating code fences and chatter."""
    fenced = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    start = text.find("{")
    if start == -1:
        raise ValueError(f"No JSON object found in response: {text[:200]}")

    depth, in_string, escape = 0, False, False
    for i in range(start, len(text)):
        c = text[i]
        if escape:
            escape = False
            continue
        if c == "\\" and in_string:
            escape = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return json.loads(text[start:i + 1])
    raise ValueError(f"Unterminated JSON object: {text[start:start + 200]}")


def parse_plan(raw: str | None) -> Plan:
    """
    Parse extractor output into a Plan.

    Empty or unparseable output raises ExtractionError. A parsed object
    without an intent still yields a Plan; the validation stage rejects
    it as structurally invalid.
    """
    if raw is None or not raw.strip():
        raise ExtractionError("Intent extractor returned an empty response", raw=raw or "")
    try:
        parsed = extract_json(raw)
    except (ValueError, json.JSONDecodeError) as e:
        raise ExtractionError(f"Could not parse intent extractor output: {e}", raw=raw) from e
    if not isinstance(parsed, dict):
        raise ExtractionError("Intent extractor output is not a JSON object", raw=raw)

    entities = parsed.get("entities") or {}
    if not isinstance(entities, dict):
        raise ExtractionError("Plan entities must be a JSON object", raw=raw)
    try:
        confidence = float(parsed.get("confidence", 0.0))
    except (TypeError, ValueError) as e:
        raise ExtractionError(f"Plan confidence is not a number: {parsed.get('confidence')!r}", raw=raw) from e

    return Plan(
        intent=str(parsed.get("intent") or "").strip().upper(),
        entities=entities,
        confidence=min(1.0, max(0.0, confidence)),
    )


# ═══════════════════════════════════════════════════════════════════
# LangChain-backed collaborators
# ═══════════════════════════════════════════════════════════════════

def _content(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        return "".join(part if isinstance(part, str) else part.get("text", "") for part in content)
    return str(content or "")


class LLMIntentExtractor:
    """
    Asks the chat model for a plan. The model may first request up to
    max_tool_rounds read-only lookups with {"tool": ..., "args": {...}};
    each result is fed back before the next call.
    """

    def __init__(self, llm: BaseChatModel, max_tool_rounds: int = 3):
        self.llm = llm
        self.max_tool_rounds = max_tool_rounds

    def extract(self, message: str, tools: ToolRegistry | None = None) -> str:
        describe = tools.describe() if tools is not None else ""
        messages: list[Any] = [
            SystemMessage(content=build_planner_prompt(describe)),
            HumanMessage(content=message),
        ]

        rounds = 0
        while True:
            text = _content(self.llm.invoke(messages))
            request = self._tool_request(text)
            if request is None or tools is None or rounds >= self.max_tool_rounds:
                return text

            rounds += 1
            name, args = request
            result = tools.call(name, args)
            logger.debug("Extractor tool call %s -> %s", name, result.status)
            messages.append(AIMessage(content=text))
            messages.append(HumanMessage(
                content=f"Tool result for {name}:\n{json.dumps(result.to_dict(), default=str)}"
            ))

    @staticmethod
    def _tool_request(text: str) -> tuple[str, dict[str, Any]] | None:
        try:
            parsed = extract_json(text)
        except (ValueError, json.JSONDecodeError):
            return None
        if isinstance(parsed, dict) and parsed.get("tool") and "intent" not in parsed:
            args = parsed.get("args")
            return str(parsed["tool"]), args if isinstance(args, dict) else {}
        return None


class LLMExplanationGenerator:
    def __init__(self, llm: BaseChatModel):
        self.llm = llm

    def explain(self, prompt: str) -> str:
        text = _content(self.llm.invoke([HumanMessage(content=prompt)])).strip()
        if not text:
            raise ExplanationError("Explanation generator returned an empty response")
        return text
