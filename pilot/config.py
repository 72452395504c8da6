"""
StorePilot — Environment Config Loader

Three-tier configuration loading:
  1. Base YAML file (config/storepilot.yaml)
  2. Per-environment overlay files (config/{SP_ENV}.yaml merged over base)
  3. Environment variable overrides (SP_ prefixed)

Usage:
    from pilot.config import load_settings, get_config_value

    settings = load_settings()
    settings.policy.confidence_threshold   # 0.75

    # Raw merged dict access
    ttl = get_config_value("store.cache_ttl_seconds", default=1.0)

Environment variables:
    SP_ENV            — active profile (dev, test, prod)
    SP_CONFIG_PATH    — base config file (default: config/storepilot.yaml)
    SP_CONFIG_DIR     — directory for overlay files (default: config/)
    SP_SECTION__KEY   — nested overrides, sections split on double
                        underscore (e.g. SP_POLICY__CONFIDENCE_THRESHOLD=0.8)
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("storepilot.config")

_REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = _REPO_ROOT / "config" / "storepilot.yaml"


# ═══════════════════════════════════════════════════════════════════
# Deep Merge
# ═══════════════════════════════════════════════════════════════════

def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: Any):
    """Set a nested dict value from a list of keys."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


# ═══════════════════════════════════════════════════════════════════
# Tier 2: Overlay Files
# ═══════════════════════════════════════════════════════════════════

def _load_overlay_file(
    base_path: str | Path,
    env: str = "",
    config_dir: str = "",
) -> dict[str, Any]:
    """
    Load per-environment overlay file.
    Looks for {config_dir}/{env}.yaml, then next to the base file.
    Returns empty dict if not found.
    """
    env = env or os.environ.get("SP_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("SP_CONFIG_DIR", "config")

    candidates = [
        Path(config_dir) / f"{env}.yaml",
        Path(config_dir) / f"{env}.yml",
        Path(base_path).parent / f"{env}.yaml",
    ]

    for path in candidates:
        if path.exists():
            try:
                with open(path) as f:
                    overlay = yaml.safe_load(f) or {}
                logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
                return overlay
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load overlay %s: %s", path, e)

    logger.debug("No config overlay found for env=%s", env)
    return {}


# ═══════════════════════════════════════════════════════════════════
# Tier 3: Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

def _load_env_overrides(prefix: str = "SP_") -> dict[str, Any]:
    """
    Load SP_ prefixed environment variables as config overrides.

    Naming convention:
      SP_SECTION__KEY=value → {"section": {"key": value}}
      SP_KEY=value          → {"key": value}

    Values are auto-parsed (numbers, booleans, lists) via YAML.
    SP_ENV, SP_CONFIG_DIR and SP_CONFIG_PATH are meta config and excluded.
    """
    excluded = {"SP_ENV", "SP_CONFIG_DIR", "SP_CONFIG_PATH"}
    overrides: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in excluded:
            continue

        path = [p for p in key[len(prefix):].lower().split("__") if p]
        if not path:
            continue

        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError:
            parsed = value

        _set_nested(overrides, path, parsed)

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


# ═══════════════════════════════════════════════════════════════════
# Main Loader
# ═══════════════════════════════════════════════════════════════════

def load_config(
    base_path: str | Path | None = None,
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging.

    Priority (highest wins):
      1. Environment variable overrides (SP_*)
      2. Per-environment overlay file (config/{env}.yaml)
      3. Base config file (config/storepilot.yaml)

    Returns:
        Merged configuration dict
    """
    base_path = Path(base_path or os.environ.get("SP_CONFIG_PATH") or DEFAULT_CONFIG_PATH)

    config: dict[str, Any] = {}
    if base_path.exists():
        with open(base_path) as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(base_path, env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("SP_ENV", "default")
    config["_config_source"] = str(base_path)

    return config


def get_config_value(
    path: str,
    config: dict[str, Any] | None = None,
    default: Any = None,
) -> Any:
    """
    Get a nested config value by dotted path.

    Example:
        get_config_value("policy.confidence_threshold", cfg, 0.75)
    """
    if config is None:
        config = load_config()

    current: Any = config
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


# ═══════════════════════════════════════════════════════════════════
# Typed settings
# ═══════════════════════════════════════════════════════════════════

DEFAULT_HIGH_RISK_INTENTS = [
    "UPDATE_PRODUCT_PRICE",
    "ARCHIVE_PRODUCT",
    "REFUND_ORDER",
    "INVENTORY_RESET",
]


@dataclass
class PolicySettings:
    confidence_threshold: float = 0.75
    price_deviation_percent: float = 40.0
    risk_score_threshold: float = 0.6
    high_risk_intents: list[str] = field(default_factory=lambda: list(DEFAULT_HIGH_RISK_INTENTS))


@dataclass
class StoreSettings:
    seed_dir: str = str(_REPO_ROOT / "data" / "seed")
    working_dir: str = str(_REPO_ROOT / "data" / "working")
    mode: str = "working"          # seed | working
    cache_ttl_seconds: float = 1.0
    collections: list[str] = field(default_factory=lambda: ["products", "orders", "promotions"])


@dataclass
class WorkflowSettings:
    db_path: str = "storepilot.db"
    explanation_timeout_seconds: float = 10.0
    confirmation_ttl_seconds: float | None = 86400.0
    max_listed_records: int = 50


@dataclass
class LLMSettings:
    provider: str = ""
    model: str = "default"
    temperature: float = 0.1
    max_tool_rounds: int = 3


@dataclass
class Settings:
    policy: PolicySettings = field(default_factory=PolicySettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    workflow: WorkflowSettings = field(default_factory=WorkflowSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    log_level: str = "INFO"
    env: str = "default"


def _section(cls, raw: Any):
    """Build a settings dataclass from a dict, ignoring unknown keys."""
    if not isinstance(raw, dict):
        return cls()
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, unknown)
    return cls(**known)


def settings_from_dict(config: dict[str, Any]) -> Settings:
    settings = Settings(
        policy=_section(PolicySettings, config.get("policy")),
        store=_section(StoreSettings, config.get("store")),
        workflow=_section(WorkflowSettings, config.get("workflow")),
        llm=_section(LLMSettings, config.get("llm")),
        log_level=str(config.get("log_level", "INFO")),
        env=str(config.get("_active_env", "default")),
    )
    # Relative data dirs resolve against the repo root, not cwd
    for attr in ("seed_dir", "working_dir"):
        p = Path(getattr(settings.store, attr))
        if not p.is_absolute():
            setattr(settings.store, attr, str(_REPO_ROOT / p))
    return settings


def load_settings(
    base_path: str | Path | None = None,
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> Settings:
    """Load the merged config and return typed Settings."""
    return settings_from_dict(load_config(
        base_path=base_path, env=env, config_dir=config_dir,
        include_env_vars=include_env_vars,
    ))
