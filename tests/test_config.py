"""
StorePilot — Config Loader Tests

Tests:
  - base file loads and maps onto typed Settings
  - per-environment overlay merges over base
  - SP_SECTION__KEY env vars override both, values YAML-parsed
  - deep_merge replaces lists and recurses dicts
  - relative store dirs resolve against the repo root
"""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import support  # noqa: F401

from pilot.config import (
    DEFAULT_CONFIG_PATH,
    Settings,
    deep_merge,
    get_config_value,
    load_config,
    load_settings,
    settings_from_dict,
)

BASE = """
log_level: INFO
policy:
  confidence_threshold: 0.75
  high_risk_intents: [UPDATE_PRODUCT_PRICE, ARCHIVE_PRODUCT]
workflow:
  explanation_timeout_seconds: 10
"""

OVERLAY = """
log_level: DEBUG
policy:
  confidence_threshold: 0.9
"""


def _clean_env():
    """Environment without any SP_ variables."""
    return {k: v for k, v in os.environ.items() if not k.startswith("SP_")}


class TestDeepMerge(unittest.TestCase):

    def test_recurses_dicts(self):
        merged = deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        self.assertEqual(merged, {"a": {"x": 1, "y": 3}})

    def test_replaces_lists(self):
        self.assertEqual(deep_merge({"a": [1, 2]}, {"a": [3]}), {"a": [3]})

    def test_inputs_untouched(self):
        base = {"a": {"x": 1}}
        deep_merge(base, {"a": {"x": 2}})
        self.assertEqual(base, {"a": {"x": 1}})


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.base = Path(self.tmp.name) / "storepilot.yaml"
        self.base.write_text(BASE)
        (Path(self.tmp.name) / "staging.yaml").write_text(OVERLAY)

    def tearDown(self):
        self.tmp.cleanup()

    def test_base_only(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config(self.base)
        self.assertEqual(config["policy"]["confidence_threshold"], 0.75)
        self.assertEqual(config["_active_env"], "default")
        self.assertEqual(config["_config_source"], str(self.base))

    def test_overlay(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config(self.base, env="staging", config_dir=self.tmp.name)
        self.assertEqual(config["log_level"], "DEBUG")
        self.assertEqual(config["policy"]["confidence_threshold"], 0.9)
        self.assertEqual(config["policy"]["high_risk_intents"], ["UPDATE_PRODUCT_PRICE", "ARCHIVE_PRODUCT"])
        self.assertEqual(config["_active_env"], "staging")

    def test_overlay_from_env_var(self):
        env = {**_clean_env(), "SP_ENV": "staging", "SP_CONFIG_DIR": self.tmp.name}
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config(self.base)
        self.assertEqual(config["log_level"], "DEBUG")
        self.assertNotIn("env", config)
        self.assertNotIn("config_dir", config)

    def test_missing_overlay_ignored(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config(self.base, env="nowhere", config_dir=self.tmp.name)
        self.assertEqual(config["log_level"], "INFO")

    def test_env_overrides_win(self):
        env = {
            **_clean_env(),
            "SP_POLICY__CONFIDENCE_THRESHOLD": "0.6",
            "SP_POLICY__HIGH_RISK_INTENTS": "[CANCEL_ORDER]",
            "SP_WORKFLOW__CONFIRMATION_TTL_SECONDS": "null",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_config(self.base, env="staging", config_dir=self.tmp.name)
        self.assertEqual(config["policy"]["confidence_threshold"], 0.6)
        self.assertEqual(config["policy"]["high_risk_intents"], ["CANCEL_ORDER"])
        self.assertIsNone(config["workflow"]["confirmation_ttl_seconds"])

    def test_env_overrides_can_be_disabled(self):
        env = {**_clean_env(), "SP_LOG_LEVEL": "ERROR"}
        with mock.patch.dict(os.environ, env, clear=True):
            self.assertEqual(load_config(self.base, include_env_vars=False)["log_level"], "INFO")
            self.assertEqual(load_config(self.base)["log_level"], "ERROR")

    def test_missing_base_file(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            config = load_config(Path(self.tmp.name) / "absent.yaml")
        self.assertEqual(set(config), {"_active_env", "_config_source"})

    def test_get_config_value(self):
        config = {"policy": {"confidence_threshold": 0.8}}
        self.assertEqual(get_config_value("policy.confidence_threshold", config), 0.8)
        self.assertEqual(get_config_value("policy.nope", config, default=1), 1)
        self.assertEqual(get_config_value("policy.confidence_threshold.deeper", config, default="d"), "d")


class TestSettings(unittest.TestCase):

    def test_defaults(self):
        settings = Settings()
        self.assertEqual(settings.policy.confidence_threshold, 0.75)
        self.assertEqual(settings.policy.price_deviation_percent, 40.0)
        self.assertIn("UPDATE_PRODUCT_PRICE", settings.policy.high_risk_intents)
        self.assertEqual(settings.workflow.confirmation_ttl_seconds, 86400.0)
        self.assertEqual(settings.workflow.max_listed_records, 50)

    def test_shipped_config_loads(self):
        with mock.patch.dict(os.environ, _clean_env(), clear=True):
            settings = load_settings(DEFAULT_CONFIG_PATH)
        self.assertEqual(settings.store.collections, ["products", "orders", "promotions"])
        self.assertTrue(Path(settings.store.seed_dir).is_absolute())
        self.assertTrue((Path(settings.store.seed_dir) / "products.json").exists())

    def test_from_dict(self):
        settings = settings_from_dict({
            "policy": {"confidence_threshold": 0.5},
            "store": {"seed_dir": "/srv/seed", "working_dir": "relative/work"},
            "_active_env": "prod",
        })
        self.assertEqual(settings.policy.confidence_threshold, 0.5)
        self.assertEqual(settings.store.seed_dir, "/srv/seed")
        self.assertTrue(Path(settings.store.working_dir).is_absolute())
        self.assertTrue(settings.store.working_dir.endswith(os.path.join("relative", "work")))
        self.assertEqual(settings.env, "prod")

    def test_unknown_keys_ignored(self):
        with self.assertLogs("storepilot.config", level="WARNING") as logs:
            settings = settings_from_dict({"workflow": {"db_path": "x.db", "turbo": True}})
        self.assertEqual(settings.workflow.db_path, "x.db")
        self.assertIn("turbo", logs.output[0])


if __name__ == "__main__":
    unittest.main()
