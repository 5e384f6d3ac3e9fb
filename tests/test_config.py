"""Tests for configuration loading and validation."""

from __future__ import annotations

import tempfile
from pathlib import Path
import unittest

from handybot.config import DEFAULT_CONFIG, load_config


class ConfigTests(unittest.TestCase):
    """Validate config merge and fallback behavior."""

    def _load(self, text: str | None) -> dict:
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = Path(temp_dir) / "config.toml"
            if text is not None:
                config_path.write_text(text.strip(), encoding="utf-8")
            return load_config(config_path=config_path)

    def test_missing_config_uses_defaults(self) -> None:
        config = self._load(None)
        self.assertEqual(config, DEFAULT_CONFIG)
        self.assertEqual(
            config["anthropic"]["endpoint"], "https://api.anthropic.com/v1/messages"
        )
        self.assertEqual(config["anthropic"]["model"], "claude-3-5-sonnet-20241022")
        self.assertEqual(config["anthropic"]["max_tokens"], 4096)
        self.assertEqual(config["anthropic"]["temperature"], 0.7)
        self.assertIsNone(config["anthropic"]["timeout_seconds"])
        self.assertEqual(config["storage"]["jpeg_quality"], 0.8)

    def test_partial_config_overrides_selected_values(self) -> None:
        config = self._load(
            """
[anthropic]
model = "claude-3-haiku-20240307"
timeout_seconds = 45

[storage]
projects_path = "/tmp/handybot/projects.json"
            """
        )
        self.assertEqual(config["anthropic"]["model"], "claude-3-haiku-20240307")
        self.assertEqual(config["anthropic"]["timeout_seconds"], 45.0)
        self.assertEqual(
            config["storage"]["projects_path"], "/tmp/handybot/projects.json"
        )
        self.assertEqual(config["app"]["title"], DEFAULT_CONFIG["app"]["title"])
        self.assertEqual(
            config["storage"]["secrets_path"], DEFAULT_CONFIG["storage"]["secrets_path"]
        )

    def test_zero_timeout_means_no_timeout(self) -> None:
        config = self._load("[anthropic]\ntimeout_seconds = 0")
        self.assertIsNone(config["anthropic"]["timeout_seconds"])

    def test_invalid_values_fallback_to_defaults(self) -> None:
        config = self._load(
            """
[anthropic]
temperature = 3.5
max_tokens = 0

[logging]
level = "chatty"
            """
        )
        self.assertEqual(config, DEFAULT_CONFIG)

    def test_plain_http_endpoint_is_rejected(self) -> None:
        config = self._load('[anthropic]\nendpoint = "http://api.anthropic.com/v1"')
        self.assertEqual(
            config["anthropic"]["endpoint"], DEFAULT_CONFIG["anthropic"]["endpoint"]
        )

    def test_unparseable_toml_uses_defaults(self) -> None:
        config = self._load("[anthropic\nmodel = ")
        self.assertEqual(config, DEFAULT_CONFIG)


if __name__ == "__main__":
    unittest.main()
