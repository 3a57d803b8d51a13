# Carik Bot
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Carik Bot.
#
# Carik Bot is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Tests for YAML config loading and environment overrides."""

from __future__ import annotations

import pytest

from carik.config import (
    DEFAULT_KIRO_MODELS,
    CarikConfig,
    apply_env_overrides,
    load_config,
    parse_config,
)
from carik.core.errors import ConfigError


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        """
bot:
  name: test-bot
  prefix: "!"
  owner_ids: [6504720757, "42"]
rate_limit:
  per_minute: 2
  per_hour: 30
telegram:
  enabled: true
  token: "123:ABC"
kiro:
  image: my-kiro:dev
  workspace: ~/ws
  default_model: sonnet
  prompt_timeout: 120
  run_args: ["-v", "/home/me/.kiro:/root/.kiro"]
llm:
  provider: openai
  temperature: 0.2
""",
        encoding="utf-8",
    )
    return path


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml", environ={})
        assert config.bot.prefix == "/"
        assert config.rate_limit.per_minute == 1
        assert config.rate_limit.per_hour == 20
        assert config.kiro.models == DEFAULT_KIRO_MODELS
        assert not config.telegram.enabled

    def test_values_from_file(self, config_file):
        config = load_config(config_file, environ={})
        assert config.bot.name == "test-bot"
        assert config.bot.prefix == "!"
        assert config.bot.owner_ids == ["6504720757", "42"]
        assert config.rate_limit.per_hour == 30
        assert config.telegram.token == "123:ABC"
        assert config.kiro.image == "my-kiro:dev"
        assert not config.kiro.workspace.startswith("~")
        assert config.kiro.default_model == "sonnet"
        assert config.kiro.prompt_timeout == 120
        assert config.kiro.run_args == ["-v", "/home/me/.kiro:/root/.kiro"]
        assert config.llm.resolved_base_url() == "https://api.openai.com/v1"
        assert config.llm.resolved_model() == "gpt-4o-mini"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_config(path, environ={}).bot.name == "carik-bot"

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("bot: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(path, environ={})

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            parse_config({"bot": "nope"})

    def test_bad_number(self):
        with pytest.raises(ConfigError):
            parse_config({"rate_limit": {"per_minute": "lots"}})


class TestValidation:
    def test_multi_char_prefix_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("bot:\n  prefix: '!!'\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="prefix"):
            load_config(path, environ={})

    def test_unknown_default_model_rejected(self):
        config = CarikConfig()
        config.kiro.default_model = "gpt-9"
        with pytest.raises(ConfigError):
            config.validate()

    def test_zero_rate_limit_rejected(self):
        config = CarikConfig()
        config.rate_limit.per_hour = 0
        with pytest.raises(ConfigError):
            config.validate()


class TestEnvOverrides:
    def test_bot_token_enables_telegram(self):
        config = apply_env_overrides(CarikConfig(), {"BOT_TOKEN": "999:XYZ"})
        assert config.telegram.enabled
        assert config.telegram.token == "999:XYZ"

    def test_owner_ids(self):
        config = apply_env_overrides(CarikConfig(), {"CARIK_OWNER_IDS": " 1, 2 ,,3"})
        assert config.bot.owner_ids == ["1", "2", "3"]

    def test_provider_specific_key(self):
        config = apply_env_overrides(CarikConfig(), {"GROQ_API_KEY": "gsk"})
        assert config.llm.api_key == "gsk"

    def test_claude_provider_key(self):
        config = CarikConfig()
        config.llm.provider = "claude"
        config = apply_env_overrides(config, {"CLAUDE_API_KEY": "sk-ant"})
        assert config.llm.api_key == "sk-ant"
        assert config.llm.resolved_base_url() == "https://api.anthropic.com/v1"
        assert config.llm.resolved_model() == "claude-3-haiku-20240307"

    def test_generic_key_wins(self):
        env = {"GROQ_API_KEY": "gsk", "LLM_API_KEY": "generic"}
        assert apply_env_overrides(CarikConfig(), env).llm.api_key == "generic"

    def test_bad_temperature_ignored(self):
        config = apply_env_overrides(CarikConfig(), {"LLM_TEMPERATURE": "hot"})
        assert config.llm.temperature == 0.7

    def test_env_prefix_validated(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yaml", environ={"BOT_PREFIX": "::"})

    def test_workspace(self, tmp_path):
        config = apply_env_overrides(CarikConfig(), {"KIRO_WORKSPACE": str(tmp_path)})
        assert config.kiro.workspace == str(tmp_path)
