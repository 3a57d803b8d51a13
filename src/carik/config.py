# Carik Bot
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Carik Bot.
#
# Carik Bot is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Bot configuration schema.

Config location: $CARIK_HOME/config.yaml (CARIK_HOME defaults to ~/.carik).

Example::

    bot:
      name: carik-bot
      prefix: "/"
      owner_ids: ["6504720757"]
    rate_limit:
      per_minute: 1
      per_hour: 20
    telegram:
      enabled: true
      token: "123:ABC"
    kiro:
      image: carik-kiro:latest
      workspace: ~/kiro-workspace
      default_model: auto
    llm:
      provider: groq
      model: llama-3.1-70b-versatile

Environment variables override the file: BOT_TOKEN, BOT_PREFIX,
CARIK_OWNER_IDS, LLM_API_KEY (or <PROVIDER>_API_KEY, e.g. CLAUDE_API_KEY),
LLM_SYSTEM_PROMPT, LLM_TEMPERATURE, KIRO_WORKSPACE.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from carik.core.errors import ConfigError

logger = logging.getLogger("carik.config")

# ---------------------------------------------------------------------------
# Default paths
# ---------------------------------------------------------------------------
_CARIK_HOME = Path(os.environ.get("CARIK_HOME", Path.home() / ".carik"))
DEFAULT_CONFIG_PATH = _CARIK_HOME / "config.yaml"
DEFAULT_DB_PATH = _CARIK_HOME / "carik.db"

# ---------------------------------------------------------------------------
# Kiro models exposed through /kiro-model. Keys are what users type, values
# are passed to the agent CLI's --model flag ("" = let the agent choose).
# ---------------------------------------------------------------------------
DEFAULT_KIRO_MODELS: dict[str, str] = {
    "auto": "",
    "sonnet": "claude-sonnet-4",
    "haiku": "claude-haiku-4.5",
    "opus": "claude-opus-4.1",
}

# ---------------------------------------------------------------------------
# Chat endpoints. "claude" speaks Anthropic's Messages API, the rest are
# OpenAI-compatible.
# ---------------------------------------------------------------------------
LLM_PROVIDERS: dict[str, dict[str, str]] = {
    "groq": {
        "base_url": "https://api.groq.com/openai/v1",
        "model": "llama-3.1-70b-versatile",
    },
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o-mini",
    },
    "minimax": {
        "base_url": "https://api.minimax.chat/v1",
        "model": "abab6.5s-chat",
    },
    "claude": {
        "base_url": "https://api.anthropic.com/v1",
        "model": "claude-3-haiku-20240307",
    },
}


@dataclass
class BotSettings:
    name: str = "carik-bot"
    prefix: str = "/"
    owner_ids: list[str] = field(default_factory=list)
    log_level: str = "INFO"
    max_response_length: int = 4000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BotSettings:
        return cls(
            name=str(data.get("name", "carik-bot")),
            prefix=str(data.get("prefix", "/")),
            owner_ids=[str(u) for u in data.get("owner_ids", []) or []],
            log_level=str(data.get("log_level", "INFO")),
            max_response_length=int(data.get("max_response_length", 4000)),
        )


@dataclass
class RateLimitSettings:
    """Sliding-window quotas for quota-charging commands."""

    per_minute: int = 1
    per_hour: int = 20

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RateLimitSettings:
        return cls(
            per_minute=int(data.get("per_minute", 1)),
            per_hour=int(data.get("per_hour", 20)),
        )


@dataclass
class TelegramSettings:
    enabled: bool = False
    token: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TelegramSettings:
        return cls(
            enabled=bool(data.get("enabled", False)),
            token=str(data.get("token", "") or ""),
        )


@dataclass
class KiroSettings:
    """Container and agent CLI settings for the Kiro session."""

    runtime: str = "docker"
    image: str = "carik-kiro:latest"
    container_name: str = "carik-kiro"
    workspace: str = str(_CARIK_HOME / "workspace")
    agent_binary: str = "kiro-cli"
    default_model: str = "auto"
    models: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_KIRO_MODELS))
    start_timeout: float = 60.0
    prompt_timeout: float = 600.0
    file_timeout: float = 30.0
    kill_timeout: float = 20.0
    run_args: list[str] = field(default_factory=list)  # Extra flags for `docker run`

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KiroSettings:
        models = data.get("models") or dict(DEFAULT_KIRO_MODELS)
        return cls(
            runtime=str(data.get("runtime", "docker")),
            image=str(data.get("image", "carik-kiro:latest")),
            container_name=str(data.get("container_name", "carik-kiro")),
            workspace=str(Path(str(data.get("workspace", _CARIK_HOME / "workspace"))).expanduser()),
            agent_binary=str(data.get("agent_binary", "kiro-cli")),
            default_model=str(data.get("default_model", "auto")),
            models={str(k): str(v or "") for k, v in models.items()},
            start_timeout=float(data.get("start_timeout", 60)),
            prompt_timeout=float(data.get("prompt_timeout", 600)),
            file_timeout=float(data.get("file_timeout", 30)),
            kill_timeout=float(data.get("kill_timeout", 20)),
            run_args=[str(a) for a in data.get("run_args", []) or []],
        )


@dataclass
class LLMSettings:
    provider: str = "groq"
    base_url: str = ""
    model: str = ""
    api_key: str = ""
    temperature: float = 0.7
    max_tokens: int = 1024
    system_prompt: str = "You are carik, a helpful AI assistant."
    history_limit: int = 10
    timeout: float = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LLMSettings:
        return cls(
            provider=str(data.get("provider", "groq")).lower(),
            base_url=str(data.get("base_url", "") or ""),
            model=str(data.get("model", "") or ""),
            api_key=str(data.get("api_key", "") or ""),
            temperature=float(data.get("temperature", 0.7)),
            max_tokens=int(data.get("max_tokens", 1024)),
            system_prompt=str(data.get("system_prompt", cls.system_prompt)),
            history_limit=int(data.get("history_limit", 10)),
            timeout=float(data.get("timeout", 60)),
        )

    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return LLM_PROVIDERS.get(self.provider, LLM_PROVIDERS["openai"])["base_url"]

    def resolved_model(self) -> str:
        if self.model:
            return self.model
        return LLM_PROVIDERS.get(self.provider, LLM_PROVIDERS["openai"])["model"]


@dataclass
class CarikConfig:
    """Full bot configuration."""

    bot: BotSettings = field(default_factory=BotSettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    telegram: TelegramSettings = field(default_factory=TelegramSettings)
    kiro: KiroSettings = field(default_factory=KiroSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    db_path: str = str(DEFAULT_DB_PATH)

    def validate(self) -> None:
        """Raise ConfigError for values the bot cannot run with."""
        if len(self.bot.prefix) != 1 or self.bot.prefix.isspace():
            raise ConfigError(f"bot.prefix must be a single character, got {self.bot.prefix!r}")
        if self.rate_limit.per_minute < 1 or self.rate_limit.per_hour < 1:
            raise ConfigError("rate_limit.per_minute and rate_limit.per_hour must be >= 1")
        if self.kiro.default_model not in self.kiro.models:
            raise ConfigError(
                f"kiro.default_model '{self.kiro.default_model}' is not one of "
                f"{sorted(self.kiro.models)}"
            )
        for name in ("start_timeout", "prompt_timeout", "file_timeout", "kill_timeout"):
            if getattr(self.kiro, name) <= 0:
                raise ConfigError(f"kiro.{name} must be positive")


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return value


def parse_config(raw: dict[str, Any]) -> CarikConfig:
    """Build a CarikConfig from an already-parsed YAML mapping."""
    try:
        config = CarikConfig(
            bot=BotSettings.from_dict(_section(raw, "bot")),
            rate_limit=RateLimitSettings.from_dict(_section(raw, "rate_limit")),
            telegram=TelegramSettings.from_dict(_section(raw, "telegram")),
            kiro=KiroSettings.from_dict(_section(raw, "kiro")),
            llm=LLMSettings.from_dict(_section(raw, "llm")),
            db_path=str(Path(str(raw.get("db_path", DEFAULT_DB_PATH))).expanduser()),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc
    return config


def apply_env_overrides(config: CarikConfig, environ: dict[str, str] | None = None) -> CarikConfig:
    """Overlay environment variables on top of the file config."""
    env = os.environ if environ is None else environ

    token = env.get("BOT_TOKEN")
    if token:
        config.telegram.token = token
        config.telegram.enabled = True

    prefix = env.get("BOT_PREFIX")
    if prefix:
        config.bot.prefix = prefix

    owners = env.get("CARIK_OWNER_IDS")
    if owners:
        config.bot.owner_ids = [o.strip() for o in owners.split(",") if o.strip()]

    api_key = env.get("LLM_API_KEY") or env.get(f"{config.llm.provider.upper()}_API_KEY")
    if api_key:
        config.llm.api_key = api_key

    system_prompt = env.get("LLM_SYSTEM_PROMPT")
    if system_prompt:
        config.llm.system_prompt = system_prompt

    temperature = env.get("LLM_TEMPERATURE")
    if temperature:
        try:
            config.llm.temperature = float(temperature)
        except ValueError:
            logger.warning("Ignoring LLM_TEMPERATURE=%r (not a number)", temperature)

    workspace = env.get("KIRO_WORKSPACE")
    if workspace:
        config.kiro.workspace = str(Path(workspace).expanduser())

    return config


def load_config(
    path: Path | str | None = None,
    environ: dict[str, str] | None = None,
) -> CarikConfig:
    """Load configuration from YAML, apply env overrides, validate.

    A missing file yields the defaults. An unreadable or malformed file
    raises ConfigError so the bot refuses to start half-configured.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.info("No config at %s -- using defaults", config_path)
        config = CarikConfig()
    else:
        try:
            raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"Failed to read config {config_path}: {exc}") from exc
        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Config {config_path} must be a mapping at the top level")
        config = parse_config(raw)
        logger.info("Loaded config from %s", config_path)

    apply_env_overrides(config, environ)
    config.validate()
    return config
