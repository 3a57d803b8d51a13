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
"""
Carik Bot -- Application Wiring

build_application() turns a CarikConfig into a CarikApp holding every
long-lived component, then hands out the bridge to run:

    RoleStore + UserRateLimiter -> AccessGate -> CommandDispatcher
    SubprocessExecutor -> AgentSessionManager -> /kiro* commands
    ChatClient -> free text
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from carik.bridges.base import MessagingBridge
from carik.commands.basic import BasicCommands
from carik.commands.dispatcher import CommandDispatcher
from carik.commands.kiro import KiroCommands
from carik.config import CarikConfig
from carik.core.errors import ConfigError
from carik.core.logging import CarikLogger, get_logger
from carik.kiro.executor import ProcessExecutor, SubprocessExecutor
from carik.kiro.session import AgentSessionManager
from carik.llm.client import ChatClient
from carik.security.access_gate import AccessGate
from carik.security.rate_limiter import UserRateLimiter
from carik.security.role_store import RoleStore

logger = logging.getLogger("carik.app")


@dataclass
class CarikApp:
    config: CarikConfig
    activity_log: CarikLogger | None
    roles: RoleStore
    limiter: UserRateLimiter
    gate: AccessGate
    dispatcher: CommandDispatcher
    session: AgentSessionManager
    chat: ChatClient

    def _bridge_kwargs(self) -> dict:
        return {
            "dispatcher": self.dispatcher,
            "chat": self.chat,
            "activity_log": self.activity_log,
            "max_response_length": self.config.bot.max_response_length,
        }

    def telegram_bridge(self) -> MessagingBridge:
        from carik.bridges.telegram_bridge import TelegramBridge

        token = self.config.telegram.token
        if not token:
            raise ConfigError("Telegram needs a bot token: set telegram.token or BOT_TOKEN")
        return TelegramBridge(token, **self._bridge_kwargs())

    def console_bridge(self, identity: str | None = None) -> MessagingBridge:
        from carik.bridges.console_bridge import ConsoleBridge

        if identity is None:
            owners = self.config.bot.owner_ids
            identity = owners[0] if owners else "console"
        return ConsoleBridge(identity, **self._bridge_kwargs())

    async def shutdown(self, kill_agent: bool = False) -> None:
        """Release resources. The Kiro container is left running unless asked."""
        if kill_agent:
            await self.session.kill()
        logger.info("Carik application shut down")


def build_application(
    config: CarikConfig,
    executor: ProcessExecutor | None = None,
    activity_log: CarikLogger | None = None,
    chat: ChatClient | None = None,
) -> CarikApp:
    """Wire every component from ``config``."""
    roles = RoleStore(config.db_path)
    roles.ensure_owners(config.bot.owner_ids)
    if not config.bot.owner_ids:
        logger.warning("No bot.owner_ids configured; nobody can approve access requests")

    limiter = UserRateLimiter(
        per_minute=config.rate_limit.per_minute,
        per_hour=config.rate_limit.per_hour,
    )
    gate = AccessGate(roles, limiter, activity_log=activity_log)
    dispatcher = CommandDispatcher(gate, prefix=config.bot.prefix, activity_log=activity_log)

    if executor is None:
        executor = SubprocessExecutor()
        if not executor.is_available(config.kiro.runtime):
            logger.warning(
                "Container runtime '%s' not found on PATH; /kiro commands will fail",
                config.kiro.runtime,
            )

    session = AgentSessionManager(
        executor,
        config.kiro,
        activity_log=activity_log,
    )
    chat = chat or ChatClient(config.llm)

    BasicCommands(dispatcher, roles, chat=chat, bot_name=config.bot.name).register()
    KiroCommands(dispatcher, session).register()
    logger.info("Registered %d commands", len(dispatcher.commands))

    return CarikApp(
        config=config,
        activity_log=activity_log,
        roles=roles,
        limiter=limiter,
        gate=gate,
        dispatcher=dispatcher,
        session=session,
        chat=chat,
    )


def build_default_application(config: CarikConfig) -> CarikApp:
    """build_application() with the live file logger attached."""
    return build_application(config, activity_log=get_logger())
