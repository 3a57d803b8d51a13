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
Carik Bot -- Telegram Bridge (v0.3.0)

Telegram bot bridge on python-telegram-bot (async, long polling).

Setup:
    1. Message @BotFather on Telegram -> /newbot -> get the token
    2. Put it in config.yaml (telegram.token) or export BOT_TOKEN
    3. Add your Telegram user id to bot.owner_ids
    4. carik run
"""

from __future__ import annotations

import logging

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import Application, ContextTypes, MessageHandler, filters

from carik.bridges.base import BridgeMessage, MessagingBridge

logger = logging.getLogger("carik.bridges.telegram")

# Telegram rejects messages over 4096 characters
TELEGRAM_CHUNK = 4000


def split_message(text: str, size: int = TELEGRAM_CHUNK) -> list[str]:
    if not text:
        return [""]
    return [text[i:i + size] for i in range(0, len(text), size)]


class TelegramBridge(MessagingBridge):
    """Telegram bot bridge using python-telegram-bot (async)."""

    platform = "telegram"

    def __init__(self, token: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.token = token
        self._app: Application | None = None

    def build_app(self) -> Application:
        # concurrent_updates: one user's long /kiro call must not stall others
        app = Application.builder().token(self.token).concurrent_updates(True).build()
        app.add_handler(MessageHandler(filters.TEXT, self._on_message))
        return app

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not update.message or not update.message.text or not update.effective_user:
            return

        user = update.effective_user
        msg = BridgeMessage(
            platform=self.platform,
            user_id=str(user.id),
            chat_id=str(update.effective_chat.id),
            text=update.message.text,
            display_name=user.full_name or "",
            username=user.username or "",
            message_id=str(update.message.message_id),
        )
        await self.handle_inbound(msg)

    async def start(self):
        """Start the Telegram bot with long polling."""
        if not self.token:
            raise ValueError("No Telegram bot token configured (telegram.token or BOT_TOKEN)")

        self._app = self.build_app()
        await self._app.initialize()
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)

        self._running = True
        logger.info("Telegram bridge started (long polling)")

    async def stop(self):
        """Stop the Telegram bot."""
        if self._app:
            try:
                if self._app.updater and self._app.updater.running:
                    await self._app.updater.stop()
                if self._app.running:
                    await self._app.stop()
                await self._app.shutdown()
            except TelegramError as e:
                logger.warning("Error while stopping Telegram bridge: %s", e)
            self._app = None
        self._running = False
        logger.info("Telegram bridge stopped")

    async def send(self, chat_id: str, text: str, **kwargs):
        """Send a message to a Telegram chat, split into 4000-char chunks."""
        if not self._app or not self._app.bot:
            logger.warning("send() called before the Telegram bridge started")
            return

        for chunk in split_message(text):
            try:
                await self._app.bot.send_message(chat_id=int(chat_id), text=chunk)
            except TelegramError as e:
                logger.error("Failed to send to chat %s: %s", chat_id, e)
                if self._log:
                    self._log.error("Bridge", f"Telegram send failed: {e}", chat_id=chat_id)
                return
