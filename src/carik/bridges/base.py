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
Carik Bot -- Messaging Bridge Base (v0.3.0)

Abstract base class for all messaging bridges. Each platform adapter
(Telegram, console) implements start/stop/send and feeds inbound text to
:meth:`MessagingBridge.handle_inbound`.

Message flow:
  1. Serialize per identity (one message at a time per user, in order);
     commands flagged ``concurrent`` skip the queue
  2. Prefixed text -> CommandDispatcher (auth + quota + handler)
  3. Anything else -> AccessGate ("chat" pseudo-command) -> ChatClient
  4. Truncate to the platform limit and send back
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from carik.commands.dispatcher import Command, CommandDispatcher
from carik.core.errors import CarikError
from carik.core.roles import Role

if TYPE_CHECKING:
    from carik.llm.client import ChatClient

logger = logging.getLogger("carik.bridges.base")

# Free text is authorized like a user-level, quota-charging command
CHAT_COMMAND = Command(
    name="chat",
    handler=None,
    minimum_role=Role.USER,
    charges_quota=True,
    description="Free-form chat",
)

TRUNCATION_NOTE = "\n\n... (truncated)"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class BridgeMessage:
    """An inbound message from a messaging platform."""

    platform: str
    user_id: str
    chat_id: str
    text: str
    display_name: str = ""
    username: str = ""
    timestamp: str = ""
    message_id: str = ""

    def __post_init__(self):
        self.user_id = str(self.user_id)
        self.chat_id = str(self.chat_id)
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()


# =============================================================================
# ABSTRACT BRIDGE
# =============================================================================


class MessagingBridge(ABC):
    """
    Abstract base class for messaging platform bridges.

    Each platform adapter must implement:
      - start()  -- connect to the platform and start listening
      - stop()   -- disconnect gracefully
      - send()   -- send a message to a chat
    """

    platform = "base"

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        chat: ChatClient | None = None,
        activity_log: Any | None = None,
        max_response_length: int = 4000,
    ):
        self.dispatcher = dispatcher
        self.chat = chat
        self.max_response_length = max_response_length
        self._log = activity_log
        self._running = False
        self._user_locks: dict[str, asyncio.Lock] = {}
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    async def serve(self):
        """Start the bridge and block until request_stop() is called."""
        self._stop_event.clear()
        await self.start()
        if self._log:
            self._log.bridge_start(self.platform)
        try:
            await self._stop_event.wait()
        finally:
            await self.stop()
            if self._log:
                self._log.bridge_stop(self.platform)

    def request_stop(self) -> None:
        self._stop_event.set()

    # =========================================================================
    # ABSTRACT METHODS -- Platform adapters implement these
    # =========================================================================

    @abstractmethod
    async def start(self):
        """Connect to the platform and begin listening for messages."""
        ...

    @abstractmethod
    async def stop(self):
        """Disconnect from the platform gracefully."""
        ...

    @abstractmethod
    async def send(self, chat_id: str, text: str, **kwargs):
        """Send a text message to a specific chat."""
        ...

    # =========================================================================
    # MESSAGE HANDLING -- Common logic for all platforms
    # =========================================================================

    def _lock_for(self, identity: str) -> asyncio.Lock:
        lock = self._user_locks.get(identity)
        if lock is None:
            lock = self._user_locks[identity] = asyncio.Lock()
        return lock

    async def handle_inbound(self, message: BridgeMessage) -> str | None:
        """
        Process an inbound message and send the reply.

        Messages from the same identity are handled strictly in arrival
        order; different identities run concurrently. Returns the text that
        was sent, or None for empty input.
        """
        text = message.text.strip()
        if not text:
            return None

        if self._log:
            self._log.info("Bridge", f"Inbound from {self.platform}",
                           user_id=message.user_id, chat_id=message.chat_id)

        if self._bypasses_queue(text):
            reply = self.truncate(await self._process(message, text))
            await self.send(message.chat_id, reply)
            return reply

        async with self._lock_for(message.user_id):
            reply = await self._process(message, text)
            reply = self.truncate(reply)
            await self.send(message.chat_id, reply)
        return reply

    def _bypasses_queue(self, text: str) -> bool:
        """Concurrent commands (status, log, kill) must not wait behind a running prompt."""
        parsed = self.dispatcher.parse(text)
        if parsed is None:
            return False
        command = self.dispatcher.get(parsed.name)
        return command is not None and command.concurrent

    async def _process(self, message: BridgeMessage, text: str) -> str:
        username = message.username or message.display_name
        if self.dispatcher.is_command(text):
            response = await self.dispatcher.dispatch(message.user_id, text, username=username)
            return response.text
        return await self._chat(message, text, username)

    async def _chat(self, message: BridgeMessage, text: str, username: str) -> str:
        decision = self.dispatcher.gate.authorize(message.user_id, CHAT_COMMAND, username=username)
        if not decision.allowed:
            return str(decision.error)
        if self.chat is None:
            return f"Send {self.dispatcher.prefix}help to see the available commands."

        try:
            return await self.chat.reply(message.user_id, text)
        except CarikError as e:
            return str(e)
        except MemoryError:
            raise
        except Exception as e:
            logger.error("Chat failed for %s: %s", message.user_id, e, exc_info=True)
            if self._log:
                self._log.error("Bridge", f"Chat failed: {e}",
                                user_id=message.user_id, platform=self.platform)
            return f"Error: {str(e)[:200]}"

    def truncate(self, text: str) -> str:
        """Clip a reply to the platform message limit."""
        if len(text) <= self.max_response_length:
            return text
        keep = max(0, self.max_response_length - len(TRUNCATION_NOTE))
        return text[:keep] + TRUNCATION_NOTE
