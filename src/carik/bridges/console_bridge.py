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
Carik Bot -- Console Bridge

Local development bridge: reads lines from stdin, prints replies to stdout.
Every line is sent as one identity (the first configured owner by default).
Type /quit or send EOF (Ctrl-D) to stop.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import TextIO

from carik.bridges.base import BridgeMessage, MessagingBridge

logger = logging.getLogger("carik.bridges.console")

QUIT_COMMANDS = ("/quit", "/exit")


class ConsoleBridge(MessagingBridge):
    """stdin/stdout bridge for running the bot without Telegram."""

    platform = "console"

    def __init__(
        self,
        identity: str,
        *args,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        prompt: str = "> ",
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.identity = str(identity)
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self.prompt = prompt
        self._reader: asyncio.Task | None = None

    async def start(self):
        self._running = True
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("Console bridge started as identity %s", self.identity)

    async def stop(self):
        self._running = False
        if self._reader and not self._reader.done() and self._reader is not asyncio.current_task():
            self._reader.cancel()
        self._reader = None

    async def send(self, chat_id: str, text: str, **kwargs):
        self._stdout.write(f"[BOT] {text}\n")
        self._stdout.flush()

    def _readline(self) -> str:
        if self.prompt:
            self._stdout.write(self.prompt)
            self._stdout.flush()
        return self._stdin.readline()

    async def _read_loop(self):
        loop = asyncio.get_running_loop()
        while self._running:
            line = await loop.run_in_executor(None, self._readline)
            if not line:
                break  # EOF
            text = line.strip()
            if text.lower() in QUIT_COMMANDS:
                break
            if not text:
                continue
            await self.handle_inbound(BridgeMessage(
                platform=self.platform,
                user_id=self.identity,
                chat_id="console",
                text=text,
                username="console",
            ))
        self.request_stop()
