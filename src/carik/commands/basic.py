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
Carik Bot -- Built-in Commands

General commands that do not touch the Kiro container: help, about, ping,
quote, clear, plus the guest onboarding flow (/connect, /approve, /users).
"""

from __future__ import annotations

import logging
import random
import time
from typing import TYPE_CHECKING

from carik import __version__
from carik.commands.dispatcher import Command, CommandDispatcher
from carik.core.errors import UsageError
from carik.core.roles import Role
from carik.security.role_store import RoleStore

if TYPE_CHECKING:
    from carik.llm.client import ChatClient

logger = logging.getLogger("carik.commands.basic")

QUOTES = [
    ("Talk is cheap. Show me the code.", "Linus Torvalds"),
    ("Programs must be written for people to read.", "Harold Abelson"),
    ("Simplicity is prerequisite for reliability.", "Edsger W. Dijkstra"),
    ("Make it work, make it right, make it fast.", "Kent Beck"),
    ("First, solve the problem. Then, write the code.", "John Johnson"),
    ("Premature optimization is the root of all evil.", "Donald Knuth"),
    ("Errors should never pass silently.", "Tim Peters"),
    ("Deleted code is debugged code.", "Jeff Sickel"),
]


class BasicCommands:
    """Handlers for the general-purpose command set."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        roles: RoleStore,
        chat: ChatClient | None = None,
        bot_name: str = "carik-bot",
        rng: random.Random | None = None,
    ):
        self.dispatcher = dispatcher
        self.roles = roles
        self.chat = chat
        self.bot_name = bot_name
        self._rng = rng or random.Random()
        self._started = time.monotonic()

    def register(self) -> None:
        p = self.dispatcher.prefix
        for command in (
            Command("help", self.help, description="Show available commands",
                    usage=f"{p}help [command]"),
            Command("about", self.about, description="About this bot"),
            Command("ping", self.ping, description="Check the bot is alive"),
            Command("quote", self.quote, description="A random programming quote"),
            Command("clear", self.clear, description="Forget the chat history"),
            Command("connect", self.connect, requests_access=True,
                    description="Request access to the bot"),
            Command("approve", self.approve, minimum_role=Role.OWNER,
                    description="Approve a pending access request", usage=f"{p}approve <id>"),
            Command("users", self.users, minimum_role=Role.ADMIN,
                    description="List users and pending requests"),
        ):
            self.dispatcher.register(command)

    # -- Handlers ------------------------------------------------------------

    async def help(self, identity: str, args: str) -> str:
        name = args.strip().lstrip(self.dispatcher.prefix)
        if not name:
            return self.dispatcher.help_text(self.roles.get_role(identity))
        cmd = self.dispatcher.get(name)
        if cmd is None:
            return f"Command {self.dispatcher.prefix}{name} not found"
        text = f"{self.dispatcher.prefix}{cmd.name} - {cmd.description or 'No description'}"
        if cmd.usage:
            text += f"\nUsage: {cmd.usage}"
        text += f"\nMinimum role: {cmd.minimum_role.label}"
        return text

    async def about(self, identity: str, args: str) -> str:
        return (
            f"{self.bot_name} v{__version__}\n"
            "Chat assistant with a Kiro coding agent in a sandboxed container.\n"
            f"Send {self.dispatcher.prefix}help to see what you can do."
        )

    async def ping(self, identity: str, args: str) -> str:
        uptime = int(time.monotonic() - self._started)
        hours, rest = divmod(uptime, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"pong (up {hours}h {minutes}m {seconds}s)"

    async def quote(self, identity: str, args: str) -> str:
        text, author = self._rng.choice(QUOTES)
        return f'"{text}"\n  - {author}'

    async def clear(self, identity: str, args: str) -> str:
        if self.chat is None:
            return "Nothing to clear."
        if self.chat.clear(identity):
            return "Chat history cleared."
        return "Chat history is already empty."

    async def connect(self, identity: str, args: str) -> str:
        # Guests never get here; the gate answers them with a pending request
        role = self.roles.get_role(identity)
        return f"You already have access (role: {role.label})."

    async def approve(self, identity: str, args: str) -> str:
        target = args.strip()
        if not target:
            raise UsageError(f"{self.dispatcher.prefix}approve <id>")
        self.roles.approve_guest(target)
        logger.info("Owner %s approved %s", identity, target)
        return f"Approved {target}. They now have the 'user' role."

    async def users(self, identity: str, args: str) -> str:
        lines = ["Users:"]
        users = self.roles.list_users()
        if not users:
            lines.append("  (none)")
        for user in users:
            name = f" @{user.username}" if user.username else ""
            lines.append(f"  {user.identity}{name} - {user.role.label}")

        pending = self.roles.list_pending()
        if pending:
            lines.append("")
            lines.append(f"Pending requests ({len(pending)}):")
            for req in pending:
                name = f" @{req.username}" if req.username else ""
                lines.append(f"  {req.identity}{name} - since {req.requested_at[:16].replace('T', ' ')} UTC")
            lines.append(f"Approve with {self.dispatcher.prefix}approve <id>")
        return "\n".join(lines)
