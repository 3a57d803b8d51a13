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
Carik Bot -- Command Dispatcher (v0.3.0)

Parses ``/name args`` text, authorizes it through the AccessGate and runs
the bound handler. Every outcome, including denials and handler crashes,
comes back as a :class:`Response` so bridges only ever send text.

Flow:
  1. Parse prefix + name + argument string
  2. Unknown name -> UnknownCommandError reply
  3. AccessGate.authorize() -> role / quota denial reply
  4. Guest access request -> "awaiting approval" reply
  5. await handler(identity, args) -> reply text
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from carik.core.errors import (
    CarikError,
    DuplicateCommandError,
    HandlerFailedError,
    UnknownCommandError,
)
from carik.core.roles import Role, role_at_least
from carik.security.access_gate import AccessGate

logger = logging.getLogger("carik.commands.dispatcher")

Handler = Callable[[str, str], Awaitable[str]]

DEFAULT_PREFIX = "/"


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class Command:
    """A registered slash command."""

    name: str
    handler: Handler | None
    minimum_role: Role = Role.GUEST
    charges_quota: bool = False  # Consumes a rate-limit slot when allowed
    requests_access: bool = False  # Guests get a pending request instead
    concurrent: bool = False  # Bridges run it outside the per-user message queue
    description: str = ""
    usage: str = ""


@dataclass
class ParsedCommand:
    name: str
    args: str = ""


@dataclass
class Response:
    """What the bridge sends back to the user."""

    text: str
    ok: bool = True
    error: CarikError | None = None
    command: str = ""

    @classmethod
    def failure(cls, error: CarikError, command: str = "") -> Response:
        return cls(text=str(error), ok=False, error=error, command=command)


# =============================================================================
# DISPATCHER
# =============================================================================


class CommandDispatcher:
    """Static command registry plus the authorize-and-run pipeline."""

    def __init__(self, gate: AccessGate, prefix: str = DEFAULT_PREFIX, activity_log: Any | None = None):
        if len(prefix) != 1:
            raise ValueError(f"Command prefix must be one character, got {prefix!r}")
        self.gate = gate
        self.prefix = prefix
        self._commands: dict[str, Command] = {}
        self._log = activity_log

    # -- Registry ----------------------------------------------------------

    def register(self, command: Command) -> None:
        if command.name in self._commands:
            raise DuplicateCommandError(f"Command '{command.name}' is already registered")
        self._commands[command.name] = command

    def get(self, name: str) -> Command | None:
        return self._commands.get(name)

    @property
    def commands(self) -> list[Command]:
        return list(self._commands.values())

    def help_text(self, role: Role) -> str:
        """Commands visible to ``role``, in registration order."""
        lines = ["Available commands:"]
        for cmd in self._commands.values():
            if not role_at_least(role, cmd.minimum_role):
                continue
            usage = cmd.usage or f"{self.prefix}{cmd.name}"
            lines.append(f"  {usage} - {cmd.description}" if cmd.description else f"  {usage}")
        lines.append("")
        lines.append("Anything else you type goes to the chat assistant.")
        return "\n".join(lines)

    # -- Parsing -----------------------------------------------------------

    def is_command(self, text: str) -> bool:
        return text.lstrip().startswith(self.prefix)

    def parse(self, text: str) -> ParsedCommand | None:
        """Split ``/name args`` into its parts. Returns None for plain text."""
        stripped = text.strip()
        if not stripped.startswith(self.prefix):
            return None
        parts = stripped[len(self.prefix):].split(maxsplit=1)
        if not parts:
            return ParsedCommand(name="")
        name = parts[0]
        # Telegram group syntax: /kiro@carik_bot
        if "@" in name:
            name = name.split("@", 1)[0]
        args = parts[1].strip() if len(parts) > 1 else ""
        return ParsedCommand(name=name, args=args)

    # -- Dispatch ----------------------------------------------------------

    async def dispatch(self, identity: str, raw_text: str, username: str = "") -> Response:
        """Authorize and run one command. Never raises for user errors."""
        identity = str(identity)
        parsed = self.parse(raw_text)
        if parsed is None:
            raise ValueError("dispatch() called with text that is not a command")

        command = self._commands.get(parsed.name)
        if command is None:
            if self._log:
                self._log.command(parsed.name or "?", user_id=identity, allowed=False,
                                  reason="unknown")
            return Response.failure(UnknownCommandError(parsed.name, self.prefix), parsed.name)

        decision = self.gate.authorize(identity, command, username=username)
        if not decision.allowed:
            if self._log:
                self._log.command(command.name, user_id=identity, allowed=False,
                                  reason=decision.error.code if decision.error else "denied")
            return Response.failure(decision.error, command.name)

        if decision.access_requested:
            if self._log:
                self._log.command(command.name, user_id=identity, allowed=True,
                                  reason="guest_request")
            if decision.already_pending:
                text = "Your access request is already pending. The owner will review it."
            else:
                text = (
                    "Access request sent. The owner has been asked to approve "
                    f"id {identity}."
                )
            return Response(text=text, command=command.name)

        return await self._run(command, identity, parsed.args)

    async def _run(self, command: Command, identity: str, args: str) -> Response:
        start = time.monotonic()
        try:
            if command.handler is None:
                raise HandlerFailedError(f"{self.prefix}{command.name} has no handler")
            text = await command.handler(identity, args)
            response = Response(text=text or "Done.", command=command.name)
        except CarikError as exc:
            response = Response.failure(exc, command.name)
        except MemoryError:
            logger.critical("Out of memory while running /%s", command.name)
            raise
        except Exception as exc:
            logger.error("Handler /%s failed: %s", command.name, exc, exc_info=True)
            response = Response.failure(HandlerFailedError(str(exc)[:200] or type(exc).__name__),
                                        command.name)

        elapsed_ms = round((time.monotonic() - start) * 1000)
        logger.debug("/%s for %s -> ok=%s (%dms)", command.name, identity, response.ok, elapsed_ms)
        if self._log:
            self._log.command(command.name, user_id=identity, allowed=True,
                              ok=response.ok, latency_ms=elapsed_ms)
        return response
