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
Carik Bot -- Kiro Commands (v0.3.0)

Thin handlers that translate chat commands into AgentSessionManager calls.
Session errors (busy, timeout, path escape, ...) are CarikErrors and reach
the user through the dispatcher unchanged.
"""

from __future__ import annotations

import time
from collections.abc import Callable

from carik.commands.dispatcher import Command, CommandDispatcher
from carik.core.errors import UsageError
from carik.core.roles import Role
from carik.kiro.session import AgentSessionManager, SessionState, SessionStatus
from carik.security.rate_limiter import WINDOW_HOUR, WINDOW_MINUTE


def _format_age(seconds: float) -> str:
    seconds = int(max(0, seconds))
    if seconds < 60:
        return f"{seconds}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m ago"


class KiroCommands:
    """/kiro* command set bound to one AgentSessionManager."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        session: AgentSessionManager,
        clock: Callable[[], float] = time.time,
    ):
        self.dispatcher = dispatcher
        self.session = session
        self._clock = clock

    def register(self) -> None:
        p = self.dispatcher.prefix
        user = Role.USER
        for command in (
            Command("kiro", self.prompt, minimum_role=user, charges_quota=True,
                    description="Send a prompt to the Kiro coding agent",
                    usage=f"{p}kiro <prompt>"),
            Command("code", self.prompt, minimum_role=user, charges_quota=True,
                    description="Alias for /kiro", usage=f"{p}code <prompt>"),
            Command("kiro-status", self.status, minimum_role=user, concurrent=True,
                    description="Show the Kiro session state"),
            Command("kiro-log", self.log, minimum_role=user, concurrent=True,
                    description="Show the last agent output"),
            Command("kiro-kill", self.kill, minimum_role=user, concurrent=True,
                    description="Stop and remove the Kiro container"),
            Command("kiro-new", self.new, minimum_role=user,
                    description="Start a new conversation (container kept)"),
            Command("kiro-fresh", self.fresh, minimum_role=user,
                    description="Recreate the container and start over"),
            Command("kiro-ls", self.ls, minimum_role=user, charges_quota=True,
                    description="List workspace files", usage=f"{p}kiro-ls [path]"),
            Command("kiro-read", self.read, minimum_role=user, charges_quota=True,
                    description="Show a workspace file", usage=f"{p}kiro-read <file>"),
            Command("kiro-write", self.write, minimum_role=user, charges_quota=True,
                    description="Write a workspace file",
                    usage=f"{p}kiro-write <file> <content>"),
            Command("kiro-model", self.model, minimum_role=user,
                    description="Show or switch the agent model",
                    usage=f"{p}kiro-model [{'|'.join(self.session.supported_models)}]"),
        ):
            self.dispatcher.register(command)

    # -- Prompt ------------------------------------------------------------

    async def prompt(self, identity: str, args: str) -> str:
        if not args.strip():
            raise UsageError(f"{self.dispatcher.prefix}kiro <prompt>")
        return await self.session.send_prompt(args)

    # -- Read-only ---------------------------------------------------------

    async def status(self, identity: str, args: str) -> str:
        return self.format_status(self.session.status()) + "\n" + self.quota_line(identity)

    def quota_line(self, identity: str) -> str:
        gate = self.dispatcher.gate
        if gate.roles.get_role(identity) == Role.OWNER:
            return "Quota: unlimited (owner)"
        left = gate.limiter.remaining(identity)
        return (
            f"Quota: {left[WINDOW_MINUTE]}/{gate.limiter.per_minute} this minute, "
            f"{left[WINDOW_HOUR]}/{gate.limiter.per_hour} this hour"
        )

    def format_status(self, st: SessionStatus) -> str:
        lines = [
            f"Kiro session: {st.state.value}"
            + (" (busy)" if st.busy and st.state != SessionState.BUSY else ""),
            f"Container: {st.container_name}" + (" (running)" if st.running else ""),
            f"Model: {st.model}",
            f"Conversation: {'active' if st.conversation_active else 'fresh'}",
            f"Prompts since container start: {st.prompt_count}",
        ]
        if st.last_activity:
            lines.append(f"Last activity: {_format_age(self._clock() - st.last_activity)}")
        if st.possibly_orphaned:
            lines.append("Warning: the last prompt timed out and may still be running.")
        return "\n".join(lines)

    async def log(self, identity: str, args: str) -> str:
        snapshot = self.session.read_log()
        if snapshot.output is None:
            text = "No agent output yet."
        else:
            text = snapshot.output or "(empty output)"
        if snapshot.still_running:
            text += "\n\n[agent is still running]"
        return text

    # -- Lifecycle ---------------------------------------------------------

    async def kill(self, identity: str, args: str) -> str:
        if await self.session.kill():
            return "Kiro container stopped and removed."
        return "No Kiro session is running."

    async def new(self, identity: str, args: str) -> str:
        await self.session.start_fresh()
        return "Next prompt starts a new conversation."

    async def fresh(self, identity: str, args: str) -> str:
        st = await self.session.restart()
        return f"Kiro container recreated ({st.container_name}). Conversation is fresh."

    # -- Workspace ---------------------------------------------------------

    async def ls(self, identity: str, args: str) -> str:
        path = args.strip() or "."
        entries = await self.session.list_files(path)
        if not entries:
            return f"{path}: (empty)"
        return f"{path}:\n" + "\n".join(f"  {e}" for e in entries)

    async def read(self, identity: str, args: str) -> str:
        path = args.strip()
        if not path:
            raise UsageError(f"{self.dispatcher.prefix}kiro-read <file>")
        content = await self.session.read_file(path)
        return content if content.strip() else f"{path} is empty."

    async def write(self, identity: str, args: str) -> str:
        parts = args.split(maxsplit=1)
        if len(parts) < 2:
            raise UsageError(f"{self.dispatcher.prefix}kiro-write <file> <content>")
        path, content = parts
        if not content.endswith("\n"):
            content += "\n"
        written = await self.session.write_file(path, content)
        return f"Wrote {written} bytes to {path}."

    async def model(self, identity: str, args: str) -> str:
        name = args.strip()
        choices = ", ".join(self.session.supported_models)
        if not name:
            return f"Current model: {self.session.status().model}\nAvailable: {choices}"
        previous = self.session.switch_model(name)
        current = self.session.status().model
        if previous == current:
            return f"Model is already {current}."
        return f"Model switched from {previous} to {current}. Applies to the next prompt."
