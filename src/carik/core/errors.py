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
Carik Bot -- Error Taxonomy (v0.3.0)

Every error a user can trigger derives from :class:`CarikError`. The string
form of each error is the message shown to the user, so it must say what to
do next (role needed, seconds to wait, valid choices).

The command dispatcher catches ``CarikError`` and turns it into a reply.
Anything else a handler raises is wrapped in :class:`HandlerFailedError`.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from carik.core.roles import Role


class CarikError(Exception):
    """Base class for user-visible bot errors."""

    code = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class ConfigError(Exception):
    """Invalid or unreadable configuration (raised at startup only)."""


# =============================================================================
# DISPATCH / ACCESS
# =============================================================================


class UnknownCommandError(CarikError):
    code = "unknown_command"

    def __init__(self, name: str, prefix: str = "/") -> None:
        self.name = name
        super().__init__(f"Unknown command: {prefix}{name}. Send {prefix}help for the list.")


class UsageError(CarikError):
    code = "usage"

    def __init__(self, usage: str) -> None:
        self.usage = usage
        super().__init__(f"Usage: {usage}")


class InsufficientRoleError(CarikError):
    code = "insufficient_role"

    def __init__(self, required: Role, actual: Role) -> None:
        self.required = required
        self.actual = actual
        hint = " Send /connect to request access." if actual.label == "guest" else ""
        super().__init__(
            f"Permission denied: this command needs the '{required.label}' role "
            f"(you are '{actual.label}').{hint}"
        )


class RateLimitedError(CarikError):
    code = "rate_limited"

    def __init__(self, window: str, retry_after: float) -> None:
        self.window = window
        self.retry_after = max(0.0, retry_after)
        seconds = max(1, math.ceil(self.retry_after))
        super().__init__(
            f"Rate limit reached ({window} limit). Try again in {seconds}s."
        )


class NotPendingError(CarikError):
    code = "not_pending"

    def __init__(self, identity: str) -> None:
        self.identity = identity
        super().__init__(f"No pending access request for {identity}.")


class HandlerFailedError(CarikError):
    code = "handler_failed"

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Command failed: {detail}")


class DuplicateCommandError(ValueError):
    """A command name was registered twice."""


# =============================================================================
# AGENT SESSION
# =============================================================================


class AgentUnavailableError(CarikError):
    code = "agent_unavailable"

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Kiro agent is unavailable{detail}")


class AgentBusyError(CarikError):
    code = "agent_busy"

    def __init__(self) -> None:
        super().__init__(
            "Kiro agent is busy with another request, try again shortly "
            "(use /kiro-status to check)."
        )


class AgentTimeoutError(CarikError):
    code = "agent_timeout"

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            f"Kiro agent did not answer within {timeout:g}s. "
            "It may still be working; check /kiro-status before sending more."
        )


class AgentExecutionFailedError(CarikError):
    code = "agent_failed"

    def __init__(self, exit_code: int, detail: str = "") -> None:
        self.exit_code = exit_code
        self.detail = detail
        extra = f": {detail}" if detail else ""
        super().__init__(f"Kiro agent failed (exit code {exit_code}){extra}")


class WorkspaceIOError(CarikError):
    code = "workspace_io"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Workspace error: {reason}")


class PathEscapeError(WorkspaceIOError):
    code = "path_escape"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"path '{path}' is outside the workspace")


class UnsupportedModelError(CarikError):
    code = "unsupported_model"

    def __init__(self, name: str, supported: Iterable[str]) -> None:
        self.name = name
        self.supported = tuple(supported)
        super().__init__(
            f"Model '{name}' is not supported, choose from {{{', '.join(self.supported)}}}."
        )


# =============================================================================
# PROCESS EXECUTOR
# =============================================================================


class ExecutorError(Exception):
    """The container runtime could not be invoked at all."""


class ExecutorTimeout(ExecutorError):
    """The invocation exceeded its time budget."""

    def __init__(self, timeout: float, args: list[str] | None = None) -> None:
        self.timeout = timeout
        self.command = list(args or [])
        super().__init__(f"Command timed out after {timeout:g}s: {' '.join(self.command[:4])}")
