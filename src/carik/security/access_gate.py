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
Carik Bot -- Access Gate (v0.3.0)

Single authorize-or-reject decision for every command:

  1. Look up the caller's role (unknown -> guest)
  2. Reject if the role is below the command's minimum
  3. Guests asking for access get a pending request instead of a handler run
  4. Owners and quota-exempt commands skip the rate limiter
  5. Everyone else must fit in both sliding windows
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from carik.core.errors import CarikError, InsufficientRoleError, RateLimitedError
from carik.core.roles import Role, role_at_least
from carik.security.rate_limiter import UserRateLimiter
from carik.security.role_store import RoleStore

if TYPE_CHECKING:
    from carik.commands.dispatcher import Command

logger = logging.getLogger("carik.security.access_gate")


@dataclass
class AccessDecision:
    """Outcome of AccessGate.authorize()."""

    allowed: bool
    role: Role
    error: CarikError | None = None
    access_requested: bool = False  # Guest request recorded, skip the handler
    already_pending: bool = False
    charged: bool = False  # A quota slot was consumed


class AccessGate:
    """Role check + quota check in one place."""

    def __init__(self, roles: RoleStore, limiter: UserRateLimiter, activity_log: Any | None = None):
        self.roles = roles
        self.limiter = limiter
        self._log = activity_log

    def authorize(self, identity: str, command: Command, username: str = "") -> AccessDecision:
        identity = str(identity)
        role = self.roles.get_role(identity)

        if not role_at_least(role, command.minimum_role):
            decision = AccessDecision(
                allowed=False,
                role=role,
                error=InsufficientRoleError(command.minimum_role, role),
            )
            self._audit(identity, command, decision, reason="insufficient_role")
            return decision

        if command.requests_access and role == Role.GUEST:
            created = self.roles.add_pending_guest(identity, username)
            decision = AccessDecision(
                allowed=True,
                role=role,
                access_requested=True,
                already_pending=not created,
            )
            self._audit(identity, command, decision, reason="guest_request")
            return decision

        if role == Role.OWNER or not command.charges_quota:
            return AccessDecision(allowed=True, role=role)

        check = self.limiter.check_and_record(identity)
        if not check.allowed:
            decision = AccessDecision(
                allowed=False,
                role=role,
                error=RateLimitedError(check.window, check.retry_after),
            )
            self._audit(identity, command, decision, reason=f"rate_limited_{check.window}")
            return decision

        return AccessDecision(allowed=True, role=role, charged=True)

    def _audit(self, identity: str, command: Command, decision: AccessDecision, reason: str) -> None:
        logger.info(
            "Access %s for %s on /%s (%s)",
            "granted" if decision.allowed else "denied",
            identity,
            command.name,
            reason,
        )
        if self._log:
            self._log.security(
                "access",
                passed=decision.allowed,
                user_id=identity,
                command=command.name,
                role=decision.role.label,
                reason=reason,
            )
