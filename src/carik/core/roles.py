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
"""Role hierarchy.

Roles are totally ordered: ``guest < user < admin < owner``. Every access
check goes through :func:`role_at_least` so the ordering lives in one place.
"""

from __future__ import annotations

from enum import IntEnum


class Role(IntEnum):
    """Caller role, ordered by privilege."""

    GUEST = 0
    USER = 1
    ADMIN = 2
    OWNER = 3

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def parse(cls, value: str | Role | None, default: Role | None = None) -> Role:
        """Parse a stored role name. Unknown values fall back to ``default``."""
        if isinstance(value, Role):
            return value
        if value:
            try:
                return cls[str(value).strip().upper()]
            except KeyError:
                pass
        if default is None:
            raise ValueError(f"Unknown role: {value!r}")
        return default

    def __str__(self) -> str:
        return self.label


def role_at_least(role: Role, minimum: Role) -> bool:
    """True if ``role`` meets or exceeds ``minimum``."""
    return role >= minimum
