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
Carik Bot -- Role Store (v0.3.0)

Persistent identity -> role map plus the set of pending guest requests,
stored in SQLite at $CARIK_HOME/carik.db so both survive restarts.

Tables:
    users           (identity, username, role, created_at, updated_at)
    guest_requests  (identity, username, requested_at)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from carik.core.errors import NotPendingError
from carik.core.roles import Role

logger = logging.getLogger("carik.security.role_store")


@dataclass
class UserRecord:
    identity: str
    role: Role
    username: str = ""
    created_at: str = ""


@dataclass
class GuestRequest:
    identity: str
    requested_at: str
    username: str = ""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RoleStore:
    """SQLite-backed role and guest-request store.

    All mutations run under one lock; each call opens its own connection so
    the store is safe to use from the event loop and worker threads.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    # ── Schema ───────────────────────────────────────────────────────────

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path)

    def _init_db(self):
        conn = self._connect()
        try:
            c = conn.cursor()

            c.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    identity TEXT PRIMARY KEY,
                    username TEXT DEFAULT '',
                    role TEXT NOT NULL DEFAULT 'guest',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            c.execute("""
                CREATE TABLE IF NOT EXISTS guest_requests (
                    identity TEXT PRIMARY KEY,
                    username TEXT DEFAULT '',
                    requested_at TEXT NOT NULL
                )
            """)

            conn.commit()
        finally:
            conn.close()

    # ── Roles ────────────────────────────────────────────────────────────

    def get_role(self, identity: str) -> Role:
        """Role for an identity; unknown identities are guests."""
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT role FROM users WHERE identity = ?", (str(identity),)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return Role.GUEST
        return Role.parse(row[0], default=Role.GUEST)

    def set_role(self, identity: str, role: Role, username: str = "") -> None:
        ts = _now()
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT INTO users (identity, username, role, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?) "
                    "ON CONFLICT(identity) DO UPDATE SET role = excluded.role, "
                    "updated_at = excluded.updated_at, "
                    "username = CASE WHEN excluded.username != '' THEN excluded.username "
                    "ELSE users.username END",
                    (str(identity), username, role.label, ts, ts),
                )
                conn.commit()
            finally:
                conn.close()
        logger.info("Role for %s set to %s", identity, role.label)

    def remove_user(self, identity: str) -> bool:
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM users WHERE identity = ?", (str(identity),))
                removed = cur.rowcount > 0
                conn.commit()
            finally:
                conn.close()
        return removed

    def list_users(self) -> list[UserRecord]:
        """All known users, highest role first."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT identity, role, username, created_at FROM users"
            ).fetchall()
        finally:
            conn.close()
        users = [
            UserRecord(identity=r[0], role=Role.parse(r[1], default=Role.GUEST),
                       username=r[2] or "", created_at=r[3])
            for r in rows
        ]
        users.sort(key=lambda u: (-int(u.role), u.created_at))
        return users

    def ensure_owners(self, identities: list[str]) -> None:
        """Promote configured owner ids at startup."""
        for identity in identities:
            if self.get_role(identity) != Role.OWNER:
                self.set_role(identity, Role.OWNER)

    # ── Guest requests ───────────────────────────────────────────────────

    def add_pending_guest(self, identity: str, username: str = "") -> bool:
        """Record an access request. Returns False if one is already pending."""
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(
                    "INSERT OR IGNORE INTO guest_requests (identity, username, requested_at) "
                    "VALUES (?, ?, ?)",
                    (str(identity), username, _now()),
                )
                added = cur.rowcount > 0
                conn.commit()
            finally:
                conn.close()
        return added

    def list_pending(self) -> list[GuestRequest]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT identity, requested_at, username FROM guest_requests ORDER BY requested_at"
            ).fetchall()
        finally:
            conn.close()
        return [GuestRequest(identity=r[0], requested_at=r[1], username=r[2] or "") for r in rows]

    def approve_guest(self, identity: str) -> None:
        """Promote a pending guest to ``user`` and drop the request.

        Raises NotPendingError if there is no pending request, including when
        the identity was already approved.
        """
        identity = str(identity)
        ts = _now()
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT username FROM guest_requests WHERE identity = ?", (identity,)
                ).fetchone()
                if row is None:
                    raise NotPendingError(identity)
                conn.execute("DELETE FROM guest_requests WHERE identity = ?", (identity,))
                conn.execute(
                    "INSERT INTO users (identity, username, role, created_at, updated_at) "
                    "VALUES (?, ?, 'user', ?, ?) "
                    "ON CONFLICT(identity) DO UPDATE SET "
                    "role = CASE WHEN users.role = 'guest' THEN 'user' ELSE users.role END, "
                    "updated_at = excluded.updated_at",
                    (identity, row[0] or "", ts, ts),
                )
                conn.commit()
            finally:
                conn.close()
        logger.info("Guest %s approved as user", identity)
