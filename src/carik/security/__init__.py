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
Carik Bot -- Access Control

Components:
  - role_store: persistent identity -> role map and pending guest requests
  - rate_limiter: per-identity minute/hour sliding windows
  - access_gate: combines both into one decision per command
"""

from carik.security.access_gate import AccessDecision, AccessGate
from carik.security.rate_limiter import RateCheck, UserRateLimiter
from carik.security.role_store import GuestRequest, RoleStore, UserRecord

__all__ = [
    "AccessDecision",
    "AccessGate",
    "GuestRequest",
    "RateCheck",
    "RoleStore",
    "UserRateLimiter",
    "UserRecord",
]
