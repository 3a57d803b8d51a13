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
Carik Bot -- Kiro Agent Session

The Kiro coding agent runs inside one long-lived container. This package
starts that container, feeds it prompts and moves files in and out of its
/workspace mount.
"""

from carik.kiro.executor import ExecResult, ProcessExecutor, SubprocessExecutor
from carik.kiro.session import (
    WORKSPACE_ROOT,
    AgentSessionManager,
    LogSnapshot,
    SessionState,
    SessionStatus,
    resolve_workspace_path,
    strip_ansi,
)

__all__ = [
    "WORKSPACE_ROOT",
    "AgentSessionManager",
    "ExecResult",
    "LogSnapshot",
    "ProcessExecutor",
    "SessionState",
    "SessionStatus",
    "SubprocessExecutor",
    "resolve_workspace_path",
    "strip_ansi",
]
