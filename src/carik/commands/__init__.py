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
Carik Bot -- Commands

  - dispatcher: parse, authorize and run slash commands
  - basic: help/about/ping/quote/clear and guest onboarding
  - kiro: the /kiro* agent session commands
"""

from carik.commands.basic import BasicCommands
from carik.commands.dispatcher import Command, CommandDispatcher, ParsedCommand, Response
from carik.commands.kiro import KiroCommands

__all__ = [
    "BasicCommands",
    "Command",
    "CommandDispatcher",
    "KiroCommands",
    "ParsedCommand",
    "Response",
]
