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
Carik Bot -- Messaging Bridges

Platform adapters that turn chat messages into dispatcher calls.
"""

from carik.bridges.base import CHAT_COMMAND, BridgeMessage, MessagingBridge

__all__ = ["CHAT_COMMAND", "BridgeMessage", "MessagingBridge"]
