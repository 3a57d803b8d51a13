"""
Carik Bot -- Role-gated chat bot with a persistent coding-agent session.

Carik receives slash commands from a messaging platform, checks them against
an owner/admin/user/guest role model and per-user quotas, and forwards
``/kiro`` prompts to a long-lived Kiro agent container.
"""

__version__ = "0.3.0"
__author__ = "Carik Team"
