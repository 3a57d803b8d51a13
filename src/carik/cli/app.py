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
Carik CLI -- Main entry point.

Usage:
    carik run                       # Telegram bridge (token from config/BOT_TOKEN)
    carik run --console             # Local stdin/stdout bridge
    carik run --config PATH --token T
    carik version
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from carik import __version__
from carik.app import CarikApp, build_default_application
from carik.bridges.base import MessagingBridge
from carik.config import load_config
from carik.core.errors import ConfigError
from carik.core.logging import configure_logging

logger = logging.getLogger("carik.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="carik",
        description="Carik -- chat bot with a Kiro coding agent",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Start the bot")
    run.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: ~/.carik/config.yaml)",
    )
    run.add_argument(
        "--token",
        default=None,
        help="Telegram bot token (overrides config and BOT_TOKEN)",
    )
    run.add_argument(
        "--console",
        action="store_true",
        help="Use the local console bridge instead of Telegram",
    )
    run.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides bot.log_level)",
    )
    run.add_argument(
        "--kill-on-exit",
        action="store_true",
        help="Remove the Kiro container when the bot stops",
    )

    sub.add_parser("version", help="Show version")
    return parser


async def _serve(app: CarikApp, bridge: MessagingBridge, kill_on_exit: bool = False) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, bridge.request_stop)
        except (NotImplementedError, RuntimeError):
            # add_signal_handler is unavailable on Windows event loops
            pass

    try:
        await bridge.serve()
    finally:
        await app.shutdown(kill_agent=kill_on_exit)


def cmd_run(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"carik: {e}", file=sys.stderr)
        return 2

    if args.token:
        config.telegram.token = args.token
        config.telegram.enabled = True

    configure_logging(args.log_level or config.bot.log_level)

    try:
        app = build_default_application(config)
        if args.console or not config.telegram.enabled:
            bridge = app.console_bridge()
        else:
            bridge = app.telegram_bridge()
    except ConfigError as e:
        print(f"carik: {e}", file=sys.stderr)
        return 2

    logger.info("=" * 60)
    logger.info("%s v%s", config.bot.name, __version__)
    logger.info("=" * 60)
    logger.info("  Bridge: %s", bridge.platform)
    logger.info("  Prefix: %s", config.bot.prefix)
    logger.info("  Owners: %d", len(config.bot.owner_ids))
    logger.info("  Kiro image: %s (%s)", config.kiro.image, config.kiro.container_name)
    logger.info("  Workspace: %s", config.kiro.workspace)
    logger.info("  Chat: %s", config.llm.provider if config.llm.api_key else "disabled")
    logger.info("=" * 60)

    asyncio.run(_serve(app, bridge, kill_on_exit=args.kill_on_exit))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print(f"carik-bot {__version__}")
        return 0
    if args.command == "run":
        return cmd_run(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
