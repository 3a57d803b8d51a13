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
Carik Bot -- Live Activity Logger (v0.3.0)

Every command, access decision and agent-session transition is written to a
rotating log file that operators can tail.

LOG LOCATION:
    $CARIK_HOME/logs/carik.log       (current, CARIK_HOME defaults to ~/.carik)
    $CARIK_HOME/logs/carik.log.1     (previous rotation)

FORMAT:
    TIMESTAMP | LEVEL | COMPONENT | MESSAGE | key=value ...

USAGE:
    from carik.core.logging import get_logger
    log = get_logger()
    log.command("kiro", user_id="42", allowed=True)
    log.security("access", passed=False, user_id="42", reason="rate_limited")
    log.agent("started", container="carik-kiro")
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# =============================================================================
# CONSTANTS
# =============================================================================

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
LOG_BACKUP_COUNT = 5
CARIK_HOME = Path(os.environ.get("CARIK_HOME", Path.home() / ".carik"))
LOG_DIR = CARIK_HOME / "logs"
LOG_FILE_NAME = "carik.log"

MODULE_LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


# =============================================================================
# FORMATTER
# =============================================================================


class CarikLogFormatter(logging.Formatter):
    """
    Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {structured fields}

    Example:
    2026-10-17T09:12:01.512Z | CMD   | Dispatcher   | /kiro | user_id="42" allowed=True
    2026-10-17T09:12:01.520Z | AGENT | Kiro         | Agent started | container="carik-kiro"
    """

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = getattr(record, "carik_level", record.levelname)
        component = getattr(record, "component", "System")
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        return (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )


# =============================================================================
# CARIK LOGGER
# =============================================================================


class CarikLogger:
    """
    Component-tagged activity logger.

    Writes to $CARIK_HOME/logs/carik.log with 10 MB rotation and mirrors
    WARNING+ to stderr.
    """

    def __init__(self, log_dir: Path | str | None = None):
        self._log_dir = Path(log_dir) if log_dir else LOG_DIR
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_file = self._log_dir / LOG_FILE_NAME

        self._logger = logging.getLogger("carik.live")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        # Remove existing handlers to avoid duplicates
        for handler in list(self._logger.handlers):
            handler.close()
        self._logger.handlers.clear()

        file_handler = logging.handlers.RotatingFileHandler(
            str(self._log_file),
            maxBytes=MAX_LOG_FILE_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(CarikLogFormatter())
        self._logger.addHandler(file_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(CarikLogFormatter())
        self._logger.addHandler(stderr_handler)

        self._session_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self._command_count = 0

        self.info("System", "Logger initialized", log_file=str(self._log_file))

    def _log(self, level: int, carik_level: str, component: str, message: str, **fields):
        """Core log method."""
        fields["session"] = self._session_id
        record = self._logger.makeRecord(
            name="carik.live",
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.component = component
        record.carik_level = carik_level
        record.fields = fields
        self._logger.handle(record)

    # =========================================================================
    # PUBLIC API -- Standard levels
    # =========================================================================

    def info(self, component: str, message: str, **fields):
        self._log(logging.INFO, "INFO", component, message, **fields)

    def warn(self, component: str, message: str, **fields):
        self._log(logging.WARNING, "WARN", component, message, **fields)

    def error(self, component: str, message: str, **fields):
        self._log(logging.ERROR, "ERROR", component, message, **fields)

    def debug(self, component: str, message: str, **fields):
        self._log(logging.DEBUG, "DEBUG", component, message, **fields)

    # =========================================================================
    # PUBLIC API -- Domain-specific log methods
    # =========================================================================

    def command(self, name: str, user_id: str = "", allowed: bool = True, **fields):
        """Log a dispatched command and its outcome."""
        fields.update(user_id=user_id, allowed=allowed)
        level = logging.INFO if allowed else logging.WARNING
        self._log(level, "CMD", "Dispatcher", f"/{name}", **fields)
        self._command_count += 1

    def security(self, action: str, passed: bool = True, **fields):
        """Log an access-control event (role check, quota, guest approval)."""
        fields.update(action=action, passed=passed)
        level = logging.INFO if passed else logging.WARNING
        self._log(level, "SEC", "AccessGate", f"Security {action}", **fields)

    def agent(self, action: str, success: bool = True, **fields):
        """Log an agent-session lifecycle event."""
        fields.update(action=action, success=success)
        level = logging.INFO if success else logging.ERROR
        self._log(level, "AGENT", "Kiro", f"Agent {action}", **fields)

    def bridge_start(self, platform: str, **fields):
        fields.update(platform=platform)
        self._log(logging.INFO, "BOOT", "Bridge", f"{platform} bridge started", **fields)

    def bridge_stop(self, platform: str, **fields):
        fields.update(platform=platform, commands_served=self._command_count)
        self._log(logging.INFO, "HALT", "Bridge", f"{platform} bridge stopped", **fields)

    # =========================================================================
    # UTILITY
    # =========================================================================

    @property
    def log_file(self) -> str:
        return str(self._log_file)

    @property
    def command_count(self) -> int:
        return self._command_count

    def get_log_stats(self) -> dict[str, Any]:
        """Get statistics about the log folder."""
        try:
            log_files = [f for f in self._log_dir.iterdir() if f.is_file()]
            total_size = sum(f.stat().st_size for f in log_files)
            return {
                "log_file": str(self._log_file),
                "file_count": len(log_files),
                "total_size_mb": round(total_size / (1024 * 1024), 2),
                "session_id": self._session_id,
                "commands_logged": self._command_count,
            }
        except OSError:
            return {"log_file": str(self._log_file), "error": "could not stat"}


def configure_logging(level: str | int = "INFO") -> None:
    """Configure the root handler used by the ``carik.*`` module loggers."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=MODULE_LOG_FORMAT, stream=sys.stderr)
    logging.getLogger("carik").setLevel(level)
    # python-telegram-bot logs every poll at INFO through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


# =============================================================================
# SINGLETON
# =============================================================================

_logger_instance: CarikLogger | None = None


def get_logger(log_dir: Path | str | None = None) -> CarikLogger:
    """Get or create the global CarikLogger singleton."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = CarikLogger(log_dir=log_dir)
    return _logger_instance
