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
"""Process executor -- the only place that spawns the container runtime.

The session manager talks to the container exclusively through
:class:`ProcessExecutor`, so tests can swap in a fake and never need Docker.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import Protocol

from carik.core.errors import ExecutorError, ExecutorTimeout

logger = logging.getLogger("carik.kiro.executor")


@dataclass
class ExecResult:
    """Captured output of one runtime invocation."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def combined(self) -> str:
        """stdout followed by stderr, as a terminal would show them."""
        parts = [p.rstrip("\n") for p in (self.stdout, self.stderr) if p and p.strip()]
        return "\n".join(parts)


class ProcessExecutor(Protocol):
    """Run a command line to completion, bounded by ``timeout`` seconds.

    Raises ExecutorTimeout when the time budget is exceeded and
    ExecutorError when the program cannot be started at all. A non-zero
    exit status is NOT an error at this level.
    """

    async def invoke(
        self,
        args: list[str],
        timeout: float,
        input_data: str | None = None,
    ) -> ExecResult: ...


class SubprocessExecutor:
    """ProcessExecutor backed by ``subprocess.run`` in a worker thread."""

    def is_available(self, program: str) -> bool:
        return shutil.which(program) is not None

    async def invoke(
        self,
        args: list[str],
        timeout: float,
        input_data: str | None = None,
    ) -> ExecResult:
        if not args:
            raise ExecutorError("Empty command line")

        loop = asyncio.get_running_loop()
        start = time.monotonic()

        def _run() -> subprocess.CompletedProcess:
            return subprocess.run(
                args,
                capture_output=True,
                encoding="utf-8",
                errors="replace",  # Agent output is not guaranteed to be valid UTF-8
                timeout=timeout,
                input=input_data,
            )

        try:
            completed = await asyncio.wait_for(
                loop.run_in_executor(None, _run),
                timeout=timeout + 5,  # Slightly longer than subprocess timeout
            )
        except (asyncio.TimeoutError, subprocess.TimeoutExpired):
            logger.warning("Timed out after %ss: %s", timeout, " ".join(args[:4]))
            raise ExecutorTimeout(timeout, args) from None
        except FileNotFoundError as exc:
            raise ExecutorError(f"{args[0]} not found") from exc
        except OSError as exc:
            raise ExecutorError(f"Failed to run {args[0]}: {exc}") from exc

        result = ExecResult(
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=completed.returncode,
            duration_seconds=round(time.monotonic() - start, 3),
        )
        logger.debug(
            "exec exit=%d duration=%.1fs: %s",
            result.exit_code,
            result.duration_seconds,
            " ".join(args[:4]),
        )
        return result
