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
Carik Bot -- Kiro Session Manager (v0.3.0)

One persistent container per deployment runs the Kiro agent CLI. The
container stays alive via ``sleep infinity``; each prompt is a
``docker exec <name> kiro-cli chat --no-interactive [--resume] ...`` call,
so the agent's own conversation store carries context between prompts.

State machine::

    ABSENT --(first use)--> STARTING --ok--> READY <--> BUSY
       ^                        |                 |
       +-------(failure)--------+     kill() --> KILLED --(next use)--> STARTING

Invariants:
  - At most one container-touching operation runs at a time. A second one
    gets AgentBusyError immediately instead of queueing.
  - status() and read_log() never touch the container or the lock.
  - kill() does not wait for in-flight work; it bumps the session generation
    so the in-flight call reports failure instead of stale output.
  - While kill() is removing the container, new container-touching calls
    get AgentBusyError so nothing starts a container that is being removed.
  - After a prompt timeout the agent may still be running inside the
    container. The next container-touching call probes for it first and
    answers AgentBusyError while it is alive.
  - Workspace paths are normalized against /workspace and rejected before
    any runtime call if they escape it.
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import re
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from carik.config import KiroSettings
from carik.core.errors import (
    AgentBusyError,
    AgentExecutionFailedError,
    AgentTimeoutError,
    AgentUnavailableError,
    ExecutorError,
    ExecutorTimeout,
    PathEscapeError,
    UnsupportedModelError,
    UsageError,
    WorkspaceIOError,
)
from carik.kiro.executor import ExecResult, ProcessExecutor

logger = logging.getLogger("carik.kiro.session")

WORKSPACE_ROOT = "/workspace"

# docker exec exit status when the container itself is gone or stopped
_RUNTIME_CONTAINER_ERROR = 125

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07|\r")


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def resolve_workspace_path(path: str, root: str = WORKSPACE_ROOT) -> str:
    """Map a user-supplied path onto the container workspace.

    Relative paths are joined to ``root``; absolute paths must already be
    inside it. Raises PathEscapeError for anything that normalizes outside.
    """
    raw = (path or "").strip() or "."
    if "\x00" in raw:
        raise PathEscapeError(path)
    raw = raw.replace("\\", "/")
    candidate = raw if raw.startswith("/") else posixpath.join(root, raw)
    normalized = posixpath.normpath(candidate)
    if normalized != root and not normalized.startswith(root + "/"):
        raise PathEscapeError(path)
    return normalized


# ---------------------------------------------------------------------------
# Session state
# ---------------------------------------------------------------------------
class SessionState(str, Enum):
    ABSENT = "absent"
    STARTING = "starting"
    READY = "ready"
    BUSY = "busy"
    KILLED = "killed"


@dataclass
class AgentSession:
    """Mutable state of the single Kiro worker. Owned by the manager."""

    container_name: str
    model: str
    state: SessionState = SessionState.ABSENT
    conversation_active: bool = False
    last_output: str | None = None
    last_activity: float = 0.0
    started_at: float = 0.0
    generation: int = 0
    possibly_orphaned: bool = False
    prompt_count: int = 0


@dataclass
class SessionStatus:
    """Snapshot returned by AgentSessionManager.status()."""

    state: SessionState
    running: bool
    busy: bool
    conversation_active: bool
    model: str
    container_name: str
    last_activity: float = 0.0
    possibly_orphaned: bool = False
    prompt_count: int = 0


@dataclass
class LogSnapshot:
    output: str | None
    still_running: bool
    last_activity: float = 0.0


# ---------------------------------------------------------------------------
# AgentSessionManager
# ---------------------------------------------------------------------------
class AgentSessionManager:
    """Owns the Kiro container and serializes every operation on it.

    Usage::

        manager = AgentSessionManager(SubprocessExecutor(), config.kiro)
        reply = await manager.send_prompt("add a /health endpoint")
        files = await manager.list_files("src")
        await manager.kill()
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        settings: KiroSettings,
        activity_log: Any | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._executor = executor
        self._settings = settings
        self._log = activity_log
        self._clock = clock
        self._lock = asyncio.Lock()
        self._killing = False
        self._session = AgentSession(
            container_name=settings.container_name,
            model=settings.default_model,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def supported_models(self) -> tuple[str, ...]:
        return tuple(self._settings.models)

    @property
    def is_busy(self) -> bool:
        return self._lock.locked() or self._killing

    @property
    def state(self) -> SessionState:
        return self._session.state

    # ------------------------------------------------------------------
    # Pure reads
    # ------------------------------------------------------------------
    def status(self) -> SessionStatus:
        s = self._session
        return SessionStatus(
            state=s.state,
            running=s.state in (SessionState.READY, SessionState.BUSY),
            busy=self.is_busy,
            conversation_active=s.conversation_active,
            model=s.model,
            container_name=s.container_name,
            last_activity=s.last_activity,
            possibly_orphaned=s.possibly_orphaned,
            prompt_count=s.prompt_count,
        )

    def read_log(self) -> LogSnapshot:
        s = self._session
        return LogSnapshot(
            output=s.last_output,
            still_running=self.is_busy or s.possibly_orphaned,
            last_activity=s.last_activity,
        )

    # ------------------------------------------------------------------
    # Prompt
    # ------------------------------------------------------------------
    async def send_prompt(self, text: str) -> str:
        """Send one prompt to the agent and return its output."""
        prompt = (text or "").strip()
        if not prompt:
            raise UsageError("/kiro <prompt>")

        async with self._exclusive():
            await self._ensure_ready()
            s = self._session
            generation = s.generation
            resume = s.conversation_active
            args = self._agent_command(prompt, resume=resume)
            s.state = SessionState.BUSY
            self._event("prompt", resume=resume, model=s.model, chars=len(prompt))

            try:
                result = await self._executor.invoke(args, timeout=self._settings.prompt_timeout)
            except ExecutorTimeout:
                if generation == s.generation:
                    s.state = SessionState.READY
                    s.possibly_orphaned = True
                    s.last_activity = self._clock()
                self._event("prompt_timeout", success=False)
                raise AgentTimeoutError(self._settings.prompt_timeout) from None
            except ExecutorError as exc:
                if generation == s.generation:
                    self._mark_absent(f"runtime error: {exc}")
                raise AgentUnavailableError(str(exc)) from exc
            finally:
                if s.state == SessionState.BUSY and generation == s.generation:
                    s.state = SessionState.READY

            self._check_generation(generation)
            s.last_activity = self._clock()
            output = strip_ansi(result.combined).strip()

            if result.exit_code == _RUNTIME_CONTAINER_ERROR:
                self._mark_absent("container stopped")
                raise AgentExecutionFailedError(result.exit_code, _tail(output) or "container is gone")
            if not result.ok:
                s.last_output = output or None
                self._event("prompt_failed", success=False, exit_code=result.exit_code)
                raise AgentExecutionFailedError(result.exit_code, _tail(output))

            s.last_output = output
            s.conversation_active = True
            s.prompt_count += 1
            self._event("prompt_done", duration=result.duration_seconds)
            return output or "(agent returned no output)"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start_fresh(self) -> None:
        """Next prompt starts a new conversation. The container is kept."""
        async with self._exclusive():
            self._session.conversation_active = False
            self._event("fresh_conversation")

    async def kill(self) -> bool:
        """Stop and remove the container.

        Returns False when there was nothing to kill. Does not wait for an
        in-flight prompt; that call fails once it returns.
        New work is refused with AgentBusyError until the removal finishes.
        """
        s = self._session
        if s.state in (SessionState.ABSENT, SessionState.KILLED):
            return False

        s.generation += 1
        s.state = SessionState.KILLED
        s.conversation_active = False
        s.possibly_orphaned = False

        args = [self._settings.runtime, "rm", "-f", s.container_name]
        self._killing = True
        try:
            result = await self._executor.invoke(args, timeout=self._settings.kill_timeout)
        except ExecutorError as exc:
            self._event("kill", success=False, error=str(exc))
            raise AgentUnavailableError(f"could not remove container: {exc}") from exc
        finally:
            self._killing = False

        if not result.ok:
            logger.warning(
                "rm -f %s exited %d: %s",
                s.container_name,
                result.exit_code,
                result.stderr.strip()[:200],
            )
        self._event("kill", container=s.container_name)
        return True

    async def restart(self) -> SessionStatus:
        """Kill the container and bring up a fresh one."""
        await self.kill()
        async with self._exclusive():
            await self._ensure_ready()
        return self.status()

    def switch_model(self, name: str) -> str:
        """Select the model for subsequent prompts. Returns the previous one."""
        choice = (name or "").strip().lower()
        if choice not in self._settings.models:
            raise UnsupportedModelError(name, self.supported_models)
        previous = self._session.model
        self._session.model = choice
        self._event("model", previous=previous, model=choice)
        return previous

    # ------------------------------------------------------------------
    # Workspace files
    # ------------------------------------------------------------------
    async def list_files(self, path: str = ".") -> list[str]:
        target = resolve_workspace_path(path)
        async with self._exclusive():
            await self._ensure_ready()
            result = await self._workspace_call(
                [self._settings.runtime, "exec", self._session.container_name,
                 "ls", "-1Ap", "--", target],
            )
        return [line for line in result.stdout.splitlines() if line.strip()]

    async def read_file(self, path: str) -> str:
        if not (path or "").strip():
            raise UsageError("/kiro-read <file>")
        target = resolve_workspace_path(path)
        if target == WORKSPACE_ROOT:
            raise WorkspaceIOError(f"'{path}' is a directory")
        async with self._exclusive():
            await self._ensure_ready()
            result = await self._workspace_call(
                [self._settings.runtime, "exec", self._session.container_name,
                 "cat", "--", target],
            )
        return result.stdout

    async def write_file(self, path: str, content: str) -> int:
        """Write ``content`` to a workspace file. Returns bytes written."""
        if not (path or "").strip():
            raise UsageError("/kiro-write <file> <content>")
        target = resolve_workspace_path(path)
        if target == WORKSPACE_ROOT:
            raise WorkspaceIOError(f"'{path}' is a directory")
        async with self._exclusive():
            await self._ensure_ready()
            # Path travels as $1, content via stdin: nothing is interpolated
            await self._workspace_call(
                [self._settings.runtime, "exec", "-i", self._session.container_name,
                 "sh", "-c", 'mkdir -p "$(dirname "$1")" && cat > "$1"', "sh", target],
                input_data=content,
            )
        return len(content.encode("utf-8"))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock.locked() or self._killing:
            raise AgentBusyError()
        async with self._lock:
            yield

    def _check_generation(self, generation: int) -> None:
        if generation != self._session.generation:
            raise AgentExecutionFailedError(-1, "session was killed while the request was running")

    def _mark_absent(self, reason: str) -> None:
        """Implicit kill after an unrecoverable runtime error."""
        s = self._session
        s.generation += 1
        s.state = SessionState.ABSENT
        s.conversation_active = False
        s.possibly_orphaned = False
        self._event("lost", success=False, reason=reason)

    async def _ensure_ready(self) -> None:
        """Bring the session to READY. Caller holds the lock."""
        s = self._session
        if s.state == SessionState.READY and s.possibly_orphaned:
            await self._reconcile_orphan()
        if s.state == SessionState.READY:
            return

        generation = s.generation
        s.state = SessionState.STARTING
        try:
            await self._start_container()
        except BaseException:
            if generation == s.generation:
                s.state = SessionState.ABSENT
            raise
        self._check_generation(generation)

        s.state = SessionState.READY
        s.conversation_active = False
        s.possibly_orphaned = False
        s.started_at = s.last_activity = self._clock()
        s.prompt_count = 0
        self._event("ready", container=s.container_name)

    async def _reconcile_orphan(self) -> None:
        """Find out whether a timed-out agent run is still alive."""
        s = self._session
        probe = [self._settings.runtime, "exec", s.container_name,
                 "pgrep", "-f", self._settings.agent_binary]
        try:
            result = await self._executor.invoke(probe, timeout=self._settings.file_timeout)
        except ExecutorTimeout:
            raise AgentBusyError() from None
        except ExecutorError as exc:
            self._mark_absent(f"runtime error: {exc}")
            raise AgentUnavailableError(str(exc)) from exc

        if result.exit_code == 0:
            logger.info("Agent from a timed-out prompt is still running in %s", s.container_name)
            raise AgentBusyError()
        if result.exit_code == _RUNTIME_CONTAINER_ERROR:
            self._mark_absent("container stopped")
            return
        s.possibly_orphaned = False

    async def _start_container(self) -> None:
        """Adopt the named container if it exists, otherwise create it."""
        cfg = self._settings
        name = self._session.container_name

        inspect = await self._runtime_call(
            [cfg.runtime, "inspect", "-f", "{{.State.Running}}", name],
        )
        if inspect.ok:
            if inspect.stdout.strip() == "true":
                logger.info("Adopting running container %s", name)
                return
            started = await self._runtime_call([cfg.runtime, "start", name])
            if started.ok:
                logger.info("Restarted stopped container %s", name)
                return
            await self._runtime_call([cfg.runtime, "rm", "-f", name])

        try:
            Path(cfg.workspace).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise AgentUnavailableError(f"cannot create workspace {cfg.workspace}: {exc}") from exc

        cmd = [
            cfg.runtime,
            "run",
            "-d",
            "--name",
            name,
            "-v",
            f"{cfg.workspace}:{WORKSPACE_ROOT}:rw",
            "-w",
            WORKSPACE_ROOT,
            *cfg.run_args,
            cfg.image,
            "sleep",
            "infinity",
        ]
        result = await self._runtime_call(cmd)
        if not result.ok:
            stderr = result.stderr.strip()[:300] or f"exit code {result.exit_code}"
            self._event("start", success=False, error=stderr)
            raise AgentUnavailableError(stderr)
        logger.info("Kiro container started: %s (image=%s)", name, cfg.image)

    async def _runtime_call(self, args: list[str]) -> ExecResult:
        try:
            return await self._executor.invoke(args, timeout=self._settings.start_timeout)
        except ExecutorTimeout as exc:
            raise AgentUnavailableError(f"container runtime timed out ({exc.timeout:g}s)") from exc
        except ExecutorError as exc:
            raise AgentUnavailableError(str(exc)) from exc

    async def _workspace_call(self, args: list[str], input_data: str | None = None) -> ExecResult:
        generation = self._session.generation
        try:
            result = await self._executor.invoke(
                args, timeout=self._settings.file_timeout, input_data=input_data,
            )
        except ExecutorTimeout:
            raise WorkspaceIOError(f"timed out after {self._settings.file_timeout:g}s") from None
        except ExecutorError as exc:
            if generation == self._session.generation:
                self._mark_absent(f"runtime error: {exc}")
            raise WorkspaceIOError(f"container runtime failed: {exc}") from exc

        self._check_generation(generation)
        if result.exit_code == _RUNTIME_CONTAINER_ERROR:
            self._mark_absent("container stopped")
        if not result.ok:
            reason = result.stderr.strip()[:300] or f"exit code {result.exit_code}"
            raise WorkspaceIOError(reason)
        self._session.last_activity = self._clock()
        return result

    def _agent_command(self, prompt: str, resume: bool) -> list[str]:
        cfg = self._settings
        args = [
            cfg.runtime,
            "exec",
            self._session.container_name,
            cfg.agent_binary,
            "chat",
            "--no-interactive",
            "--trust-all-tools",
        ]
        if resume:
            args.append("--resume")
        model_id = cfg.models.get(self._session.model, "")
        if model_id:
            args.extend(["--model", model_id])
        args.append(prompt)
        return args

    def _event(self, action: str, success: bool = True, **fields: Any) -> None:
        logger.debug("session %s %s", action, fields)
        if self._log:
            self._log.agent(action, success=success, **fields)


def _tail(text: str, limit: int = 300) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "..." + text[-limit:]
