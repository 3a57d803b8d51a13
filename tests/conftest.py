# Carik Bot
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Carik Bot.
#
# Carik Bot is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Pytest configuration and shared fakes for carik-bot tests."""

from __future__ import annotations

import asyncio
import sys
from collections import defaultdict
from pathlib import Path

import pytest

# Ensure src/carik is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from carik.config import KiroSettings  # noqa: E402
from carik.kiro.executor import ExecResult  # noqa: E402


class FakeClock:
    """Manually advanced clock for rate-limiter tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExecutor:
    """Scripted ProcessExecutor. Records every call, never spawns anything.

    Calls are classified by kind: ``inspect``, ``run``, ``start``, ``rm`` for
    runtime commands, ``chat`` for the agent CLI, and the program name
    (``ls``, ``cat``, ``sh``, ``pgrep``) for other ``exec`` calls.
    ``outcomes[kind]`` may be an ExecResult, an exception instance, or a list
    of those consumed in order.
    """

    def __init__(self, agent_binary: str = "kiro-cli"):
        self.agent_binary = agent_binary
        self.calls: list[list[str]] = []
        self.inputs: list[str | None] = []
        self.timeouts: list[float] = []
        self.outcomes: dict[str, object] = {
            "inspect": ExecResult(stderr="No such object", exit_code=1),
            "run": ExecResult(stdout="abc123\n", exit_code=0),
            "start": ExecResult(exit_code=0),
            "rm": ExecResult(exit_code=0),
            "chat": ExecResult(stdout="Done: created hello.py\n", exit_code=0),
            "pgrep": ExecResult(exit_code=1),
            "ls": ExecResult(stdout="hello.py\nsrc/\n", exit_code=0),
            "cat": ExecResult(stdout="print('hi')\n", exit_code=0),
            "sh": ExecResult(exit_code=0),
        }
        # gates[kind] blocks calls of that kind until the event fires;
        # started[kind] is set once such a call is waiting
        self.gates: dict[str, asyncio.Event] = {}
        self.started: defaultdict[str, asyncio.Event] = defaultdict(asyncio.Event)

    @property
    def prompt_gate(self) -> asyncio.Event | None:
        return self.gates.get("chat")

    @prompt_gate.setter
    def prompt_gate(self, event: asyncio.Event | None) -> None:
        if event is None:
            self.gates.pop("chat", None)
        else:
            self.gates["chat"] = event

    @property
    def prompt_started(self) -> asyncio.Event:
        return self.started["chat"]

    def kind(self, args: list[str]) -> str:
        verb = args[1]
        if verb != "exec":
            return verb
        rest = [a for a in args[2:] if a != "-i"]
        program = rest[1]
        return "chat" if program == self.agent_binary else program

    def calls_of(self, kind: str) -> list[list[str]]:
        return [c for c in self.calls if self.kind(c) == kind]

    async def invoke(self, args, timeout, input_data=None):
        self.calls.append(list(args))
        self.inputs.append(input_data)
        self.timeouts.append(timeout)
        kind = self.kind(args)

        gate = self.gates.get(kind)
        if gate is not None:
            self.started[kind].set()
            await gate.wait()

        outcome = self.outcomes.get(kind, ExecResult(exit_code=0))
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def kiro_settings(tmp_path: Path) -> KiroSettings:
    return KiroSettings(
        workspace=str(tmp_path / "workspace"),
        container_name="carik-kiro-test",
        prompt_timeout=5,
        file_timeout=2,
        start_timeout=2,
        kill_timeout=2,
    )
