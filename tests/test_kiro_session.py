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
"""Tests for AgentSessionManager against a scripted executor.

No Docker needed: every runtime call goes through FakeExecutor (conftest),
which records the exact argument lists.
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

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
from carik.kiro.executor import ExecResult
from carik.kiro.session import AgentSessionManager, SessionState, resolve_workspace_path, strip_ansi


@pytest.fixture
def manager(fake_executor, kiro_settings) -> AgentSessionManager:
    return AgentSessionManager(fake_executor, kiro_settings, activity_log=MagicMock())


class TestStartup:
    @pytest.mark.asyncio
    async def test_first_prompt_creates_container(self, manager, fake_executor, kiro_settings):
        assert manager.state == SessionState.ABSENT
        await manager.send_prompt("hello")

        run = fake_executor.calls_of("run")
        assert len(run) == 1
        assert run[0][:2] == ["docker", "run"]
        assert "--name" in run[0] and "carik-kiro-test" in run[0]
        assert f"{kiro_settings.workspace}:/workspace:rw" in run[0]
        assert run[0][-3:] == ["carik-kiro:latest", "sleep", "infinity"]
        assert manager.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_adopts_running_container(self, manager, fake_executor):
        fake_executor.outcomes["inspect"] = ExecResult(stdout="true\n", exit_code=0)
        await manager.send_prompt("hello")
        assert fake_executor.calls_of("run") == []
        assert fake_executor.calls_of("start") == []

    @pytest.mark.asyncio
    async def test_starts_stopped_container(self, manager, fake_executor):
        fake_executor.outcomes["inspect"] = ExecResult(stdout="false\n", exit_code=0)
        await manager.send_prompt("hello")
        assert len(fake_executor.calls_of("start")) == 1
        assert fake_executor.calls_of("run") == []

    @pytest.mark.asyncio
    async def test_run_failure_leaves_absent(self, manager, fake_executor):
        fake_executor.outcomes["run"] = ExecResult(stderr="Unable to find image", exit_code=125)
        with pytest.raises(AgentUnavailableError, match="Unable to find image"):
            await manager.send_prompt("hello")
        assert manager.state == SessionState.ABSENT
        assert fake_executor.calls_of("chat") == []

    @pytest.mark.asyncio
    async def test_missing_runtime_is_unavailable(self, manager, fake_executor):
        fake_executor.outcomes["inspect"] = ExecutorError("docker not found")
        with pytest.raises(AgentUnavailableError):
            await manager.send_prompt("hello")
        assert manager.state == SessionState.ABSENT

    @pytest.mark.asyncio
    async def test_workspace_directory_created(self, manager, kiro_settings):
        from pathlib import Path

        await manager.send_prompt("hello")
        assert Path(kiro_settings.workspace).is_dir()


class TestPrompt:
    @pytest.mark.asyncio
    async def test_returns_agent_output(self, manager):
        assert await manager.send_prompt("make hello.py") == "Done: created hello.py"
        assert manager.read_log().output == "Done: created hello.py"

    @pytest.mark.asyncio
    async def test_first_prompt_fresh_then_resume(self, manager, fake_executor):
        await manager.send_prompt("one")
        await manager.send_prompt("two")
        first, second = fake_executor.calls_of("chat")
        assert "--resume" not in first
        assert "--resume" in second
        assert first[-1] == "one"
        assert first[:4] == ["docker", "exec", "carik-kiro-test", "kiro-cli"]
        assert "--no-interactive" in first

    @pytest.mark.asyncio
    async def test_empty_prompt_is_usage_error(self, manager, fake_executor):
        with pytest.raises(UsageError):
            await manager.send_prompt("   ")
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_ansi_stripped_and_stderr_combined(self, manager, fake_executor):
        fake_executor.outcomes["chat"] = ExecResult(
            stdout="\x1b[32mok\x1b[0m\n", stderr="warning: slow\n", exit_code=0,
        )
        assert await manager.send_prompt("x") == "ok\nwarning: slow"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_execution_failure(self, manager, fake_executor):
        fake_executor.outcomes["chat"] = ExecResult(stderr="auth required", exit_code=2)
        with pytest.raises(AgentExecutionFailedError) as exc:
            await manager.send_prompt("x")
        assert exc.value.exit_code == 2
        assert manager.state == SessionState.READY
        assert not manager.status().conversation_active

    @pytest.mark.asyncio
    async def test_lost_container_goes_absent(self, manager, fake_executor):
        await manager.send_prompt("one")
        fake_executor.outcomes["chat"] = ExecResult(stderr="container not running", exit_code=125)
        with pytest.raises(AgentExecutionFailedError):
            await manager.send_prompt("two")
        assert manager.state == SessionState.ABSENT

    @pytest.mark.asyncio
    async def test_model_flag_only_for_non_default(self, manager, fake_executor):
        await manager.send_prompt("one")
        manager.switch_model("opus")
        await manager.send_prompt("two")
        first, second = fake_executor.calls_of("chat")
        assert "--model" not in first
        idx = second.index("--model")
        assert second[idx + 1] == "claude-opus-4.1"

    @pytest.mark.asyncio
    async def test_prompt_timeout_used(self, manager, fake_executor, kiro_settings):
        await manager.send_prompt("one")
        chat_index = fake_executor.calls.index(fake_executor.calls_of("chat")[0])
        assert fake_executor.timeouts[chat_index] == kiro_settings.prompt_timeout


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_prompt_gets_busy(self, manager, fake_executor):
        """Two simultaneous prompts: one executor invocation, one AgentBusy."""
        fake_executor.prompt_gate = asyncio.Event()
        first = asyncio.create_task(manager.send_prompt("one"))
        await fake_executor.prompt_started.wait()

        assert manager.status().busy
        assert manager.status().state == SessionState.BUSY
        with pytest.raises(AgentBusyError):
            await manager.send_prompt("two")
        with pytest.raises(AgentBusyError):
            await manager.list_files(".")

        fake_executor.prompt_gate.set()
        await first
        assert len(fake_executor.calls_of("chat")) == 1
        assert manager.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_status_and_log_allowed_while_busy(self, manager, fake_executor):
        await manager.send_prompt("one")
        fake_executor.prompt_gate = asyncio.Event()
        task = asyncio.create_task(manager.send_prompt("two"))
        await fake_executor.prompt_started.wait()

        snapshot = manager.read_log()
        assert snapshot.output == "Done: created hello.py"
        assert snapshot.still_running
        assert manager.status().busy

        fake_executor.prompt_gate.set()
        await task
        assert not manager.read_log().still_running

    @pytest.mark.asyncio
    async def test_kill_during_prompt_discards_output(self, manager, fake_executor):
        fake_executor.prompt_gate = asyncio.Event()
        task = asyncio.create_task(manager.send_prompt("long job"))
        await fake_executor.prompt_started.wait()

        assert await manager.kill() is True
        assert manager.state == SessionState.KILLED

        fake_executor.prompt_gate.set()
        with pytest.raises(AgentExecutionFailedError):
            await task
        assert manager.state == SessionState.KILLED
        assert manager.read_log().output is None

    @pytest.mark.asyncio
    async def test_new_work_refused_while_container_is_removed(self, manager, fake_executor):
        await manager.send_prompt("one")
        fake_executor.gates["rm"] = asyncio.Event()
        kill = asyncio.create_task(manager.kill())
        await fake_executor.started["rm"].wait()

        assert manager.status().busy
        with pytest.raises(AgentBusyError):
            await manager.send_prompt("two")
        with pytest.raises(AgentBusyError):
            await manager.list_files()

        fake_executor.gates["rm"].set()
        assert await kill is True
        assert manager.state == SessionState.KILLED
        assert not manager.status().running
        assert len(fake_executor.calls_of("chat")) == 1
        assert len(fake_executor.calls_of("run")) == 1

    @pytest.mark.asyncio
    async def test_failed_removal_releases_kill_guard(self, manager, fake_executor):
        await manager.send_prompt("one")
        fake_executor.outcomes["rm"] = ExecutorError("docker not found")
        with pytest.raises(AgentUnavailableError):
            await manager.kill()
        assert not manager.status().busy
        assert await manager.send_prompt("two") == "Done: created hello.py"


class TestTimeoutAndOrphans:
    @pytest.mark.asyncio
    async def test_timeout_flags_orphan(self, manager, fake_executor):
        fake_executor.outcomes["chat"] = ExecutorTimeout(5, ["docker"])
        with pytest.raises(AgentTimeoutError):
            await manager.send_prompt("slow")
        status = manager.status()
        assert status.possibly_orphaned
        assert status.state == SessionState.READY
        assert not status.busy

    @pytest.mark.asyncio
    async def test_live_orphan_blocks_next_prompt(self, manager, fake_executor):
        fake_executor.outcomes["chat"] = ExecutorTimeout(5, ["docker"])
        with pytest.raises(AgentTimeoutError):
            await manager.send_prompt("slow")

        fake_executor.outcomes["pgrep"] = ExecResult(stdout="321\n", exit_code=0)
        with pytest.raises(AgentBusyError):
            await manager.send_prompt("again")
        assert len(fake_executor.calls_of("chat")) == 1
        assert fake_executor.calls_of("pgrep")[0][-2:] == ["-f", "kiro-cli"]
        assert manager.status().possibly_orphaned

    @pytest.mark.asyncio
    async def test_dead_orphan_cleared(self, manager, fake_executor):
        fake_executor.outcomes["chat"] = [
            ExecutorTimeout(5, ["docker"]),
            ExecResult(stdout="finished", exit_code=0),
        ]
        with pytest.raises(AgentTimeoutError):
            await manager.send_prompt("slow")
        assert await manager.send_prompt("again") == "finished"
        assert len(fake_executor.calls_of("pgrep")) == 1
        assert not manager.status().possibly_orphaned

    @pytest.mark.asyncio
    async def test_status_makes_no_runtime_calls(self, manager, fake_executor):
        fake_executor.outcomes["chat"] = ExecutorTimeout(5, ["docker"])
        with pytest.raises(AgentTimeoutError):
            await manager.send_prompt("slow")
        calls = len(fake_executor.calls)
        manager.status()
        manager.read_log()
        assert len(fake_executor.calls) == calls


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_kill_absent_is_noop(self, manager, fake_executor):
        assert await manager.kill() is False
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_kill_removes_container(self, manager, fake_executor):
        await manager.send_prompt("one")
        assert await manager.kill() is True
        assert fake_executor.calls_of("rm")[-1] == ["docker", "rm", "-f", "carik-kiro-test"]
        assert manager.state == SessionState.KILLED
        assert await manager.kill() is False

    @pytest.mark.asyncio
    async def test_prompt_after_kill_starts_fresh(self, manager, fake_executor):
        await manager.send_prompt("one")
        await manager.send_prompt("two")
        await manager.kill()

        await manager.send_prompt("three")
        assert len(fake_executor.calls_of("run")) == 2
        assert "--resume" not in fake_executor.calls_of("chat")[-1]
        assert manager.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_prompt_count_restarts_with_container(self, manager, fake_executor):
        await manager.send_prompt("one")
        await manager.send_prompt("two")
        assert manager.status().prompt_count == 2

        await manager.kill()
        await manager.send_prompt("three")
        assert manager.status().prompt_count == 1

    @pytest.mark.asyncio
    async def test_start_fresh_keeps_container(self, manager, fake_executor):
        await manager.send_prompt("one")
        await manager.start_fresh()
        await manager.send_prompt("two")
        assert "--resume" not in fake_executor.calls_of("chat")[-1]
        assert fake_executor.calls_of("rm") == []
        assert len(fake_executor.calls_of("run")) == 1

    @pytest.mark.asyncio
    async def test_restart_recreates(self, manager, fake_executor):
        await manager.send_prompt("one")
        status = await manager.restart()
        assert status.state == SessionState.READY
        assert not status.conversation_active
        assert len(fake_executor.calls_of("rm")) == 1
        assert len(fake_executor.calls_of("run")) == 2


class TestModels:
    def test_switch_model(self, manager):
        manager.switch_model("opus")
        assert manager.status().model == "opus"

    def test_unknown_model_rejected(self, manager):
        manager.switch_model("haiku")
        with pytest.raises(UnsupportedModelError) as exc:
            manager.switch_model("not-a-model")
        assert "sonnet" in str(exc.value)
        assert manager.status().model == "haiku"

    def test_default_model(self, manager):
        assert manager.status().model == "auto"
        assert manager.supported_models == ("auto", "sonnet", "haiku", "opus")


class TestWorkspaceFiles:
    @pytest.mark.asyncio
    async def test_read_escape_makes_no_calls(self, manager, fake_executor):
        with pytest.raises(PathEscapeError):
            await manager.read_file("../../etc/passwd")
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_write_escape_makes_no_calls(self, manager, fake_executor):
        with pytest.raises(WorkspaceIOError):
            await manager.write_file("/etc/cron.d/x", "boom")
        assert fake_executor.calls == []

    @pytest.mark.asyncio
    async def test_list_files(self, manager, fake_executor):
        assert await manager.list_files("src") == ["hello.py", "src/"]
        ls = fake_executor.calls_of("ls")[0]
        assert ls[-1] == "/workspace/src"

    @pytest.mark.asyncio
    async def test_read_file(self, manager, fake_executor):
        assert await manager.read_file("hello.py") == "print('hi')\n"
        assert fake_executor.calls_of("cat")[0][-1] == "/workspace/hello.py"

    @pytest.mark.asyncio
    async def test_write_file_uses_stdin(self, manager, fake_executor):
        content = "x = '$(rm -rf /)'\n"
        written = await manager.write_file("pkg/mod.py", content)
        assert written == len(content.encode())

        call = fake_executor.calls_of("sh")[0]
        assert "-i" in call
        assert call[-1] == "/workspace/pkg/mod.py"
        assert content not in " ".join(call)
        assert fake_executor.inputs[fake_executor.calls.index(call)] == content

    @pytest.mark.asyncio
    async def test_read_failure_is_workspace_error(self, manager, fake_executor):
        fake_executor.outcomes["cat"] = ExecResult(stderr="cat: nope: No such file", exit_code=1)
        with pytest.raises(WorkspaceIOError, match="No such file"):
            await manager.read_file("nope")
        assert manager.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_file_timeout_is_workspace_error(self, manager, fake_executor):
        fake_executor.outcomes["ls"] = ExecutorTimeout(2, ["docker"])
        with pytest.raises(WorkspaceIOError, match="timed out"):
            await manager.list_files()

    @pytest.mark.asyncio
    async def test_read_directory_root_rejected(self, manager, fake_executor):
        with pytest.raises(WorkspaceIOError):
            await manager.read_file(".")
        assert fake_executor.calls == []


class TestHelpers:
    @pytest.mark.parametrize(
        "path,expected",
        [
            (".", "/workspace"),
            ("", "/workspace"),
            ("src/app.py", "/workspace/src/app.py"),
            ("./a/../b.txt", "/workspace/b.txt"),
            ("/workspace/x", "/workspace/x"),
        ],
    )
    def test_resolve_inside(self, path, expected):
        assert resolve_workspace_path(path) == expected

    @pytest.mark.parametrize(
        "path",
        ["../../etc/passwd", "/etc/passwd", "a/../../x", "/workspacefoo", "..\\..\\etc", "a\x00b"],
    )
    def test_resolve_escape(self, path):
        with pytest.raises(PathEscapeError):
            resolve_workspace_path(path)

    def test_strip_ansi(self):
        assert strip_ansi("\x1b[1;31mred\x1b[0m\r\n") == "red\n"
