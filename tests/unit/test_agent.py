"""
Unit tests for agent invocation.
"""

import logging
import stat
from pathlib import Path

import pytest

from custom_scheduler.worker.agent import (
    OUTPUT_LINE_LIMIT,
    AgentRunner,
    build_agent_args,
    merge_tags,
)


def write_script(path: Path, body: str) -> str:
    path.write_text(f"#!/bin/sh\n{body}\n")
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


class TestMergeTags:
    """Tests for merge_tags."""

    def test_later_queue_wins(self):
        """Test the last queue tag wins and is placed last."""
        assert (
            merge_tags(["queue=default", "arch=amd64"], ["queue=production"])
            == "arch=amd64,queue=production"
        )

    def test_queue_from_rules_only(self):
        """Test a single queue tag moves to the end."""
        assert merge_tags(["queue=default", "os=linux"], []) == "os=linux,queue=default"

    def test_duplicates_kept(self):
        """Test non-queue tags pass through as-is."""
        assert merge_tags(["os=linux"], ["os=linux", "gpu=true"]) == "os=linux,os=linux,gpu=true"

    def test_entries_without_equals_dropped(self):
        """Test malformed tags are ignored."""
        assert merge_tags(["linux", "arch=amd64"], ["", "queue"]) == "arch=amd64"

    def test_empty(self):
        """Test no tags yields an empty value."""
        assert merge_tags([], []) == ""


class TestBuildAgentArgs:
    """Tests for build_agent_args."""

    def test_without_queue(self):
        """Test the base argument list."""
        assert build_agent_args("j1", "tok", "queue=default", "worker-host") == [
            "start",
            "--acquire-job", "j1",
            "--token", "tok",
            "--tags", "queue=default",
            "--name", "worker-host",
        ]

    def test_with_queue(self):
        """Test --queue is appended when set."""
        args = build_agent_args("j1", "tok", "queue=gpu", "worker-host", queue="gpu")
        assert args[-2:] == ["--queue", "gpu"]


class TestAgentRunner:
    """Tests for AgentRunner."""

    def test_args_for(self):
        """Test the runner merges rules and extra tags."""
        runner = AgentRunner(
            agent_path="/bin/true",
            token="tok",
            agent_query_rules=["queue=default", "arch=amd64"],
            tags=["queue=production"],
            queue="production",
            name="worker-test",
        )

        assert runner.args_for("abc") == [
            "start",
            "--acquire-job", "abc",
            "--token", "tok",
            "--tags", "arch=amd64,queue=production",
            "--name", "worker-test",
            "--queue", "production",
        ]

    def test_default_name_uses_hostname(self):
        """Test the agent name defaults to worker-<hostname>."""
        runner = AgentRunner(agent_path="/bin/true", token="tok", agent_query_rules=[])
        assert runner.name.startswith("worker-")

    async def test_run_success_logs_prefixed_output(self, tmp_path: Path, caplog):
        """Test output lines are logged with the short job id."""
        caplog.set_level(logging.INFO, logger="custom_scheduler.worker.agent")
        agent = write_script(tmp_path / "agent", 'echo "hello from $3"\necho "oops" >&2\nexit 0')
        runner = AgentRunner(agent_path=agent, token="tok", agent_query_rules=["queue=default"])

        exit_code = await runner.run("0123456789abcdef")

        assert exit_code == 0
        output = [r for r in caplog.records if getattr(r, "prefix", None) == "[01234567]"]
        messages = [r.getMessage() for r in output]
        assert "hello from 0123456789abcdef" in messages
        assert "oops" in messages

    async def test_run_passes_arguments(self, tmp_path: Path):
        """Test the binary receives the full argument list."""
        args_file = tmp_path / "args"
        agent = write_script(tmp_path / "agent", f'printf "%s\\n" "$@" > "{args_file}"')
        runner = AgentRunner(
            agent_path=agent,
            token="tok",
            agent_query_rules=["queue=default"],
            name="worker-test",
        )

        await runner.run("job-1")

        assert args_file.read_text().splitlines() == runner.args_for("job-1")

    async def test_run_drains_overlong_lines(self, tmp_path: Path, caplog):
        """Test a line longer than the output limit is logged in pieces."""
        caplog.set_level(logging.INFO, logger="custom_scheduler.worker.agent")
        agent = write_script(
            tmp_path / "agent",
            "head -c 2000000 /dev/zero | tr '\\000' x\necho\necho done\nexit 4",
        )
        runner = AgentRunner(agent_path=agent, token="tok", agent_query_rules=["queue=default"])

        exit_code = await runner.run("job-1")

        assert exit_code == 4
        messages = [r.getMessage() for r in caplog.records if getattr(r, "job_id", None) == "job-1"]
        pieces = [m for m in messages if m.startswith("x")]
        assert sum(len(m) for m in pieces) == 2_000_000
        assert all(len(m) <= OUTPUT_LINE_LIMIT for m in pieces)
        assert "done" in messages

    async def test_run_returns_nonzero_exit(self, tmp_path: Path):
        """Test a failing agent reports its exit code."""
        agent = write_script(tmp_path / "agent", "exit 3")
        runner = AgentRunner(agent_path=agent, token="tok", agent_query_rules=["queue=default"])

        assert await runner.run("job-1") == 3

    async def test_missing_binary_raises(self, tmp_path: Path):
        """Test a missing binary raises OSError."""
        runner = AgentRunner(
            agent_path=str(tmp_path / "missing"),
            token="tok",
            agent_query_rules=["queue=default"],
        )

        with pytest.raises(OSError):
            await runner.run("job-1")
