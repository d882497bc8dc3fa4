"""
Integration tests for the worker against the matching API.
"""

import asyncio
import json
import stat
from datetime import UTC, datetime
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from httpx import ASGITransport

from custom_scheduler.constants import JobStatus
from custom_scheduler.errors import MatchingAPIError
from custom_scheduler.store import JobStore
from custom_scheduler.worker import Worker


def write_agent(path: Path, args_file: Path, exit_code: int = 0) -> str:
    """Write a fake agent that records its arguments."""
    path.write_text(f'#!/bin/sh\nprintf "%s\\n" "$@" > "{args_file}"\nexit {exit_code}\n')
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


def make_worker(transport: httpx.AsyncBaseTransport, agent_path: str, **kwargs) -> Worker:
    options = {
        "api_server": "http://test",
        "agent_query_rules": ["queue=default", "arch=amd64"],
        "tags": [],
        "queue": "",
        "agent_path": agent_path,
        "agent_token": "tok",
        "poll_interval": 0.01,
        "worker_id": "worker-test",
        "transport": transport,
    }
    options.update(kwargs)
    return Worker(**options)


class BrokenRunner:
    """Agent runner that fails with an unexpected error."""

    agent_path = "broken"

    async def run(self, job_id: str) -> int:
        raise RuntimeError("output decoding failed")

class TestWorker:
    """Integration tests for Worker."""

    async def test_runs_and_completes_job(
        self, app: FastAPI, store: JobStore, make_job, tmp_path: Path
    ):
        """Test a claimed job is run by the agent and reported complete."""
        await store.insert(make_job(["arch=amd64", "queue=default"], uuid="job-1"))
        args_file = tmp_path / "args"
        worker = make_worker(ASGITransport(app=app), write_agent(tmp_path / "agent", args_file))

        job = await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert job is not None
        assert job.uuid == "job-1"
        args = args_file.read_text().splitlines()
        assert args[:3] == ["start", "--acquire-job", "job-1"]
        assert args[args.index("--tags") + 1] == "arch=amd64,queue=default"
        assert (await store.get_metadata("job-1")).status == JobStatus.COMPLETE

    async def test_failed_agent_still_completes(
        self, app: FastAPI, store: JobStore, make_job, tmp_path: Path
    ):
        """Test a non-zero agent exit still reports completion."""
        await store.insert(make_job(["arch=amd64", "queue=default"], uuid="job-2"))
        agent = write_agent(tmp_path / "agent", tmp_path / "args", exit_code=2)
        worker = make_worker(ASGITransport(app=app), agent)

        await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert (await store.get_metadata("job-2")).status == JobStatus.COMPLETE

    async def test_missing_agent_still_completes(
        self, app: FastAPI, store: JobStore, make_job, tmp_path: Path
    ):
        """Test a launch failure still reports completion."""
        await store.insert(make_job(["arch=amd64", "queue=default"], uuid="job-3"))
        worker = make_worker(ASGITransport(app=app), str(tmp_path / "missing"))

        job = await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert job.uuid == "job-3"
        assert (await store.get_metadata("job-3")).status == JobStatus.COMPLETE

    async def test_overlong_agent_output_still_completes(
        self, app: FastAPI, store: JobStore, make_job, tmp_path: Path
    ):
        """Test an agent printing a huge line still has its job completed."""
        await store.insert(make_job(["arch=amd64", "queue=default"], uuid="job-6"))
        agent = tmp_path / "agent"
        agent.write_text("#!/bin/sh\nhead -c 2000000 /dev/zero | tr '\\000' x\necho\n")
        agent.chmod(agent.stat().st_mode | stat.S_IEXEC)
        worker = make_worker(ASGITransport(app=app), str(agent))

        job = await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert job.uuid == "job-6"
        assert (await store.get_metadata("job-6")).status == JobStatus.COMPLETE

    async def test_runner_error_still_completes(
        self, app: FastAPI, store: JobStore, make_job
    ):
        """Test any runner failure is logged and completion still reported."""
        await store.insert(make_job(["arch=amd64", "queue=default"], uuid="job-7"))
        worker = make_worker(ASGITransport(app=app), "unused", runner=BrokenRunner())

        job = await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert job.uuid == "job-7"
        assert (await store.get_metadata("job-7")).status == JobStatus.COMPLETE

    async def test_no_job_available(self, app: FastAPI, tmp_path: Path):
        """Test an empty index yields no job."""
        worker = make_worker(ASGITransport(app=app), str(tmp_path / "agent"))

        assert await worker.process_next_job() is None
        await worker.stop(grace_seconds=1.0)

    async def test_queue_is_added_to_claim(
        self, app: FastAPI, store: JobStore, make_job, tmp_path: Path
    ):
        """Test a configured queue becomes part of the claim rules."""
        await store.insert(make_job(["queue=gpu", "gpu=true"], uuid="job-4"))
        args_file = tmp_path / "args"
        worker = make_worker(
            ASGITransport(app=app),
            write_agent(tmp_path / "agent", args_file),
            agent_query_rules=["gpu=true"],
            queue="gpu",
        )

        job = await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert job.uuid == "job-4"
        args = args_file.read_text().splitlines()
        assert args[-2:] == ["--queue", "gpu"]

    async def test_claim_failure(self, tmp_path: Path):
        """Test a failing claim raises and the poll tick swallows it."""
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        worker = make_worker(transport, str(tmp_path / "agent"))

        with pytest.raises(MatchingAPIError) as exc_info:
            await worker.get_job()
        assert exc_info.value.status_code == 500

        await worker.poll_once()
        await worker.stop(grace_seconds=1.0)

    async def test_complete_failure_is_logged(self, tmp_path: Path):
        """Test a failed completion report does not raise."""
        requests: list[httpx.Request] = []
        job = {
            "uuid": "job-5",
            "queue_key": "default",
            "agent_query_rules": ["queue=default", "arch=amd64"],
            "priority": 0,
            "scheduled_at": None,
            "reserved_at": datetime.now(UTC).isoformat(),
        }

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "GET":
                return httpx.Response(200, content=json.dumps(job))
            return httpx.Response(503, text="unavailable")

        agent = write_agent(tmp_path / "agent", tmp_path / "args")
        worker = make_worker(httpx.MockTransport(handler), agent)

        result = await worker.process_next_job()
        await worker.stop(grace_seconds=1.0)

        assert result.uuid == "job-5"
        assert [r.method for r in requests] == ["GET", "POST"]
        assert requests[0].url.params["query"] == "arch=amd64,queue=default"
        assert requests[0].headers["X-Worker-ID"] == "worker-test"
        assert requests[1].url.path == "/jobs/job-5/complete"

    async def test_background_loop_drains_index(
        self, app: FastAPI, store: JobStore, make_job, tmp_path: Path
    ):
        """Test the started worker processes jobs one after another."""
        for n in range(3):
            await store.insert(make_job(["arch=amd64", "queue=default"], uuid=f"bg-{n}"))
        worker = make_worker(
            ASGITransport(app=app), write_agent(tmp_path / "agent", tmp_path / "args")
        )

        worker.start()
        for _ in range(200):
            if await store.stats() == {}:
                break
            await asyncio.sleep(0.01)
        for _ in range(200):
            metadata = await store.get_metadata("bg-2")
            if metadata.status == JobStatus.COMPLETE:
                break
            await asyncio.sleep(0.01)
        stopped = await worker.stop(grace_seconds=2.0)

        assert stopped is True
        for n in range(3):
            assert (await store.get_metadata(f"bg-{n}")).status == JobStatus.COMPLETE

    def test_requires_rules(self, tmp_path: Path):
        """Test a worker with nothing to match on is rejected."""
        with pytest.raises(ValueError):
            make_worker(httpx.MockTransport(lambda r: httpx.Response(204)), "agent", agent_query_rules=[])
