"""
Locust load testing for the matching API.

Run with:
    locust -f tests/load/locustfile.py --host=http://localhost:18888

Or headless:
    locust -f tests/load/locustfile.py --host=http://localhost:18888 \
        --headless -u 100 -r 10 --run-time 5m

Claims only hit jobs the monitor has already indexed, so most polls against
an idle index return 204. That is the common case in production too.
"""

import random
import uuid

from locust import HttpUser, between, task

# Rule sets workers in a typical fleet advertise
WORKER_PROFILES = [
    ["queue=default"],
    ["queue=default", "arch=amd64"],
    ["queue=default", "arch=arm64"],
    ["queue=gpu", "gpu=true"],
    ["queue=default", "os=linux", "arch=amd64"],
]


class PollingWorkerUser(HttpUser):
    """
    Simulated worker polling for jobs.

    Simulates realistic traffic patterns:
    - Claims (most common, mostly empty)
    - Completion reports for claimed jobs
    - Stats queries
    """

    wait_time = between(0.5, 2)

    def on_start(self):
        """Called when a user starts."""
        self.worker_id = f"load-worker-{uuid.uuid4().hex[:8]}"
        self.rules = random.choice(WORKER_PROFILES)

    def _headers(self) -> dict[str, str]:
        return {"X-Worker-ID": self.worker_id}

    @task(10)
    def claim_job(self):
        """Poll for a job, completing it if one is claimed."""
        rules = list(self.rules)
        random.shuffle(rules)

        with self.client.get(
            "/jobs",
            params={"query": ",".join(rules)},
            headers=self._headers(),
            name="/jobs [GET]",
            catch_response=True,
        ) as response:
            if response.status_code == 204:
                response.success()
                return
            if response.status_code != 200:
                response.failure(f"unexpected status {response.status_code}")
                return

        job_id = response.json()["uuid"]
        self.client.post(
            f"/jobs/{job_id}/complete",
            headers=self._headers(),
            name="/jobs/{job_id}/complete [POST]",
        )

    @task(2)
    def get_stats(self):
        """Get queue statistics."""
        self.client.get("/stats", name="/stats [GET]")

    @task(1)
    def health_check(self):
        """Check API health."""
        self.client.get("/health", name="/health [GET]")


class CompletionStormUser(HttpUser):
    """
    User that reports completions for unknown jobs, the path taken when
    metadata has already expired.
    """

    wait_time = between(1, 3)

    @task
    def complete_unknown(self):
        """Report a burst of completions for jobs the index never saw."""
        for _ in range(random.randint(5, 20)):
            with self.client.post(
                f"/jobs/{uuid.uuid4()}/complete",
                name="/jobs/{job_id}/complete [POST] (unknown)",
                catch_response=True,
            ) as response:
                if response.status_code != 200:
                    response.failure("unknown job completion should succeed")
