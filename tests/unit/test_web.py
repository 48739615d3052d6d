"""
Tests for the job API.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from pageharvest.config import Config, StorageConfig
from pageharvest.container import DependencyContainer
from pageharvest.web.main import create_app
from tests.helpers import FakeClock, FakeSearchFetcher, make_manager


class FakeContainer(DependencyContainer):
    def __init__(self, gate=None):
        super().__init__(config=Config(storage=StorageConfig(backend="memory")))
        self.gate = gate
        self.clock = FakeClock()

    async def create_manager(self, job):
        fetcher = FakeSearchFetcher(clock=self.clock, gate=self.gate)
        return make_manager(fetcher, await self.get_storage(), self.clock)


def wait_for_status(client, job_id, statuses=("completed", "failed", "paused"), attempts=200):
    for _ in range(attempts):
        body = client.get(f"/jobs/{job_id}").json()
        if body["status"] in statuses:
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {statuses}")


@pytest.fixture
def client():
    with TestClient(create_app(FakeContainer())) as test_client:
        yield test_client


@pytest.mark.unit
class TestJobApi:
    def test_submit_and_poll(self, client):
        response = client.post("/jobs", json={"category": "Paintings", "max_pages": 3})
        assert response.status_code == 202
        job_id = response.json()["job_id"]

        body = wait_for_status(client, job_id)
        assert body["status"] == "completed"
        assert body["total_pages"] == 3
        assert body["records"] == 9
        assert body["checkpoint_key"] == "raw/paintings/checkpoint.json"

        listed = client.get("/jobs").json()
        assert [item["job_id"] for item in listed] == [job_id]

    def test_unknown_job(self, client):
        assert client.get("/jobs/does-not-exist").status_code == 404

    def test_validation(self, client):
        assert client.post("/jobs", json={"category": ""}).status_code == 422
        assert client.post("/jobs", json={"category": "Paintings", "max_pages": 0}).status_code == 422
        assert client.post("/jobs", json={"query": "oil"}).status_code == 422

    def test_conflict(self):
        gate = asyncio.Event()
        with TestClient(create_app(FakeContainer(gate=gate))) as client:
            first = client.post("/jobs", json={"category": "Paintings", "query": "oil"})
            assert first.status_code == 202

            second = client.post("/jobs", json={"category": "Paintings", "query": "oil"})
            assert second.status_code == 409

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["active_jobs"] == 0
        assert body["components"]["storage_backend"] == "memory"

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "pageharvest_pages_total" in response.text
        assert "X-Process-Time" in response.headers
