"""
Integration tests for the HTTP control and monitoring surface.
"""
from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

from daily_rollup.api.app import create_app


@pytest.fixture
def client(scheduler, run_log, engine):
    with TestClient(create_app(scheduler, run_log, engine)) as c:
        yield c


@pytest.mark.integration
class TestApi:
    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["store"] == "ok"

    def test_stage_status(self, client):
        body = client.get("/stages").json()

        assert [s["stage_id"] for s in body] == ["filter", "aggregate"]
        assert all(s["status"] == "idle" for s in body)

    def test_suspend_resume_roundtrip(self, client):
        first = client.post("/stages/filter/suspend").json()
        second = client.post("/stages/filter/suspend").json()

        assert first["changed"] is True
        assert second["changed"] is False
        tick = client.post("/stages/filter/tick").json()
        assert tick["ticks"][0]["outcome"] == "suspended"

        assert client.post("/stages/filter/resume").json()["changed"] is True

    def test_unknown_stage_is_404(self, client):
        assert client.post("/stages/nope/suspend").status_code == 404
        assert client.post("/stages/nope/resume").status_code == 404
        assert client.post("/stages/nope/tick").status_code == 404

    def test_tick_and_runs(self, client, add_raw, raw, aggregate_rows):
        add_raw(
            raw(4, "completed", quantity=3, timestamp=datetime(2024, 12, 2, 8, 0)),
            raw(6, "completed", quantity=4, timestamp=datetime(2024, 12, 2, 10, 0)),
        )

        tick = client.post("/stages/filter/tick").json()

        assert [t["outcome"] for t in tick["ticks"]] == ["succeeded", "succeeded"]
        assert aggregate_rows()[0]["date"] == date(2024, 12, 2)

        runs = client.get("/runs", params={"stage_id": "aggregate"}).json()
        assert len(runs) == 1
        assert runs[0]["outcome"] == "success"
        assert runs[0]["stage_id"] == "aggregate"
        assert len(client.get("/runs", params={"limit": 1}).json()) == 1
