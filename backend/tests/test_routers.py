"""Tests for the health and metrics endpoints."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from gridcell import __version__
from gridcell.main import app


@pytest.fixture
def client():
    # No context manager: the lifespan would connect to the database and broker
    yield TestClient(app)
    app.state.ingest = None


class TestHealth:
    def test_not_ingesting(self, client):
        app.state.ingest = None
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "version": __version__,
            "ingesting": False,
            "pending": 0,
        }

    def test_reports_pending_work(self, client):
        app.state.ingest = MagicMock(pending=3)
        body = client.get("/health").json()

        assert body["ingesting"] is True
        assert body["pending"] == 3


class TestMetrics:
    def test_exposes_engine_counters(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        for name in (
            "gridcell_live_total",
            "gridcell_moved_total",
            "gridcell_created_total",
            "gridcell_deleted_total",
            "gridcell_old_data_total",
            "gridcell_live_duration_milliseconds_bucket",
        ):
            assert name in response.text


def test_root(client):
    body = client.get("/").json()
    assert body["name"] == "gridcell-aggregator"
    assert body["metrics"] == "/metrics"
