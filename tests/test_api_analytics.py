"""
Tests for the analytics ingestion endpoint.
"""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from pairlog.config import settings
from pairlog.models.db import AnalyticsEvent, IngestionBatch


@pytest.fixture(autouse=True)
def no_failure_tracking():
    with patch("pairlog.pipeline.coordinator.track_failure") as mock_track:
        yield mock_track


class TestIngestEndpoint:
    """Tests for POST /api/analytics."""

    def test_successful_batch(self, api_client: TestClient, db_session: Session, make_event):
        response = api_client.post(
            "/api/analytics", json={"events": [make_event(), make_event()]}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["stats"]["total"] == 2
        assert body["stats"]["success"] == 2
        assert body["stats"]["errors"] == 0
        assert "processing_time_ms" in body["stats"]
        assert "error_details" not in body
        assert body["rolled_back"] is False
        assert db_session.query(AnalyticsEvent).count() == 2

    def test_partial_batch_reports_errors(self, api_client: TestClient, make_event):
        bad = make_event()
        del bad["event_type"]

        response = api_client.post(
            "/api/analytics", json={"events": [make_event(), make_event(), bad]}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["stats"]["errors"] == 1
        detail = body["error_details"][0]
        assert detail["event_id"] == bad["event_id"]
        assert detail["index"] == 2
        assert detail["error_type"] == "validation"
        assert "event_type" in detail["error"]

    def test_rolled_back_batch_is_422(
        self, api_client: TestClient, db_session: Session, make_event
    ):
        bad = []
        for _ in range(2):
            event = make_event()
            del event["timestamp"]
            bad.append(event)

        response = api_client.post("/api/analytics", json={"events": [make_event(), *bad]})

        assert response.status_code == 422
        body = response.json()
        assert body["rolled_back"] is True
        assert body["stats"]["success"] == 0
        assert body["stats"]["errors"] == 3
        assert len(body["error_details"]) == 2
        assert db_session.query(AnalyticsEvent).count() == 0
        # The audit row is kept even though the events were discarded
        assert db_session.query(IngestionBatch).count() == 1

    def test_warnings_are_reported(self, api_client: TestClient, make_event):
        event = make_event("PAIR_ROLE_SWITCH", pair_session_id="unknown")

        response = api_client.post("/api/analytics", json={"events": [event]})

        body = response.json()
        assert response.status_code == 200
        assert body["stats"]["warnings"] == 1
        assert body["warning_details"][0]["event_id"] == event["event_id"]

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"events": "nope"},
            {"events": []},
            {"events": [1, 2]},
            [{"event_id": "x"}],
        ],
    )
    def test_malformed_body_is_400(self, api_client: TestClient, db_session: Session, payload):
        response = api_client.post("/api/analytics", json=payload)

        assert response.status_code == 400
        assert "detail" in response.json()
        assert db_session.query(IngestionBatch).count() == 0

    def test_invalid_json_is_400(self, api_client: TestClient):
        response = api_client.post(
            "/api/analytics",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    def test_storage_failure_is_500(self, api_client: TestClient, make_event):
        error = OperationalError("INSERT", {}, Exception("server closed the connection"))
        with patch(
            "pairlog.pipeline.coordinator.BatchCoordinator._run_attempt",
            side_effect=error,
        ):
            response = api_client.post("/api/analytics", json={"events": [make_event()]})

        assert response.status_code == 500
        assert "Ingestion failed" in response.json()["detail"]


class TestIngestAuthentication:
    """Tests for the ingest API key."""

    @pytest.fixture
    def api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "ingest_api_key", "s3cret")
        return "s3cret"

    def test_missing_key_is_401(self, api_client: TestClient, api_key, make_event):
        response = api_client.post("/api/analytics", json={"events": [make_event()]})

        assert response.status_code == 401

    def test_wrong_key_is_401(self, api_client: TestClient, api_key, make_event):
        response = api_client.post(
            "/api/analytics",
            json={"events": [make_event()]},
            headers={"X-Api-Key": "guess"},
        )

        assert response.status_code == 401

    def test_header_key(self, api_client: TestClient, api_key, make_event):
        response = api_client.post(
            "/api/analytics",
            json={"events": [make_event()]},
            headers={"X-Api-Key": api_key},
        )

        assert response.status_code == 200

    def test_bearer_key(self, api_client: TestClient, api_key, make_event):
        response = api_client.post(
            "/api/analytics",
            json={"events": [make_event()]},
            headers={"Authorization": f"Bearer {api_key}"},
        )

        assert response.status_code == 200
