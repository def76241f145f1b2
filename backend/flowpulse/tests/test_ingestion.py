"""Tests for event ingestion."""

from datetime import datetime

import pytest

from flowpulse.db import WorkflowEvent
from flowpulse.domain.events import EventKind, normalize_wire_event
from flowpulse.domain.exceptions import ValidationError
from flowpulse.services.ingestion_service import IngestionService, parse_events


def _raw(kind="Trigger", node_id="N1", **fields):
    payload = {
        "siteId": "site-1",
        "workflowId": "W1",
        "visitorId": "v-1",
        "runId": "run-1",
        "event": kind,
        "nodeId": node_id,
        "nodeTitle": "Page Visit",
        "nodeType": "Trigger",
    }
    payload.update(fields)
    return payload


class TestWireFormats:
    """Tests for the tracker payload shapes."""

    def test_workflow_analytics_format(self):
        normalized = normalize_wire_event(
            {
                "event_type": "workflow_analytics",
                "site_id": "site-1",
                "workflow_id": "W1",
                "node_id": "N3",
                "analytics_event_type": "condition_evaluated",
                "result": "passed",
            }
        )
        event = parse_events([normalized])[0]

        assert event.kind == EventKind.CONDITION_RESULT
        assert event.node_id == "N3"
        assert event.condition_passed is True

    def test_compact_format(self):
        event = parse_events(
            [{"t": "wf", "s": "site-1", "wf": "W1", "n": "N1", "e": "workflow_trigger", "ts": 0}]
        )[0]

        assert event.kind == EventKind.WORKFLOW_TRIGGER
        assert event.workflow_id == "W1"
        assert event.timestamp == datetime(1970, 1, 1)

    def test_epoch_millis_timestamp(self):
        event = parse_events([_raw(timestamp=1_700_000_000_000)])[0]
        assert event.timestamp == datetime(2023, 11, 14, 22, 13, 20)

    def test_out_of_range_epoch_rejected(self):
        with pytest.raises(ValidationError, match="timestamp out of range"):
            parse_events([_raw(timestamp=10**30)])

    def test_aware_timestamp_is_stored_naive_utc(self):
        event = parse_events([_raw(timestamp="2024-05-01T12:00:00+02:00")])[0]
        assert event.timestamp == datetime(2024, 5, 1, 10, 0)


class TestValidation:
    """Tests for rejected payloads."""

    def test_unknown_kind(self):
        with pytest.raises(ValidationError, match="Event 0"):
            parse_events([_raw(kind="Teleport")])

    def test_raw_kind_requires_visitor(self):
        payload = _raw()
        payload.pop("visitorId")
        with pytest.raises(ValidationError, match="visitorId"):
            parse_events([payload])

    def test_raw_kind_requires_node(self):
        with pytest.raises(ValidationError, match="nodeId"):
            parse_events([_raw(node_id=None)])

    def test_custom_event_without_node(self):
        event = parse_events([_raw(kind="Custom Event", node_id=None)])[0]
        assert event.kind == EventKind.CUSTOM_EVENT

    def test_bad_event_in_batch_names_its_index(self):
        with pytest.raises(ValidationError, match="Event 1"):
            parse_events([_raw(), "not-an-object"])

    def test_empty_list_rejected(self, db_session):
        with pytest.raises(ValidationError):
            IngestionService(db_session).ingest([])

    def test_rejected_batch_stores_nothing(self, db_session, webhook_workflow):
        with pytest.raises(ValidationError):
            IngestionService(db_session).ingest([_raw(), _raw(kind="Teleport")])
        assert db_session.query(WorkflowEvent).count() == 0


class TestIngestionService:
    """Tests for raw storage and deduplication."""

    def test_only_raw_kinds_are_stored(self, db_session, webhook_workflow):
        result = IngestionService(db_session).ingest(
            [_raw(), {"siteId": "site-1", "workflowId": "W1", "event": "action_completed", "nodeId": "N2"}]
        )

        assert result.processed == 2
        assert result.stored == 1
        assert db_session.query(WorkflowEvent).one().event == "Trigger"

    def test_duplicate_event_ids_counted_once(self, db_session, webhook_workflow):
        service = IngestionService(db_session)
        first = service.ingest([_raw(eventId="evt-1"), _raw(eventId="evt-1")])
        second = service.ingest(_raw(eventId="evt-1"))

        db_session.refresh(webhook_workflow)
        assert first.duplicates == 1
        assert second.duplicates == 1
        assert second.processed == 0
        assert webhook_workflow.total_triggers == 1
        assert db_session.query(WorkflowEvent).count() == 1

    def test_events_without_id_are_not_deduplicated(self, db_session, webhook_workflow):
        IngestionService(db_session).ingest([_raw(), _raw()])

        db_session.refresh(webhook_workflow)
        assert webhook_workflow.total_triggers == 2


class TestEventsAPI:
    """Tests for the ingestion endpoints."""

    def test_track_wrapped_event(self, client, webhook_workflow):
        response = client.post("/api/v1/events/track", json={"event": _raw()})

        assert response.status_code == 202
        assert response.json()["processed"] == 1
        assert response.json()["stored"] == 1

    def test_track_bare_event(self, client, webhook_workflow):
        response = client.post("/api/v1/events/track", json=_raw(kind="StepEntered"))

        assert response.status_code == 202
        assert response.json()["success"] is True

    def test_out_of_range_timestamp_is_400(self, client, webhook_workflow):
        response = client.post("/api/v1/events/track", json=_raw(timestamp=10**30))

        assert response.status_code == 400
        assert "timestamp out of range" in response.json()["detail"]

    def test_track_invalid_event(self, client):
        response = client.post("/api/v1/events/track", json=_raw(kind="Teleport"))

        assert response.status_code == 400
        assert "Event 0" in response.json()["detail"]

    def test_batch(self, client, webhook_workflow):
        response = client.post(
            "/api/v1/events/track/batch",
            json={"events": [_raw(), _raw(kind="Action Executed", node_id="N2", success=True)]},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["processed"] == 2
        assert body["workflows"] == 1

    def test_empty_batch_is_400(self, client):
        response = client.post("/api/v1/events/track/batch", json={"events": []})
        assert response.status_code == 400
