"""Tests for error translation."""

import pytest
from fastapi.testclient import TestClient

from flowpulse.api.errors import to_http
from flowpulse.dependencies import get_analytics_service
from flowpulse.domain.exceptions import (
    ConflictError,
    DomainError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from flowpulse.main import app


@pytest.mark.parametrize(
    "error, status_code",
    [
        (NotFoundError("missing"), 404),
        (ConflictError("clash"), 409),
        (ForbiddenError("nope"), 403),
        (ValidationError("bad"), 400),
        (UnauthorizedError("who"), 401),
        (DomainError("other"), 400),
    ],
)
def test_to_http(error, status_code):
    http_exc = to_http(error)
    assert http_exc.status_code == status_code
    assert http_exc.detail == error.message


def test_request_validation_is_400(client):
    response = client.post("/api/v1/visitors/site-1/v-1/tags", json={"tagName": ""})

    assert response.status_code == 400
    assert response.json()["detail"].startswith("tagName: ")


def test_unhandled_error_is_500(client, owner_headers):
    class Broken:
        def get_workflow_analytics(self, workflow_id, caller):
            raise RuntimeError("database exploded")

    app.dependency_overrides[get_analytics_service] = lambda: Broken()
    with TestClient(app, raise_server_exceptions=False) as raw_client:
        response = raw_client.get("/api/v1/workflows/W1/analytics", headers=owner_headers)

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
