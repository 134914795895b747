"""
tests/test_app.py
Tests for app-wide behaviour: error envelope, request IDs, health check.
"""

import pytest
from httpx import AsyncClient

from shared.models.models import User
from tests.conftest import auth_headers


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/", headers={"X-Request-ID": "abc-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "abc-123"
    assert response.headers["X-Process-Time"].endswith("ms")


@pytest.mark.asyncio
async def test_domain_errors_share_one_envelope(client: AsyncClient, admin_user: User):
    response = await client.get(
        "/cases/00000000-0000-0000-0000-000000000000",
        headers={**auth_headers(admin_user), "X-Request-ID": "req-1"},
    )
    assert response.status_code == 404
    body = response.json()
    assert set(body) >= {"detail", "code", "errors", "requestId"}
    assert body["requestId"] == "req-1"


@pytest.mark.asyncio
async def test_malformed_path_id_is_validation_error(client: AsyncClient, admin_user: User):
    response = await client.get("/cases/not-a-uuid", headers=auth_headers(admin_user))
    assert response.status_code == 422
    assert response.json()["code"] == "validation"
    assert "case_id" in response.json()["errors"]


@pytest.mark.asyncio
async def test_health_reports_degraded_without_redis(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 503
    body = response.json()
    assert body["status"] == "degraded"
    assert body["redis"] == "error"
