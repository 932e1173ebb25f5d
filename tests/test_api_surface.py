"""Tests for API surface conventions.

This test suite verifies:
1. All endpoints are under the /api/v1 prefix
2. Successful responses use the envelope: {"status": "success", "data": ...}
3. Failures use the envelope: {"status": "error", "error": {...}}
4. Paths without the prefix return 404
"""

import pytest
from httpx import ASGITransport, AsyncClient

from devquery_rest import Settings, create_app


def _app():
    return create_app(settings=Settings(_env_file=None))


@pytest.mark.anyio
async def test_health_check_api_prefix():
    """Health check should be at /api/v1/health."""
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/health")
        assert response.status_code == 200
        # Health check uses simplified envelope (no data field needed)
        assert response.json() == {"status": "ok"}


@pytest.mark.anyio
@pytest.mark.parametrize("path", ["/health", "/connections"])
async def test_unprefixed_paths_not_found(path):
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get(path)
        assert response.status_code == 404


def test_routes_registered():
    paths = {(route.path, method) for route in _app().routes for method in getattr(route, "methods", ())}

    expected = {
        ("/api/v1/health", "GET"),
        ("/api/v1/connections/test", "POST"),
        ("/api/v1/connections", "POST"),
        ("/api/v1/connections", "GET"),
        ("/api/v1/connections", "DELETE"),
        ("/api/v1/connections/{connection_key}/status", "GET"),
        ("/api/v1/connections/{connection_key}/schema", "GET"),
        ("/api/v1/connections/{connection_key}/query", "POST"),
        ("/api/v1/connections/{connection_key}", "DELETE"),
        ("/api/v1/admin/connections/sweep", "POST"),
        ("/api/v1/admin/owners/{owner_id}/connections", "DELETE"),
    }
    assert expected <= paths


@pytest.mark.anyio
async def test_list_connections_camelcase_and_envelope():
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/v1/connections")

    assert response.status_code == 200
    assert response.json() == {"status": "success", "data": {"connections": []}}


@pytest.mark.anyio
async def test_error_envelope():
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.post("/api/v1/connections", json={"type": "nosuchdb", "database": "d"})

    assert response.status_code == 400
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["type"] == "InvalidRequest"
    assert "Unsupported database type" in body["error"]["message"]
