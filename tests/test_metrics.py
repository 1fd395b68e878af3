"""
Tests for Prometheus metrics endpoint.
"""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_metrics_endpoint_exists(client: AsyncClient):
    """Test that /metrics endpoint is accessible."""
    response = await client.get("/metrics")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")


@pytest.mark.asyncio
async def test_metrics_content_format(client: AsyncClient):
    """Test that metrics endpoint returns Prometheus format."""
    await client.get("/health")
    response = await client.get("/metrics")
    content = response.text

    assert "# HELP" in content
    assert "# TYPE" in content
    assert "http_request" in content


@pytest.mark.asyncio
async def test_metrics_use_route_templates(client: AsyncClient, alice):
    """Post routes are recorded by template, not by concrete id."""
    await client.get("/posts/12345", headers=alice["headers"])
    await client.delete("/posts/12345", params={"user_id": alice["id"]}, headers=alice["headers"])

    content = (await client.get("/metrics")).text

    assert 'handler="/posts/{post_id}"' in content
    assert "/posts/12345" not in content


@pytest.mark.asyncio
async def test_metrics_track_account_routes(client: AsyncClient, register_payload):
    await client.post("/auth/register", json=register_payload)

    content = (await client.get("/metrics")).text

    assert 'handler="/auth/register"' in content


@pytest.mark.asyncio
async def test_metrics_exclude_media_downloads(client: AsyncClient):
    """Static image downloads are not instrumented."""
    await client.get("/storage/posts/missing-0000000000.png")

    content = (await client.get("/metrics")).text

    assert "/storage/posts" not in content


@pytest.mark.asyncio
async def test_metrics_excluded_from_own_tracking(client: AsyncClient):
    """Test that /metrics endpoint doesn't track itself."""
    await client.get("/metrics")
    await client.get("/metrics")

    content = (await client.get("/metrics")).text

    assert 'handler="/metrics"' not in content
