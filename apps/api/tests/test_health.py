from unittest.mock import patch

import pytest

from config import settings


@pytest.mark.asyncio
async def test_liveness_and_root(integration_client):
    client, _ = integration_client

    live = await client.get("/health/live")
    root = await client.get("/")

    assert live.json() == {"alive": True}
    assert root.json()["status"] == "running"


@pytest.mark.asyncio
async def test_readiness_requires_an_api_key(integration_client, monkeypatch):
    client, _ = integration_client
    monkeypatch.delenv("IDEOGRAM_API_KEY", raising=False)

    with patch.object(settings, "IDEOGRAM_API_KEY", ""), patch.object(settings, "DESCRIBE_ALLOW_FALLBACK", False):
        missing = await client.get("/health/ready")
    with patch.object(settings, "IDEOGRAM_API_KEY", "configured-key"):
        ready = await client.get("/health/ready")

    assert missing.status_code == 503
    assert missing.json() == {"ready": False, "missing": ["IDEOGRAM_API_KEY"]}
    assert ready.json() == {"ready": True}
