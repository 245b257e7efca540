from unittest.mock import AsyncMock, MagicMock

import pytest

from services.ideogram import IdeogramError
from services.image_processor import (
    FALLBACK_CONFIDENCE,
    IDEOGRAM_CONFIDENCE,
    ImageDescriptionService,
    ImageUpload,
    validate_image,
)


def _upload(name="photo.jpg", content_type="image/jpeg", data=b"\xff\xd8\xff\xe0jpeg"):
    return ImageUpload(filename=name, content_type=content_type, data=data, size=len(data))


def _client(side_effect=None, return_value="A mountain lake at dawn"):
    client = MagicMock()
    client.describe = AsyncMock(side_effect=side_effect, return_value=return_value)
    client.aclose = AsyncMock()
    return client


def test_validate_image_rules():
    assert validate_image(_upload()) is None
    assert validate_image(_upload(content_type="application/pdf")) == "File must be an image"
    assert validate_image(_upload(data=b"")) == "File is empty"

    oversized = ImageUpload(filename="big.png", content_type="image/png", data=b"", size=11 * 1024 * 1024)
    assert validate_image(oversized) == "File size must be less than 10MB"


@pytest.mark.asyncio
async def test_analyze_success_is_billable():
    client = _client()
    service = ImageDescriptionService(client)

    result = await service.analyze(_upload(), 3)

    assert result.success is True
    assert result.index == 3
    assert result.description == "A mountain lake at dawn"
    assert result.confidence == IDEOGRAM_CONFIDENCE
    assert result.source == "ideogram"
    assert result.billable is True
    assert "billable" not in result.model_dump()
    client.describe.assert_awaited_once_with("photo.jpg", b"\xff\xd8\xff\xe0jpeg", "image/jpeg")


@pytest.mark.asyncio
async def test_invalid_file_never_reaches_the_api():
    client = _client()
    service = ImageDescriptionService(client)

    result = await service.analyze(_upload(name="notes.txt", content_type="text/plain"), 0)

    assert result.success is False
    assert result.error == "File must be an image"
    client.describe.assert_not_awaited()


@pytest.mark.asyncio
async def test_api_failure_is_reported_without_fallback():
    service = ImageDescriptionService(_client(side_effect=IdeogramError("Invalid API key")))

    result = await service.analyze(_upload(), 0)

    assert result.success is False
    assert result.error == "Failed to describe image: Invalid API key"
    assert result.billable is False


@pytest.mark.asyncio
async def test_missing_client_is_reported_without_fallback():
    service = ImageDescriptionService(None)

    result = await service.analyze(_upload(), 0)

    assert result.success is False
    assert result.error == "Image description service is not available - API key not configured"


@pytest.mark.asyncio
async def test_fallback_description_is_returned_but_not_billable():
    service = ImageDescriptionService(_client(side_effect=IdeogramError("timeout")), allow_fallback=True)

    result = await service.analyze(_upload(name="beach.png", content_type="image/png"), 0)

    assert result.success is True
    assert result.source == "fallback"
    assert result.confidence == FALLBACK_CONFIDENCE
    assert result.billable is False
    assert 'png image file named "beach.png"' in result.description


@pytest.mark.asyncio
async def test_unexpected_error_becomes_processing_failed():
    service = ImageDescriptionService(_client(side_effect=RuntimeError("boom")))

    result = await service.analyze(_upload(), 0)

    assert result.success is False
    assert result.error == "Processing failed"
