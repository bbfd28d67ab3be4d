"""Unit tests for signature data URL validation and storage."""

import base64

import pytest

from sstcore.core.documents import SignatureRole
from sstcore.core.errors import ValidationError
from sstcore.core.persistence import InMemoryBlobStore
from sstcore.core.signatures import (
    BLANK_SIGNATURE_MESSAGE,
    parse_signature_data_url,
    store_signature,
)


IMAGE_BYTES = bytes(range(256)) * 3
VALID_DATA_URL = "data:image/png;base64," + base64.b64encode(IMAGE_BYTES).decode()


def test_valid_signature_decodes():
    """Test that a stroke-sized PNG data URL decodes to its bytes."""
    content_type, data = parse_signature_data_url(VALID_DATA_URL)

    assert content_type == "image/png"
    assert data == IMAGE_BYTES


def test_blank_signature_rejected():
    """Test that a tiny payload (blank canvas) is rejected."""
    blank = "data:image/png;base64," + base64.b64encode(b"\x89PNG blank").decode()

    with pytest.raises(ValidationError) as exc_info:
        parse_signature_data_url(blank)

    assert str(exc_info.value) == BLANK_SIGNATURE_MESSAGE
    assert exc_info.value.field == "signature"


def test_minimum_length_is_configurable():
    """Test that a lower threshold accepts a short payload."""
    short = "data:image/png;base64," + base64.b64encode(b"stroke").decode()

    content_type, data = parse_signature_data_url(short, min_base64_length=4)

    assert data == b"stroke"


def test_non_image_rejected():
    """Test that non-image data URLs and plain strings are rejected."""
    pdf = "data:application/pdf;base64," + base64.b64encode(IMAGE_BYTES).decode()

    with pytest.raises(ValidationError):
        parse_signature_data_url(pdf)
    with pytest.raises(ValidationError):
        parse_signature_data_url("not a data url")
    with pytest.raises(ValidationError):
        parse_signature_data_url(None)


def test_invalid_base64_rejected():
    """Test that a payload with non-base64 characters is rejected."""
    garbage = "data:image/png;base64," + ("*" * 900)

    with pytest.raises(ValidationError):
        parse_signature_data_url(garbage)


@pytest.mark.asyncio
async def test_store_signature_keeps_only_reference():
    """Test that storing a signature puts the image in the blob store."""
    blobs = InMemoryBlobStore()

    signature = await store_signature(blobs, VALID_DATA_URL, SignatureRole.TRAINER, "u-1")

    assert signature.role == SignatureRole.TRAINER
    assert signature.signer_id == "u-1"
    assert blobs.get(signature.blob_ref) == (IMAGE_BYTES, "image/png")


@pytest.mark.asyncio
async def test_store_signature_rejects_blank_without_storing():
    """Test that nothing reaches the blob store for a blank signature."""
    blobs = InMemoryBlobStore()
    blank = "data:image/png;base64,AAAA"

    with pytest.raises(ValidationError):
        await store_signature(blobs, blank, SignatureRole.TRAINER, "u-1")

    assert blobs._blobs == {}
