"""Signature capture: validation and blob storage.

A signature arrives as an image data URL. Blank canvases encode to very
small payloads, so anything below the minimum base64 length is rejected.
Only the blob reference is kept on the document.

Provides:
- parse_signature_data_url: Validate and decode a signature data URL
- store_signature: Put the image in the blob store and build a Signature
"""

import base64
import binascii
import re

from sstcore.core.documents import Signature, SignatureRole
from sstcore.core.errors import ValidationError
from sstcore.core.persistence.base import BlobStore

DEFAULT_MIN_BASE64_LENGTH = 800

_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,(.*)$", re.DOTALL)

BLANK_SIGNATURE_MESSAGE = "The signature must contain an actual stroke; blank signatures are not allowed"


def parse_signature_data_url(
    data_url: str, min_base64_length: int = DEFAULT_MIN_BASE64_LENGTH
) -> tuple[str, bytes]:
    """Validate a signature data URL.

    Args:
        data_url: ``data:image/<type>;base64,<payload>``
        min_base64_length: Minimum payload length in base64 characters

    Returns:
        Tuple of (content_type, decoded image bytes)

    Raises:
        ValidationError: Not an image data URL, blank, or undecodable
    """
    if not isinstance(data_url, str):
        raise ValidationError("Signature must be an image data URL", field="signature")

    match = _DATA_URL.match(data_url.strip())
    if match is None:
        raise ValidationError("Signature must be an image data URL", field="signature")

    content_type, payload = match.group(1), match.group(2).strip()
    if len(payload) < min_base64_length:
        raise ValidationError(BLANK_SIGNATURE_MESSAGE, field="signature")

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Signature payload is not valid base64", field="signature") from exc

    return content_type, data


async def store_signature(
    blob_store: BlobStore,
    data_url: str,
    role: SignatureRole,
    signer_id: str,
    min_base64_length: int = DEFAULT_MIN_BASE64_LENGTH,
) -> Signature:
    """Validate a signature image, store it and return the reference."""
    content_type, data = parse_signature_data_url(data_url, min_base64_length)
    blob_ref = await blob_store.put(data, content_type)
    return Signature(role=SignatureRole(role), signer_id=signer_id, blob_ref=blob_ref)
