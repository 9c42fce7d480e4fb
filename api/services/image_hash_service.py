"""
Duplicate property image detection.
Images are fingerprinted with SHA-256 here; similarity against stored
fingerprints is decided by the backend's detect_image_duplicates procedure.
"""

import hashlib

import structlog

from config import settings
from models.records import DuplicateImage, ImageHashRecord
from services.backend import Backend
from utils.metrics import track_duplicate_check

logger = structlog.get_logger(__name__)

HASH_TABLE = "property_image_hashes"
DETECT_FUNCTION = "detect_image_duplicates"


def generate_image_hash(data: bytes) -> str:
    """Lowercase hex SHA-256 digest of the image bytes."""
    return hashlib.sha256(data).hexdigest()


async def check_image_duplicates(
    backend: Backend,
    image_hash: str,
    agent_id: str,
    similarity_threshold: float | None = None,
) -> list[DuplicateImage]:
    """
    Ask the backend for stored images from other agents matching this hash.

    Never raises: a failed lookup is logged and reported as no duplicates,
    since the result only drives a warning.

    Args:
        backend: Backend collaborator
        image_hash: SHA-256 hex digest of the candidate image
        agent_id: Uploading agent (their own images are not duplicates)
        similarity_threshold: Minimum similarity score (default 0.95)

    Returns:
        Matching stored images
    """
    threshold = settings.duplicate_similarity_threshold if similarity_threshold is None else similarity_threshold

    try:
        rows = await backend.rpc(
            DETECT_FUNCTION,
            {
                "p_image_hash": image_hash,
                "p_agent_id": agent_id,
                "p_similarity_threshold": threshold,
            },
        )
        duplicates = [DuplicateImage.model_validate(row) for row in rows or []]

    except Exception as e:
        track_duplicate_check("error")
        logger.error("duplicate_check_error", agent_id=agent_id, error=str(e))
        return []

    track_duplicate_check("duplicate" if duplicates else "unique")
    logger.info(
        "duplicate_check_complete",
        agent_id=agent_id,
        image_hash_prefix=image_hash[:12],
        matches=len(duplicates),
        threshold=threshold,
    )
    return duplicates


async def store_image_hash(
    backend: Backend,
    property_id: str,
    agent_id: str,
    image_hash: str,
    image_url: str | None,
    file_size: int | None,
) -> dict:
    """
    Record the fingerprint of an uploaded property image.

    Raises:
        BackendError: If the insert fails
    """
    record = ImageHashRecord(
        property_id=property_id,
        agent_id=agent_id,
        image_hash=image_hash,
        image_url=image_url,
        file_size=file_size,
    )
    row = await backend.insert(HASH_TABLE, record.model_dump())
    logger.info(
        "image_hash_stored",
        property_id=property_id,
        agent_id=agent_id,
        image_hash_prefix=image_hash[:12],
    )
    return row
