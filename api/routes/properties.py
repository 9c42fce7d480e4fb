"""
Property image routes.
Fingerprints uploaded images and warns when another agent already listed
the same picture.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile

from config import settings
from middleware.error_handler import ExternalServiceError, PayloadTooLargeError, ValidationError
from models.records import DuplicateCheckResponse, DuplicateImage, ImageUploadResponse
from services.backend import Backend, get_backend
from services.image_hash_service import check_image_duplicates, generate_image_hash, store_image_hash
from services.storage_service import storage_service

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _read_image(file: UploadFile) -> bytes:
    if file.content_type and not file.content_type.startswith("image/"):
        raise ValidationError("File must be an image", details={"content_type": file.content_type})

    limit = settings.max_image_size_bytes
    # One byte past the limit is enough to know the upload is too large
    data = await file.read(limit + 1)
    if not data:
        raise ValidationError("File is empty")
    if len(data) > limit:
        raise PayloadTooLargeError("Image is too large", limit=limit)
    return data


def _duplicate_warning(duplicates: list[DuplicateImage]) -> Optional[str]:
    if not duplicates:
        return None
    listings = len({d.property_id for d in duplicates})
    noun = "listing" if listings == 1 else "listings"
    return f"This image matches {listings} existing {noun} from another agent."


@router.post("/images/check-duplicates", response_model=DuplicateCheckResponse)
async def check_duplicates(
    file: UploadFile = File(...),
    agent_id: str = Form(...),
    similarity_threshold: Optional[float] = Form(None, ge=0.0, le=1.0),
    backend: Backend = Depends(get_backend),
) -> DuplicateCheckResponse:
    """Hash an image and report matching images from other agents."""
    data = await _read_image(file)
    image_hash = generate_image_hash(data)

    duplicates = await check_image_duplicates(backend, image_hash, agent_id, similarity_threshold)

    return DuplicateCheckResponse(
        image_hash=image_hash,
        is_duplicate=bool(duplicates),
        duplicates=duplicates,
    )


@router.post("/{property_id}/images", response_model=ImageUploadResponse)
async def upload_property_image(
    property_id: str,
    file: UploadFile = File(...),
    agent_id: str = Form(...),
    backend: Backend = Depends(get_backend),
) -> ImageUploadResponse:
    """
    Upload a property image.
    Duplicates never block the upload; they come back as a warning.
    """
    data = await _read_image(file)
    image_hash = generate_image_hash(data)

    duplicates = await check_image_duplicates(backend, image_hash, agent_id)
    if duplicates:
        logger.warning(
            "duplicate_property_image",
            property_id=property_id,
            agent_id=agent_id,
            matches=len(duplicates),
        )

    try:
        image_url = await storage_service.upload_property_image(
            data,
            property_id=property_id,
            image_hash=image_hash,
            filename=file.filename,
            content_type=file.content_type or "image/jpeg",
        )
    except Exception as e:
        raise ExternalServiceError("s3", "Image upload failed") from e

    await store_image_hash(backend, property_id, agent_id, image_hash, image_url, len(data))

    return ImageUploadResponse(
        image_hash=image_hash,
        image_url=image_url,
        duplicates=duplicates,
        warning=_duplicate_warning(duplicates),
    )
