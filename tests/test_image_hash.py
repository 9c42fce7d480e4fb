"""
Tests for property image fingerprinting and duplicate detection.
"""

import hashlib
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

HASH_TABLE = "property_image_hashes"
IMAGE_BYTES = b"\xff\xd8\xff\xe0fake jpeg body of a lovely duplex"


def _stored_hash(backend, agent_id="agent-2", property_id="prop-2"):
    backend.seed(
        HASH_TABLE,
        {
            "property_id": property_id,
            "agent_id": agent_id,
            "image_hash": hashlib.sha256(IMAGE_BYTES).hexdigest(),
            "image_url": "https://bucket.s3.amazonaws.com/properties/prop-2/x.jpg",
            "hash_algorithm": "sha256",
            "similarity_score": 1.0,
            "created_at": "2026-01-01T10:00:00",
        },
    )


class TestGenerateImageHash:
    """Tests for generate_image_hash."""

    def test_identical_bytes_identical_digest(self):
        from services.image_hash_service import generate_image_hash

        assert generate_image_hash(IMAGE_BYTES) == generate_image_hash(bytes(IMAGE_BYTES))

    def test_one_byte_change_changes_digest(self):
        from services.image_hash_service import generate_image_hash

        changed = bytearray(IMAGE_BYTES)
        changed[-1] ^= 0xFF

        assert generate_image_hash(IMAGE_BYTES) != generate_image_hash(bytes(changed))

    def test_lowercase_hex_sha256(self):
        from services.image_hash_service import generate_image_hash

        digest = generate_image_hash(b"abc")
        assert digest == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        assert len(digest) == 64


class TestCheckImageDuplicates:
    """Tests for check_image_duplicates."""

    @pytest.mark.asyncio
    async def test_finds_other_agents_image(self, backend):
        from services.image_hash_service import check_image_duplicates, generate_image_hash

        _stored_hash(backend)

        duplicates = await check_image_duplicates(backend, generate_image_hash(IMAGE_BYTES), "agent-1")

        assert len(duplicates) == 1
        assert duplicates[0].property_id == "prop-2"
        assert duplicates[0].agent_id == "agent-2"
        assert duplicates[0].similarity_score == 1.0

    @pytest.mark.asyncio
    async def test_own_images_are_not_duplicates(self, backend):
        from services.image_hash_service import check_image_duplicates, generate_image_hash

        _stored_hash(backend, agent_id="agent-1")

        duplicates = await check_image_duplicates(backend, generate_image_hash(IMAGE_BYTES), "agent-1")

        assert duplicates == []

    @pytest.mark.asyncio
    async def test_sends_procedure_parameters(self):
        from services.image_hash_service import check_image_duplicates

        backend = AsyncMock()
        backend.rpc.return_value = []

        await check_image_duplicates(backend, "a" * 64, "agent-1")

        backend.rpc.assert_awaited_once_with(
            "detect_image_duplicates",
            {"p_image_hash": "a" * 64, "p_agent_id": "agent-1", "p_similarity_threshold": 0.95},
        )

    @pytest.mark.asyncio
    async def test_backend_error_yields_no_duplicates(self):
        from services.backend import BackendError
        from services.image_hash_service import check_image_duplicates

        backend = AsyncMock()
        backend.rpc.side_effect = BackendError("rpc timeout", status_code=504)

        assert await check_image_duplicates(backend, "a" * 64, "agent-1") == []


class TestStoreImageHash:
    """Tests for store_image_hash."""

    @pytest.mark.asyncio
    async def test_stores_sha256_record(self, backend):
        from services.image_hash_service import store_image_hash

        row = await store_image_hash(backend, "prop-1", "agent-1", "b" * 64, "https://cdn/x.jpg", 1234)

        assert row["hash_algorithm"] == "sha256"
        assert row["similarity_score"] == 1.0
        assert backend.tables[HASH_TABLE][0]["file_size"] == 1234

    @pytest.mark.asyncio
    async def test_insert_error_propagates(self, backend):
        from services.backend import BackendError
        from services.image_hash_service import store_image_hash

        backend.fail_writes[HASH_TABLE] = BackendError("duplicate key", status_code=409, table=HASH_TABLE)

        with pytest.raises(BackendError):
            await store_image_hash(backend, "prop-1", "agent-1", "b" * 64, None, None)


class TestPropertyImageRoutes:
    """Tests for the property image endpoints."""

    def test_check_duplicates_reports_match(self, client, backend):
        _stored_hash(backend)

        response = client.post(
            "/properties/images/check-duplicates",
            files={"file": ("duplex.jpg", IMAGE_BYTES, "image/jpeg")},
            data={"agent_id": "agent-1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["image_hash"] == hashlib.sha256(IMAGE_BYTES).hexdigest()
        assert body["is_duplicate"] is True
        assert body["duplicates"][0]["property_id"] == "prop-2"

    def test_check_duplicates_unique_image(self, client, backend):
        response = client.post(
            "/properties/images/check-duplicates",
            files={"file": ("duplex.jpg", IMAGE_BYTES, "image/jpeg")},
            data={"agent_id": "agent-1"},
        )

        assert response.status_code == 200
        assert response.json()["is_duplicate"] is False
        assert response.json()["duplicates"] == []

    def test_rejects_non_image(self, client, backend):
        response = client.post(
            "/properties/images/check-duplicates",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"agent_id": "agent-1"},
        )

        assert response.status_code == 400

    def test_rejects_empty_file(self, client, backend):
        response = client.post(
            "/properties/images/check-duplicates",
            files={"file": ("empty.jpg", b"", "image/jpeg")},
            data={"agent_id": "agent-1"},
        )

        assert response.status_code == 400

    def test_rejects_oversized_image(self, client, backend):
        with patch("routes.properties.settings") as mock_settings:
            mock_settings.max_image_size_bytes = 8
            response = client.post(
                "/properties/images/check-duplicates",
                files={"file": ("duplex.jpg", IMAGE_BYTES, "image/jpeg")},
                data={"agent_id": "agent-1"},
            )

        assert response.status_code == 413
        assert response.json()["details"] == {"limit_bytes": 8}
        assert backend.tables.get(HASH_TABLE, []) == []

    @pytest.mark.asyncio
    async def test_upload_read_stops_past_limit(self):
        from middleware.error_handler import PayloadTooLargeError
        from routes.properties import _read_image

        upload = MagicMock(content_type="image/jpeg")
        upload.read = AsyncMock(return_value=b"x" * 9)

        with patch("routes.properties.settings") as mock_settings:
            mock_settings.max_image_size_bytes = 8
            with pytest.raises(PayloadTooLargeError):
                await _read_image(upload)

        upload.read.assert_awaited_once_with(9)

    def test_upload_warns_on_duplicate_but_stores(self, client, backend):
        _stored_hash(backend)

        with patch("routes.properties.storage_service") as mock_storage:
            mock_storage.upload_property_image = AsyncMock(
                return_value="https://bucket.s3.amazonaws.com/properties/prop-1/abc.jpg"
            )
            response = client.post(
                "/properties/prop-1/images",
                files={"file": ("duplex.jpg", IMAGE_BYTES, "image/jpeg")},
                data={"agent_id": "agent-1"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["image_url"] == "https://bucket.s3.amazonaws.com/properties/prop-1/abc.jpg"
        assert len(body["duplicates"]) == 1
        assert body["warning"] == "This image matches 1 existing listing from another agent."

        stored = [row for row in backend.tables[HASH_TABLE] if row["property_id"] == "prop-1"]
        assert len(stored) == 1
        assert stored[0]["agent_id"] == "agent-1"
        assert stored[0]["file_size"] == len(IMAGE_BYTES)

    def test_upload_unique_image_has_no_warning(self, client, backend):
        with patch("routes.properties.storage_service") as mock_storage:
            mock_storage.upload_property_image = AsyncMock(return_value="https://cdn/x.jpg")
            response = client.post(
                "/properties/prop-1/images",
                files={"file": ("duplex.jpg", IMAGE_BYTES, "image/jpeg")},
                data={"agent_id": "agent-1"},
            )

        assert response.status_code == 200
        assert response.json()["warning"] is None

    def test_upload_storage_failure_returns_502(self, client, backend):
        with patch("routes.properties.storage_service") as mock_storage:
            mock_storage.upload_property_image = AsyncMock(side_effect=RuntimeError("s3 unavailable"))
            response = client.post(
                "/properties/prop-1/images",
                files={"file": ("duplex.jpg", IMAGE_BYTES, "image/jpeg")},
                data={"agent_id": "agent-1"},
            )

        assert response.status_code == 502
        assert backend.tables[HASH_TABLE] == []


class TestStorageKeys:
    """Tests for S3 object naming."""

    def test_key_uses_hash_and_extension(self):
        from services.storage_service import StorageService

        key = StorageService.property_image_key("prop-1", "c" * 64, "Front View.JPG", "image/jpeg")
        assert key == f"properties/prop-1/{'c' * 64}.jpg"

    def test_key_falls_back_to_content_type(self):
        from services.storage_service import StorageService

        key = StorageService.property_image_key("prop-1", "c" * 64, None, "image/png")
        assert key == f"properties/prop-1/{'c' * 64}.png"
