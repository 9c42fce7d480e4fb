"""
Pytest configuration and shared fixtures.
"""

import hashlib
import hmac
import json
import os
import sys
from typing import Generator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing app
os.environ["ENVIRONMENT"] = "test"
os.environ["TESTING"] = "true"
os.environ["DEBUG_MODE"] = "false"
os.environ["LOG_FORMAT"] = "console"
os.environ["BACKEND_MODE"] = "memory"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_paystack_secret"
os.environ["TWILIO_ACCOUNT_SID"] = "ACtest000000000000000000000000000"
os.environ["TWILIO_AUTH_TOKEN"] = "test-twilio-token"
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
os.environ["DEEPGRAM_API_KEY"] = "test-deepgram-key"
os.environ["RESEND_API_KEY"] = "test-resend-key"
os.environ["APP_BASE_URL"] = "https://app.settlesmart.test"
os.environ["INVITATION_ORIGINS"] = "https://admin.settlesmart.ai, https://staging.settlesmart.ai/"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["TASK_RETRY_BASE_SECONDS"] = "0"
os.environ["TASK_RETRY_MAX_SECONDS"] = "0"
os.environ["TASK_MAX_ATTEMPTS"] = "3"

# Add api directory to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "api"))

PAYSTACK_SECRET = os.environ["PAYSTACK_SECRET_KEY"]


@pytest.fixture(scope="session")
def app():
    """Create FastAPI app instance."""
    from app import app as fastapi_app
    return fastapi_app


@pytest.fixture
def backend():
    """Fresh in-memory backend installed as the process-wide backend."""
    from services.backend import set_backend
    from services.memory_backend import InMemoryBackend

    memory_backend = InMemoryBackend()
    set_backend(memory_backend)
    yield memory_backend
    set_backend(None)


@pytest.fixture
def client(app, backend) -> Generator:
    """
    Create synchronous test client.

    The lifespan is not entered, so no workers run: submitted tasks stay
    pending until a test drains the queue.
    """
    yield TestClient(app)


@pytest.fixture(autouse=True)
def queue():
    """Empty task queue with the voice pipeline registered."""
    from services.task_queue import task_queue
    from services.voice_message_service import register_voice_tasks

    task_queue.reset()
    register_voice_tasks(task_queue)
    yield task_queue
    task_queue.reset()


# =============================================================================
# Mock Services
# =============================================================================

@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    mock = AsyncMock()
    mock.get.return_value = None
    mock.set.return_value = True
    mock.sadd.return_value = 1
    mock.smembers.return_value = set()
    mock.expire.return_value = True
    mock.delete.return_value = 1
    mock.ping.return_value = True
    return mock


@pytest.fixture(autouse=True)
def cache_redis(mock_redis):
    """Point the cache service at the mock Redis client."""
    from services.cache_service import cache_service

    cache_service._redis = mock_redis
    yield mock_redis
    cache_service._redis = None


@pytest.fixture
def mock_twilio_service():
    """Mock Twilio service."""
    mock = AsyncMock()
    mock.download_media.return_value = b"OggS fake voice note"
    mock.send_message.return_value = {"sid": "SMtest123", "status": "queued"}
    return mock


@pytest.fixture
def mock_deepgram_service():
    """Mock Deepgram STT service."""
    mock = AsyncMock()
    mock.transcribe.return_value = "I'd like to view the three bedroom flat in Lekki."
    return mock


@pytest.fixture
def mock_claude_service():
    """Mock Claude AI service."""
    mock = AsyncMock()
    mock.generate_voice_reply.return_value = "Thanks! An agent will call you to arrange a viewing."
    return mock


@pytest.fixture
def voice_providers(mock_twilio_service, mock_deepgram_service, mock_claude_service):
    """Patch every provider the voice pipeline calls."""
    with patch("services.voice_message_service.twilio_service", mock_twilio_service), \
            patch("services.voice_message_service.deepgram_service", mock_deepgram_service), \
            patch("services.voice_message_service.claude_service", mock_claude_service):
        yield {
            "twilio": mock_twilio_service,
            "deepgram": mock_deepgram_service,
            "claude": mock_claude_service,
        }


# =============================================================================
# Sample Payloads
# =============================================================================

@pytest.fixture
def sign_paystack():
    """Sign a body the way Paystack does."""
    def sign(body: bytes, secret: str = PAYSTACK_SECRET) -> str:
        return hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return sign


@pytest.fixture
def charge_success_body() -> bytes:
    """Raw charge.success event for reference abc123 (NGN 5,000.00)."""
    return json.dumps(
        {
            "event": "charge.success",
            "data": {"reference": "abc123", "amount": 500000, "customer": {}},
        }
    ).encode()


@pytest.fixture
def pending_payment(backend):
    """A pending payment row for reference abc123."""
    row = {
        "id": "pay-1",
        "transaction_id": "abc123",
        "amount": 500000,
        "status": "Pending",
        "user_id": "user-1",
    }
    backend.seed("payments", row)
    return row


@pytest.fixture
def agent_profile(backend):
    """An agent whose WhatsApp number receives voice notes."""
    row = {"id": "agent-1", "phone_number": "+2348031234567", "full_name": "Ada Agent"}
    backend.seed("profiles", row)
    return row


@pytest.fixture
def voice_webhook_form() -> dict:
    """Twilio inbound WhatsApp voice note callback fields."""
    return {
        "MessageSid": "SM0123456789abcdef",
        "From": "whatsapp:+2348061234567",
        "To": "whatsapp:+2348031234567",
        "NumMedia": "1",
        "MediaUrl0": "https://api.twilio.com/2010-04-01/Accounts/ACtest/Messages/SM01/Media/ME01",
        "MediaContentType0": "audio/ogg",
    }
