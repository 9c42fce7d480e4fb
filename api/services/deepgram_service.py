"""
Deepgram speech-to-text service.
Transcribes inbound WhatsApp voice notes with the Nova-2 model.
"""

import time

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import settings
from utils.metrics import track_external_service

logger = structlog.get_logger(__name__)

# Transcripts below this confidence are kept but flagged in the logs
LOW_CONFIDENCE = 0.6


class DeepgramService:
    """Service for Deepgram speech-to-text transcription."""

    def __init__(self):
        self.api_key = settings.deepgram_api_key
        self.listen_url = "https://api.deepgram.com/v1/listen"

    def build_params(self, options: dict | None = None) -> dict[str, str]:
        """
        Query parameters for a prerecorded transcription.

        DEEPGRAM_LANGUAGE=auto switches on language detection, for agents
        whose clients leave notes in Yoruba, Igbo or Hausa as well as English.
        """
        params = {
            "model": "nova-2",
            "smart_format": "true",
            "punctuate": "true",
        }
        if settings.deepgram_language == "auto":
            params["detect_language"] = "true"
        else:
            params["language"] = settings.deepgram_language
        params.update(options or {})
        return params

    @staticmethod
    def extract_transcript(result: dict) -> tuple[str, float]:
        """Pull the best transcript and its confidence out of a Deepgram response."""
        channels = result.get("results", {}).get("channels", [])
        if not channels:
            return "", 0.0

        alternatives = channels[0].get("alternatives", [])
        if not alternatives:
            return "", 0.0

        return alternatives[0].get("transcript", ""), alternatives[0].get("confidence", 0.0)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def transcribe(
        self,
        audio_data: bytes,
        content_type: str = "audio/ogg",
        options: dict | None = None,
    ) -> str:
        """
        Transcribe a voice note.

        Args:
            audio_data: Raw audio bytes as downloaded from Twilio
            content_type: MIME type reported by Twilio (WhatsApp sends audio/ogg)
            options: Extra Deepgram query parameters

        Returns:
            Transcribed text ("" when Deepgram hears no speech)
        """
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=60.0) as client:
                response = await client.post(
                    self.listen_url,
                    params=self.build_params(options),
                    headers={
                        "Authorization": f"Token {self.api_key}",
                        "Content-Type": content_type,
                    },
                    content=audio_data,
                )
                response.raise_for_status()
                result = response.json()

        except httpx.HTTPStatusError as e:
            track_external_service("deepgram", "error", time.time() - start_time)
            logger.error(
                "deepgram_http_error",
                status_code=e.response.status_code,
                audio_size=len(audio_data),
            )
            raise

        track_external_service("deepgram", "success", time.time() - start_time)

        transcript, confidence = self.extract_transcript(result)
        if transcript and confidence < LOW_CONFIDENCE:
            logger.warning("deepgram_low_confidence", confidence=confidence, transcript_length=len(transcript))

        logger.info(
            "deepgram_transcription_complete",
            transcript_length=len(transcript),
            duration_seconds=result.get("metadata", {}).get("duration", 0),
            confidence=confidence,
        )
        return transcript


# Singleton instance
deepgram_service = DeepgramService()
