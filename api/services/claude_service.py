"""
Claude AI service for voice-message replies.
Turns a transcribed client voice note into a short reply from the agent's
real-estate assistant.
"""

import anthropic
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config import settings

logger = structlog.get_logger(__name__)

FALLBACK_REPLY = "Thank you for your message. Our team will get back to you soon."

SYSTEM_PROMPT = """You are a helpful real estate assistant for SettleSmart AI agents.
A client has sent the agent a WhatsApp voice message. Reply on the agent's behalf
about real estate services: viewings, listings, pricing, availability and next steps.

- Be professional, concise and friendly
- Never invent specific property details, prices or addresses
- Offer to have the agent follow up when you cannot answer"""


class ClaudeService:
    """Service for Claude AI interactions."""

    def __init__(self):
        self.client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
        self.model = settings.anthropic_model

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((anthropic.APIConnectionError, anthropic.RateLimitError)),
        reraise=True,
    )
    async def _call_claude(
        self,
        messages: list[dict],
        system: str,
        max_tokens: int = 300,
        temperature: float = 0.7,
    ) -> str:
        """Make a call to Claude API with retry logic."""
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=messages,
            )
            return "".join(block.text for block in response.content if block.type == "text")
        except anthropic.APIError as e:
            logger.error("claude_api_error", error=str(e), error_type=type(e).__name__)
            raise

    async def generate_voice_reply(self, transcription: str) -> str:
        """
        Generate a reply to a transcribed voice message.

        Args:
            transcription: What the client said

        Returns:
            Reply text, or the fallback reply when the model returns nothing
        """
        if not transcription.strip():
            return FALLBACK_REPLY

        messages = [
            {
                "role": "user",
                "content": f'A client sent this voice message: "{transcription}"\n\n'
                "Write the reply to send back.",
            }
        ]

        response = await self._call_claude(messages=messages, system=SYSTEM_PROMPT)
        reply = response.strip() or FALLBACK_REPLY

        logger.info("voice_reply_generated", reply_length=len(reply))
        return reply


# Singleton instance
claude_service = ClaudeService()
