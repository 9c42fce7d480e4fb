#!/usr/bin/env python3
"""
Re-submit voice messages whose transcription never finished.
Run after an outage of Twilio, Deepgram or Claude, or via cron.

Picks up records still `pending` (the process died before the task ran)
or `failed` (the task was dead-lettered), plus transcribed messages whose
reply was never sent.

Usage:
    python -m scripts.requeue_transcriptions
"""

import asyncio
import sys
from pathlib import Path

# Add api directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "api"))

import structlog  # noqa: E402
from models.records import TranscriptionStatus  # noqa: E402
from services.backend import get_backend  # noqa: E402
from services.task_queue import task_queue  # noqa: E402
from services.voice_message_service import (  # noqa: E402
    SEND_RESPONSE_TASK,
    TRANSCRIBE_TASK,
    VOICE_TABLE,
    register_voice_tasks,
)

logger = structlog.get_logger(__name__)


async def requeue() -> dict[str, int]:
    """Submit the unfinished voice messages and run them to completion."""
    backend = get_backend()
    register_voice_tasks(task_queue)

    submitted = 0
    skipped = 0

    for status in (TranscriptionStatus.PENDING, TranscriptionStatus.FAILED):
        rows = await backend.select(VOICE_TABLE, {"transcription_status": status.value})
        for row in rows:
            if not row.get("media_url"):
                skipped += 1
                continue
            task_queue.submit(
                TRANSCRIBE_TASK,
                {"voice_message_id": row["id"], "media_url": row["media_url"]},
                task_id=f"transcribe:{row['id']}",
            )
            submitted += 1

    unsent = await backend.select(
        VOICE_TABLE,
        {"transcription_status": TranscriptionStatus.COMPLETED.value, "response_sent": False},
    )
    for row in unsent:
        task_queue.submit(
            SEND_RESPONSE_TASK,
            {"voice_message_id": row["id"]},
            task_id=f"send-response:{row['id']}",
        )
        submitted += 1

    processed = await task_queue.drain()

    return {
        "submitted": submitted,
        "skipped": skipped,
        "processed": processed,
        "dead_letters": len(task_queue.dead_letters),
    }


async def main() -> None:
    """Run the requeue job."""
    logger.info("starting_transcription_requeue")

    try:
        results = await requeue()

        logger.info("transcription_requeue_complete", **results)

        # Print summary for cron log
        print(
            f"Requeue complete: {results['submitted']} submitted, {results['processed']} processed, "
            f"{results['dead_letters']} dead-lettered, {results['skipped']} skipped"
        )

        if results["dead_letters"]:
            sys.exit(1)

    except Exception as e:
        logger.error("transcription_requeue_error", error=str(e))
        print(f"Error requeueing transcriptions: {e}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
