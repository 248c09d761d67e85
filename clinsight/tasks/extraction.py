"""
Clinsight - Extraction Tasks
Celery tasks for asynchronous transcript extraction
"""

import asyncio
import logging
from typing import List
from clinsight.celery_app import celery_app
from clinsight.exceptions import ExtractionFailedError
from clinsight.modules.extraction import extract_medical_info

logger = logging.getLogger(__name__)


def _run_extraction(text: str) -> dict:
    try:
        result = asyncio.run(extract_medical_info(text))
    except ExtractionFailedError as e:
        logger.warning(f"Extraction produced no usable data: {e}")
        return {"success": False, "error": str(e)}

    return {
        "success": True,
        "data": result.model_dump(mode="json", by_alias=True),
        "record_fields": result.to_record_fields(),
    }


@celery_app.task(name="clinsight.tasks.extraction.extract_medical_info", bind=True, max_retries=3)
def extract_medical_info_task(self, text: str) -> dict:
    """
    Extract structured medical information from a transcript

    Args:
        text: Raw transcript text

    Returns:
        {"success": True, "data": ..., "record_fields": ...} or
        {"success": False, "error": ...} when nothing usable was extracted
    """
    try:
        logger.info(f"Starting transcript extraction ({len(text or '')} chars)")
        return _run_extraction(text)

    except Exception as e:
        logger.error(f"Extraction task failed: {e}", exc_info=True)
        # Retry with exponential backoff
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


@celery_app.task(name="clinsight.tasks.extraction.batch_extract")
def batch_extract_task(transcripts: List[dict]) -> List[dict]:
    """
    Batch extraction for multiple transcripts

    Args:
        transcripts: List of {transcript_id, text} dicts

    Returns:
        One result per transcript, tagged with its transcript_id
    """
    results = []
    for item in transcripts:
        try:
            outcome = _run_extraction(item["text"])
        except Exception as e:
            logger.error(f"Batch extraction failed for transcript {item.get('transcript_id')}: {e}")
            outcome = {"success": False, "error": str(e)}
        outcome["transcript_id"] = item.get("transcript_id")
        results.append(outcome)

    return results
