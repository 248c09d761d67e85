"""
Clinsight - Embedding Refresh Tasks
Celery tasks that keep the patient embedding index current
"""

import asyncio
import logging
from clinsight.celery_app import celery_app
from clinsight.modules.indexing import refresh_all_embeddings, refresh_patient_embedding

logger = logging.getLogger(__name__)


@celery_app.task(name="clinsight.tasks.embeddings.refresh_patient_embedding", bind=True, max_retries=3)
def refresh_patient_embedding_task(self, patient_id: str) -> dict:
    """
    Re-embed one patient if their content changed

    Args:
        patient_id: Patient identifier

    Returns:
        Indexing outcome
    """
    try:
        logger.info(f"Starting embedding refresh for patient {patient_id}")
        outcome = asyncio.run(refresh_patient_embedding(str(patient_id)))
        return outcome.model_dump(mode="json")

    except Exception as e:
        logger.error(f"Embedding refresh failed for patient {patient_id}: {e}", exc_info=True)
        raise self.retry(exc=e, countdown=60 * (2 ** self.request.retries))


@celery_app.task(name="clinsight.tasks.embeddings.refresh_all_embeddings")
def refresh_all_embeddings_task(active_only: bool = True) -> dict:
    """
    Refresh every active patient's embedding (scheduled nightly)

    Returns:
        Batch indexing report
    """
    try:
        report = asyncio.run(refresh_all_embeddings(active_only=active_only))
        logger.info(f"✓ Nightly refresh complete: {report.failed} failures out of {report.total}")
        return report.model_dump(mode="json")

    except Exception as e:
        logger.error(f"Embedding refresh run failed: {e}", exc_info=True)
        return {
            "status": "failed",
            "error": str(e)
        }
