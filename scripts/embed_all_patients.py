#!/usr/bin/env python3
"""
Clinsight - Full Re-index Script
Refreshes the embedding of every active patient, optionally after clearing the index
"""

import argparse
import asyncio
import logging
import sys

from sqlalchemy import delete

from clinsight.config import settings
from clinsight.models import PatientEmbedding
from clinsight.modules.indexing import get_index_maintainer

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def reset_index(maintainer) -> int:
    """Delete every stored embedding"""
    with maintainer.index.Session() as session:
        deleted = session.execute(delete(PatientEmbedding)).rowcount
        session.commit()
    logger.info(f"Deleted {deleted} existing patient embeddings")
    return deleted


def main():
    parser = argparse.ArgumentParser(description="Re-embed all active patients")
    parser.add_argument("--reset", action="store_true", help="Delete all embeddings first")
    parser.add_argument("--all", action="store_true", help="Include inactive patients")
    args = parser.parse_args()

    maintainer = get_index_maintainer()

    try:
        if args.reset:
            reset_index(maintainer)
        else:
            logger.info("--reset not set; existing embeddings will be updated in place")

        report = asyncio.run(maintainer.refresh_all(active_only=not args.all))
    except Exception as e:
        logger.error(f"✗ Error embedding patients: {e}", exc_info=True)
        return 1

    for error in report.errors:
        logger.warning(f"  {error['patient_id']}: {error['error']}")

    logger.info(f"✓ Processed {report.total} patients ({report.failed} failed)")
    return 0 if report.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
