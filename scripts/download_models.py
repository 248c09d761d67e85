#!/usr/bin/env python3
"""
Clinsight - Embedding Model Download Script
Pre-fetches the sentence-transformers model so workers start without a network call
"""

import sys
import logging

from clinsight.config import settings

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def download_embedding_model() -> bool:
    """Download and cache the configured embedding model"""
    logger.info("="*60)
    logger.info(f"Downloading embedding model: {settings.embedding_model_name}")
    logger.info("="*60)

    try:
        from sentence_transformers import SentenceTransformer
        model = SentenceTransformer(settings.embedding_model_name)
    except Exception as e:
        logger.error(f"✗ Failed to download {settings.embedding_model_name}: {e}")
        return False

    logger.info(f"✓ {settings.embedding_model_name} cached")
    return verify_model(model)


def verify_model(model) -> bool:
    """Check the model's output dimension against the index column"""
    dim = model.get_sentence_embedding_dimension()
    if dim != settings.embedding_dim:
        logger.error(f"✗ Model produces {dim}-dim vectors, index expects {settings.embedding_dim}")
        return False

    vector = model.encode("Patient with hypertension and type 2 diabetes", normalize_embeddings=True)
    logger.info(f"✓ Test encode produced a {len(vector)}-dim vector")
    return True


def main():
    """Main execution function"""
    logger.info("Clinsight - Embedding Model Download Script")
    logger.info(f"Python version: {sys.version}")

    if download_embedding_model():
        logger.info("\n✓ Embedding model downloaded and verified successfully!")
        return 0

    logger.error("\n✗ Embedding model download failed")
    return 1


if __name__ == "__main__":
    sys.exit(main())
