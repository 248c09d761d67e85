"""
Clinsight - Embedding Service
Sentence-transformers text embeddings, loaded lazily and encoded off the event loop
"""

import asyncio
import logging
from typing import List, Optional

from sentence_transformers import SentenceTransformer

from clinsight.config import settings
from clinsight.exceptions import ConfigurationError, EmbeddingServiceError

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Fixed-dimension text embeddings for patient content blobs and queries"""

    def __init__(self, model_name: Optional[str] = None, embedding_dim: Optional[int] = None):
        self.model_name = model_name or settings.embedding_model_name
        self.embedding_dim = embedding_dim or settings.embedding_dim
        self.model: Optional[SentenceTransformer] = None

    def _load_model(self) -> SentenceTransformer:
        """Load sentence transformer model on first use"""
        if self.model is not None:
            return self.model

        try:
            logger.info(f"Loading embedding model: {self.model_name}")
            model = SentenceTransformer(self.model_name)
        except Exception as e:
            logger.error(f"✗ Failed to load embedding model: {e}")
            raise EmbeddingServiceError(f"Could not load embedding model {self.model_name}") from e

        model_dim = model.get_sentence_embedding_dimension()
        if model_dim != self.embedding_dim:
            raise ConfigurationError(
                f"Model {self.model_name} produces {model_dim}-dim vectors, "
                f"index expects {self.embedding_dim}"
            )

        self.model = model
        logger.info(f"✓ Embedding model loaded (dim={self.embedding_dim})")
        return model

    def embed_sync(self, text: str) -> List[float]:
        """
        Generate embedding vector for text

        Args:
            text: Input text (truncated to the model's max sequence length)

        Returns:
            L2-normalized embedding vector
        """
        model = self._load_model()
        try:
            embedding = model.encode(
                text,
                convert_to_numpy=True,
                show_progress_bar=False,
                normalize_embeddings=True
            )
        except Exception as e:
            logger.error(f"Embedding generation failed: {e}")
            raise EmbeddingServiceError("Embedding generation failed") from e
        return embedding.tolist()

    async def embed(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed_sync, text)


# =============================================================================
# Global Service Instance
# =============================================================================

_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """Get or create embedding service instance"""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service
