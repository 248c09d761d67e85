"""
Clinsight - Patient Embedding Index
Similarity search over canonical patient content blobs, backed by pgvector or memory
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy import create_engine, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.orm import sessionmaker

from clinsight.config import settings
from clinsight.models import PatientEmbedding
from clinsight.schemas import IndexHit, PatientEmbeddingRecord

logger = logging.getLogger(__name__)


class EmbeddingIndex(ABC):
    """Read-mostly store of one embedding record per patient"""

    @abstractmethod
    async def get(self, patient_id: str) -> Optional[PatientEmbeddingRecord]:
        ...

    @abstractmethod
    async def upsert(self, record: PatientEmbeddingRecord) -> None:
        ...

    @abstractmethod
    async def search(self, vector: List[float], top_k: int) -> List[IndexHit]:
        """Top-k most similar records, best first, scored by cosine similarity"""
        ...


# =============================================================================
# pgvector Index
# =============================================================================

class PgVectorIndex(EmbeddingIndex):
    """Embedding index stored in the patient_embeddings table"""

    def __init__(self, database_url: Optional[str] = None):
        db_url = database_url or settings.get_database_url(sync=True)
        # pgvector queries run on a sync engine, moved off the event loop
        self.engine = create_engine(
            db_url,
            pool_pre_ping=True,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            echo=settings.database_echo
        )
        self.Session = sessionmaker(bind=self.engine)
        logger.info("✓ Embedding index database connection initialized")

    @staticmethod
    def _to_record(row: PatientEmbedding) -> PatientEmbeddingRecord:
        return PatientEmbeddingRecord(
            patient_id=row.patient_id,
            content=row.content,
            vector=[float(v) for v in row.embedding],
            last_updated=row.last_updated,
            model=row.model
        )

    def _get_sync(self, patient_id: str) -> Optional[PatientEmbeddingRecord]:
        with self.Session() as session:
            row = session.get(PatientEmbedding, patient_id)
            return self._to_record(row) if row is not None else None

    def _upsert_sync(self, record: PatientEmbeddingRecord) -> None:
        values = {
            "patient_id": record.patient_id,
            "content": record.content,
            "embedding": record.vector,
            "model": record.model,
            "last_updated": record.last_updated,
        }
        statement = insert(PatientEmbedding).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=[PatientEmbedding.patient_id],
            set_={key: statement.excluded[key] for key in values if key != "patient_id"}
        )
        with self.Session() as session:
            try:
                session.execute(statement)
                session.commit()
            except Exception as e:
                session.rollback()
                logger.error(f"Failed to upsert embedding for patient {record.patient_id}: {e}")
                raise

    def _search_sync(self, vector: List[float], top_k: int) -> List[IndexHit]:
        distance = PatientEmbedding.embedding.cosine_distance(vector)
        query = (
            select(PatientEmbedding.patient_id, PatientEmbedding.content, (1 - distance).label("score"))
            .order_by(distance)
            .limit(top_k)
        )
        with self.Session() as session:
            rows = session.execute(query).all()
        return [IndexHit(patient_id=row.patient_id, content=row.content, score=float(row.score)) for row in rows]

    async def get(self, patient_id: str) -> Optional[PatientEmbeddingRecord]:
        return await asyncio.to_thread(self._get_sync, patient_id)

    async def upsert(self, record: PatientEmbeddingRecord) -> None:
        await asyncio.to_thread(self._upsert_sync, record)

    async def search(self, vector: List[float], top_k: int) -> List[IndexHit]:
        hits = await asyncio.to_thread(self._search_sync, vector, top_k)
        logger.info(f"Embedding search returned {len(hits)} hits (top_k={top_k})")
        return hits


# =============================================================================
# In-Memory Index
# =============================================================================

class InMemoryEmbeddingIndex(EmbeddingIndex):
    """Process-local index for tests and small deployments"""

    def __init__(self):
        self._records: Dict[str, PatientEmbeddingRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, patient_id: str) -> Optional[PatientEmbeddingRecord]:
        return self._records.get(patient_id)

    async def upsert(self, record: PatientEmbeddingRecord) -> None:
        if record.last_updated is None:
            record = record.model_copy(update={"last_updated": datetime.now(timezone.utc)})
        self._records[record.patient_id] = record

    async def search(self, vector: List[float], top_k: int) -> List[IndexHit]:
        if not self._records:
            return []

        ids = list(self._records)
        matrix = np.array([self._records[pid].vector for pid in ids], dtype=float)
        query = np.asarray(vector, dtype=float)

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        scores = matrix @ query / norms

        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            IndexHit(
                patient_id=ids[i],
                content=self._records[ids[i]].content,
                score=float(scores[i])
            )
            for i in order
        ]


# =============================================================================
# Global Index Instance
# =============================================================================

_embedding_index: Optional[EmbeddingIndex] = None


def get_embedding_index() -> EmbeddingIndex:
    """Get or create the configured embedding index"""
    global _embedding_index
    if _embedding_index is None:
        _embedding_index = PgVectorIndex()
    return _embedding_index
