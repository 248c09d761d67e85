"""
Clinsight Database Models
SQLAlchemy 2.0 ORM model for the patient embedding index (pgvector)
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func
from pgvector.sqlalchemy import Vector

from clinsight.config import settings


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


# =============================================================================
# Embedding Index
# =============================================================================

class PatientEmbedding(Base):
    """Canonical content blob and embedding for one patient"""
    __tablename__ = "patient_embeddings"

    # Owning reference to the external patient record
    patient_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    content: Mapped[str] = mapped_column(Text, nullable=False)

    # Dimension must match the embedding model (384 for all-MiniLM-L6-v2)
    embedding: Mapped[Vector] = mapped_column(Vector(settings.embedding_dim), nullable=False)

    model: Mapped[Optional[str]] = mapped_column(String(200))
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index(
            "idx_patient_embedding_vector",
            "embedding",
            postgresql_using="ivfflat",
            postgresql_with={"lists": 100},
            postgresql_ops={"embedding": "vector_cosine_ops"}
        ),
    )

    def __repr__(self) -> str:
        return f"<PatientEmbedding(patient_id={self.patient_id}, model={self.model})>"
