"""
Shared fixtures and in-process collaborators for the Clinsight test suite
"""

import math
from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytest

from clinsight.exceptions import EmbeddingServiceError, ServiceUnavailableError
from clinsight.schemas import CheckupRecord, PatientEmbeddingRecord, PatientSummary, VisitRecord
from clinsight.services.embedding_service import EmbeddingService
from clinsight.services.llm_client import GenerativeClient
from clinsight.services.patient_source import PatientRecordSource
from clinsight.services.vector_index import InMemoryEmbeddingIndex


QUERY_VECTOR = [1.0, 0.0]


def vector_with_score(score: float) -> List[float]:
    """2-d unit vector whose cosine similarity to QUERY_VECTOR is score"""
    return [score, math.sqrt(max(0.0, 1.0 - score * score))]


@pytest.fixture
def anyio_backend():
    return "asyncio"


# =============================================================================
# Fake Collaborators
# =============================================================================

class FakeLLMClient(GenerativeClient):
    """Returns scripted responses in order; exceptions in the script are raised"""

    def __init__(self, responses: Optional[List[Any]] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise ServiceUnavailableError("No scripted response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeEmbeddingService(EmbeddingService):
    """Deterministic embeddings without loading a model"""

    def __init__(
        self,
        vector: Optional[List[float]] = None,
        fail_on: Optional[List[str]] = None,
        error: Optional[Exception] = None
    ):
        super().__init__(model_name="fake-embedding", embedding_dim=2)
        self.vector = vector or QUERY_VECTOR
        self.fail_on = fail_on or []
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingServiceError("Embedding generation failed")
        return list(self.vector)


class InMemoryPatientSource(PatientRecordSource):
    """Patient records held in dicts"""

    def __init__(
        self,
        patients: Optional[List[PatientSummary]] = None,
        visits: Optional[Dict[str, List[VisitRecord]]] = None,
        checkups: Optional[Dict[str, List[CheckupRecord]]] = None
    ):
        self.patients = {p.patient_id: p for p in patients or []}
        self.visits = visits or {}
        self.checkups = checkups or {}

    async def get_patient(self, patient_id: str) -> Optional[PatientSummary]:
        return self.patients.get(patient_id)

    async def list_patients(self, active_only: bool = True) -> List[PatientSummary]:
        return [
            p for p in self.patients.values()
            if not active_only or p.status == "active"
        ]

    async def recent_visits(self, patient_id: str, limit: int) -> List[VisitRecord]:
        visits = sorted(self.visits.get(patient_id, []), key=lambda v: v.visit_date, reverse=True)
        return visits[:limit]

    async def recent_checkups(self, patient_id: str, limit: int) -> List[CheckupRecord]:
        checkups = sorted(self.checkups.get(patient_id, []), key=lambda c: c.date, reverse=True)
        return checkups[:limit]


async def seed_index(index: InMemoryEmbeddingIndex, scores: Dict[str, float]) -> None:
    """Store one record per patient with a known similarity to QUERY_VECTOR"""
    for patient_id, score in scores.items():
        await index.upsert(PatientEmbeddingRecord(
            patient_id=patient_id,
            content=f"Patient {patient_id} record",
            vector=vector_with_score(score)
        ))


# =============================================================================
# Patient Fixtures
# =============================================================================

@pytest.fixture
def hypertensive_patient():
    return PatientSummary(
        patient_id="A",
        first_name="Cathleen",
        last_name="Widjaja",
        medical_record_number="MRN-001",
        date_of_birth=date(1961, 4, 2),
        gender="female",
        diagnosis="Hypertension, Diabetes",
        current_medications="lisinopril 10mg daily",
        vital_signs={"blood_pressure": "150/95", "heart_rate": 80},
    )


@pytest.fixture
def migraine_patient():
    return PatientSummary(
        patient_id="B",
        first_name="Marcus",
        last_name="Oyelaran",
        medical_record_number="MRN-002",
        diagnosis="Migraine",
        chief_complaint="Recurring headache",
    )


@pytest.fixture
def asthma_patient():
    return PatientSummary(
        patient_id="C",
        first_name="Ines",
        last_name="Carvalho",
        medical_record_number="MRN-003",
        diagnosis="Asthma",
        treatment_plan="Albuterol inhaler as needed",
    )


@pytest.fixture
def patient_pool(hypertensive_patient, migraine_patient, asthma_patient):
    return [hypertensive_patient, migraine_patient, asthma_patient]


@pytest.fixture
def sample_visits():
    return [
        VisitRecord(
            visit_date=datetime(2024, 1, 10, 9, 30),
            chief_complaint="Headache",
            diagnosis="Hypertension",
            treatment_plan="Start lisinopril",
        ),
        VisitRecord(
            visit_date=datetime(2024, 3, 5, 14, 0),
            chief_complaint="Follow-up",
            diagnosis="Hypertension, controlled",
            notes="Tolerating medication",
        ),
    ]


@pytest.fixture
def sample_checkups():
    return [
        CheckupRecord(date=datetime(2024, 1, 10, 9, 45), bp_sys=150, bp_dia=95, heart_rate=82),
        CheckupRecord(
            date=datetime(2024, 3, 5, 14, 10), bp_sys=132, bp_dia=84,
            heart_rate=74, temperature_c=36.8, weight=78.5
        ),
    ]
