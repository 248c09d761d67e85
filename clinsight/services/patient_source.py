"""
Clinsight - Patient Record Source
Read-only access to the external patient record store
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine, text as sql_text
from sqlalchemy.orm import sessionmaker

from clinsight.config import settings
from clinsight.schemas import CheckupRecord, PatientSummary, VisitRecord

logger = logging.getLogger(__name__)


class PatientRecordSource(ABC):
    """Collaborator interface; this core never writes patient records"""

    @abstractmethod
    async def get_patient(self, patient_id: str) -> Optional[PatientSummary]:
        ...

    @abstractmethod
    async def list_patients(self, active_only: bool = True) -> List[PatientSummary]:
        ...

    @abstractmethod
    async def recent_visits(self, patient_id: str, limit: int) -> List[VisitRecord]:
        """Most recent visits, newest first"""
        ...

    @abstractmethod
    async def recent_checkups(self, patient_id: str, limit: int) -> List[CheckupRecord]:
        """Most recent vital-sign checkups, newest first"""
        ...


# =============================================================================
# SQL Source
# =============================================================================

_PATIENT_COLUMNS = """
    id, first_name, last_name, medical_record_number, date_of_birth, gender,
    status, chief_complaint, symptoms, diagnosis, medical_history,
    treatment_plan, current_medications, allergies, vital_signs
"""


class SqlPatientSource(PatientRecordSource):
    """Patient records read from the patients, visits and checkups tables"""

    def __init__(self, database_url: Optional[str] = None):
        db_url = database_url or settings.get_database_url(sync=True)
        self.engine = create_engine(db_url, pool_pre_ping=True, echo=settings.database_echo)
        self.Session = sessionmaker(bind=self.engine)

    @staticmethod
    def _to_summary(row: Any) -> PatientSummary:
        data = dict(row._mapping)
        data["patient_id"] = data.pop("id")
        vitals = data.get("vital_signs")
        if isinstance(vitals, str):
            vitals = json.loads(vitals)
        data["vital_signs"] = vitals or {}
        return PatientSummary(**data)

    def _fetch(self, query: str, params: Dict[str, Any]) -> List[Any]:
        with self.Session() as session:
            return session.execute(sql_text(query), params).all()

    def _get_patient_sync(self, patient_id: str) -> Optional[PatientSummary]:
        rows = self._fetch(
            f"SELECT {_PATIENT_COLUMNS} FROM patients WHERE CAST(id AS TEXT) = :patient_id",
            {"patient_id": str(patient_id)}
        )
        return self._to_summary(rows[0]) if rows else None

    def _list_patients_sync(self, active_only: bool) -> List[PatientSummary]:
        query = f"SELECT {_PATIENT_COLUMNS} FROM patients"
        if active_only:
            query += " WHERE status = 'active'"
        query += " ORDER BY last_name, first_name"
        return [self._to_summary(row) for row in self._fetch(query, {})]

    def _recent_visits_sync(self, patient_id: str, limit: int) -> List[VisitRecord]:
        rows = self._fetch(
            """
            SELECT visit_date, chief_complaint, symptoms, diagnosis, treatment_plan,
                   medical_history, current_medications, allergies, notes
            FROM visits
            WHERE CAST(patient_id AS TEXT) = :patient_id
            ORDER BY visit_date DESC
            LIMIT :limit
            """,
            {"patient_id": str(patient_id), "limit": limit}
        )
        return [VisitRecord(**dict(row._mapping)) for row in rows]

    def _recent_checkups_sync(self, patient_id: str, limit: int) -> List[CheckupRecord]:
        rows = self._fetch(
            """
            SELECT date, bp_sys, bp_dia, heart_rate, temperature_c, weight, height
            FROM checkups
            WHERE CAST(patient_id AS TEXT) = :patient_id
            ORDER BY date DESC
            LIMIT :limit
            """,
            {"patient_id": str(patient_id), "limit": limit}
        )
        return [CheckupRecord(**dict(row._mapping)) for row in rows]

    async def get_patient(self, patient_id: str) -> Optional[PatientSummary]:
        return await asyncio.to_thread(self._get_patient_sync, patient_id)

    async def list_patients(self, active_only: bool = True) -> List[PatientSummary]:
        patients = await asyncio.to_thread(self._list_patients_sync, active_only)
        logger.debug(f"Loaded {len(patients)} patients (active_only={active_only})")
        return patients

    async def recent_visits(self, patient_id: str, limit: int) -> List[VisitRecord]:
        return await asyncio.to_thread(self._recent_visits_sync, patient_id, limit)

    async def recent_checkups(self, patient_id: str, limit: int) -> List[CheckupRecord]:
        return await asyncio.to_thread(self._recent_checkups_sync, patient_id, limit)


_patient_source: Optional[PatientRecordSource] = None


def get_patient_source() -> PatientRecordSource:
    """Get or create the SQL-backed patient source"""
    global _patient_source
    if _patient_source is None:
        _patient_source = SqlPatientSource()
    return _patient_source
