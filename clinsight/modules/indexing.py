"""
Clinsight Embedding Index Maintainer
Canonical patient content blobs, re-embedded only when their content changes
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from clinsight.config import settings
from clinsight.schemas import (
    BatchIndexingReport, CheckupRecord, IndexingOutcome, IndexingStatus,
    PatientEmbeddingRecord, PatientSummary, VisitRecord
)
from clinsight.services.embedding_service import EmbeddingService, get_embedding_service
from clinsight.services.patient_source import PatientRecordSource, get_patient_source
from clinsight.services.vector_index import EmbeddingIndex, get_embedding_index

logger = logging.getLogger(__name__)


NOT_RECORDED = "Not recorded"


# =============================================================================
# Canonical Content Blob
# =============================================================================

def _fmt_date(value) -> str:
    return value.strftime("%B %d, %Y") if value else "Not provided"


def _or_none(value: Optional[str]) -> str:
    return value if value else "None"


def _checkup_parts(checkup: CheckupRecord) -> List[str]:
    parts = []
    if checkup.bp_sys and checkup.bp_dia:
        parts.append(f"BP: {checkup.bp_sys}/{checkup.bp_dia} mmHg")
    if checkup.heart_rate:
        parts.append(f"HR: {checkup.heart_rate} bpm")
    if checkup.temperature_c is not None:
        parts.append(f"Temp: {checkup.temperature_c}°C")
    if checkup.weight:
        parts.append(f"Weight: {checkup.weight} kg")
    if checkup.height:
        parts.append(f"Height: {checkup.height} cm")
    return parts


def _snapshot_lines(patient: PatientSummary) -> List[str]:
    snapshot = patient.vital_signs or {}
    lines = []
    if snapshot.get("blood_pressure"):
        lines.append(f"Blood Pressure (snapshot): {snapshot['blood_pressure']} mmHg")
    if snapshot.get("heart_rate") is not None:
        lines.append(f"Heart Rate (snapshot): {snapshot['heart_rate']} bpm")
    if snapshot.get("temperature") is not None:
        lines.append(f"Temperature (snapshot): {snapshot['temperature']}°C")
    if snapshot.get("weight") is not None:
        lines.append(f"Weight (snapshot): {snapshot['weight']} kg")
    if snapshot.get("height") is not None:
        lines.append(f"Height (snapshot): {snapshot['height']} cm")
    return lines


def build_patient_document(
    patient: PatientSummary,
    visits: List[VisitRecord],
    checkups: List[CheckupRecord],
    max_visits: Optional[int] = None,
    max_checkups: Optional[int] = None
) -> str:
    """
    Aggregate a patient's summary, recent visits and recent checkups into one text

    Visits and checkups are ordered newest first and bounded. The output is
    deterministic for identical inputs, which is what change detection relies on.
    """
    max_visits = settings.index_recent_visits if max_visits is None else max_visits
    max_checkups = settings.index_recent_checkups if max_checkups is None else max_checkups

    visits = sorted(visits, key=lambda v: v.visit_date, reverse=True)[:max_visits]
    checkups = sorted(checkups, key=lambda c: c.date, reverse=True)[:max_checkups]
    snapshot = _snapshot_lines(patient)

    quick_reference = "No vital sign readings available."
    if checkups and _checkup_parts(checkups[0]):
        quick_reference = (
            f"Latest vital signs ({_fmt_date(checkups[0].date)}): "
            f"{', '.join(_checkup_parts(checkups[0]))}."
        )
        if len(checkups) > 1:
            quick_reference += f" Total of {len(checkups)} readings in history."
    elif snapshot:
        quick_reference = f"Latest vital signs (snapshot): {', '.join(snapshot)}."

    lines = [
        "# Patient Summary",
        f"- Name: {patient.full_name}",
        f"- Medical Record Number: {patient.medical_record_number or 'N/A'}",
        f"- DOB: {_fmt_date(patient.date_of_birth)}",
        f"- Gender: {patient.gender or 'Not specified'}",
        f"- Status: {patient.status or 'active'}",
        "",
        "# Current Medical Information",
        f"- Chief Complaint: {_or_none(patient.chief_complaint)}",
        f"- Symptoms: {_or_none(patient.symptoms)}",
        f"- Current Diagnosis: {_or_none(patient.diagnosis)}",
        f"- Current Treatment Plan: {_or_none(patient.treatment_plan)}",
        f"- Current Medications: {_or_none(patient.current_medications)}",
        f"- Known Allergies: {_or_none(patient.allergies)}",
        f"- Medical History (from patient record): {_or_none(patient.medical_history)}",
        "",
        "# Vital Signs Quick Reference",
        quick_reference,
        "",
    ]

    if visits:
        lines.append(f"## Past Clinical Visits ({len(visits)} most recent):")
        for i, visit in enumerate(visits, start=1):
            lines.extend([
                f"### Visit {i} ({_fmt_date(visit.visit_date)}):",
                f"- Chief Complaint: {_or_none(visit.chief_complaint)}",
                f"- Symptoms: {_or_none(visit.symptoms)}",
                f"- Diagnosis: {_or_none(visit.diagnosis)}",
                f"- Treatment Plan: {_or_none(visit.treatment_plan)}",
                f"- Medical History (from visit): {_or_none(visit.medical_history)}",
                f"- Medications (from visit): {_or_none(visit.current_medications)}",
                f"- Allergies (from visit): {_or_none(visit.allergies)}",
                f"- Notes: {_or_none(visit.notes)}",
            ])
    else:
        lines.append("## Past Clinical Visits: No visits recorded.")
    lines.append("")

    if checkups:
        lines.append(f"## Past Vital Sign Readings ({len(checkups)} most recent):")
        for i, checkup in enumerate(checkups, start=1):
            bp = f"{checkup.bp_sys}/{checkup.bp_dia} mmHg" if checkup.bp_sys and checkup.bp_dia else NOT_RECORDED
            lines.extend([
                f"### Vital Signs Reading {i} ({checkup.date.strftime('%B %d, %Y %H:%M')}):",
                f"- Blood Pressure: {bp}",
                f"- Heart Rate: {f'{checkup.heart_rate} bpm' if checkup.heart_rate else NOT_RECORDED}",
                f"- Temperature: {f'{checkup.temperature_c}°C' if checkup.temperature_c is not None else NOT_RECORDED}",
                f"- Weight: {f'{checkup.weight} kg' if checkup.weight else NOT_RECORDED}",
                f"- Height: {f'{checkup.height} cm' if checkup.height else NOT_RECORDED}",
            ])
    else:
        lines.append("## Past Vital Sign Readings: No vitals recorded.")

    if snapshot:
        lines.extend(["", "## Snapshot Vital Signs (from Patient record)"])
        lines.extend(f"- {line}" for line in snapshot)

    return "\n".join(lines).strip() + "\n"


# =============================================================================
# Index Maintainer
# =============================================================================

class EmbeddingIndexMaintainer:
    """Keeps one embedding record per patient in step with the patient's content"""

    def __init__(
        self,
        source: PatientRecordSource,
        index: EmbeddingIndex,
        embedding_service: EmbeddingService
    ):
        self.source = source
        self.index = index
        self.embedding_service = embedding_service

    async def refresh_patient(self, patient_id: str) -> IndexingOutcome:
        """
        Rebuild a patient's content blob and re-embed it only if it changed

        Raises:
            EmbeddingServiceError: the embedding call failed; nothing was written
        """
        patient = await self.source.get_patient(patient_id)
        if patient is None:
            logger.warning(f"Patient {patient_id} not found - skipping embedding refresh")
            return IndexingOutcome(patient_id=patient_id, status=IndexingStatus.SKIPPED, reason="Patient not found")

        visits = await self.source.recent_visits(patient_id, settings.index_recent_visits)
        checkups = await self.source.recent_checkups(patient_id, settings.index_recent_checkups)
        content = build_patient_document(patient, visits, checkups)

        existing = await self.index.get(patient_id)
        if existing is not None and existing.content == content:
            logger.debug(f"Patient {patient_id} content unchanged - skipping re-embedding")
            return IndexingOutcome(
                patient_id=patient_id,
                status=IndexingStatus.UNCHANGED,
                last_updated=existing.last_updated
            )

        vector = await self.embedding_service.embed(content)
        record = PatientEmbeddingRecord(
            patient_id=patient_id,
            content=content,
            vector=vector,
            last_updated=datetime.now(timezone.utc),
            model=self.embedding_service.model_name
        )
        await self.index.upsert(record)

        status = IndexingStatus.CREATED if existing is None else IndexingStatus.UPDATED
        logger.info(f"✓ Embedding {status.value} for patient {patient_id}")
        return IndexingOutcome(patient_id=patient_id, status=status, last_updated=record.last_updated)

    async def refresh_all(self, active_only: bool = True) -> BatchIndexingReport:
        """Refresh every patient one at a time; a failing patient does not stop the batch"""
        patients = await self.source.list_patients(active_only=active_only)
        report = BatchIndexingReport(total=len(patients))
        logger.info(f"Refreshing embeddings for {len(patients)} patients")

        for patient in patients:
            try:
                report.record(await self.refresh_patient(patient.patient_id))
            except Exception as e:
                report.failed += 1
                report.errors.append({"patient_id": patient.patient_id, "error": str(e)})
                logger.error(f"✗ Embedding refresh failed for patient {patient.patient_id}: {e}")

        logger.info(
            f"Embedding refresh complete: {report.created} created, {report.updated} updated, "
            f"{report.unchanged} unchanged, {report.skipped} skipped, {report.failed} failed"
        )
        return report


# =============================================================================
# Public API
# =============================================================================

def get_index_maintainer() -> EmbeddingIndexMaintainer:
    """Maintainer wired to the configured patient source, index and embedding model"""
    return EmbeddingIndexMaintainer(
        source=get_patient_source(),
        index=get_embedding_index(),
        embedding_service=get_embedding_service()
    )


async def refresh_patient_embedding(patient_id: str) -> IndexingOutcome:
    return await get_index_maintainer().refresh_patient(patient_id)


async def refresh_all_embeddings(active_only: bool = True) -> BatchIndexingReport:
    return await get_index_maintainer().refresh_all(active_only=active_only)
