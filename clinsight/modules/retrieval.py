"""
Clinsight Evidence Retriever
Confidence-gated semantic search with fuzzy keyword validation and keyword fallback
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

import numpy as np

from clinsight.config import settings
from clinsight.modules.classification import QueryClassifier
from clinsight.modules.normalization import (
    STOP_WORDS, derive_query_keywords, expand_keywords, normalize_text, text_matches_keywords
)
from clinsight.schemas import (
    ClassificationResult, IndexHit, MatchSource, PatientSummary, RetrievalMode,
    RetrievalQuery, RetrievalResult, RetrievalStatus, RetrievedPatient
)
from clinsight.services.embedding_service import EmbeddingService, get_embedding_service
from clinsight.services.llm_client import GenerativeClient
from clinsight.services.patient_source import PatientRecordSource, get_patient_source
from clinsight.services.vector_index import EmbeddingIndex, get_embedding_index

logger = logging.getLogger(__name__)


SNIPPET_LENGTH = 300
NAME_LOOKUP_TOP_K = 5


# =============================================================================
# Patient Name Resolution
# =============================================================================

class NamePatterns:
    """Where a patient name tends to appear in an interactive query"""

    AFTER_CUE = re.compile(
        r'\b(?:for|about|of|patient)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)',
        re.IGNORECASE
    )

    BEFORE_TOPIC = re.compile(
        r'\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)(?:\'s)?\s+'
        r'(?:temperature|vitals|history|blood\s+pressure|heart\s+rate)',
        re.IGNORECASE
    )


def extract_patient_names(query: str) -> List[str]:
    """Candidate patient names mentioned in a query, most likely first"""
    names: List[str] = []
    for pattern in (NamePatterns.AFTER_CUE, NamePatterns.BEFORE_TOPIC):
        for match in pattern.finditer(query):
            tokens = [t for t in match.group(1).split() if normalize_text(t) not in STOP_WORDS]
            if tokens:
                name = " ".join(tokens)
                if name not in names:
                    names.append(name)
    return names


def find_patient_by_name(name: str, candidates: Iterable[PatientSummary]) -> Optional[PatientSummary]:
    """
    Resolve a name against the candidate pool

    Exact first, last or full name matches win; otherwise a first-name
    prefix or full-name substring of at least three characters.
    """
    search = normalize_text(name)
    if not search:
        return None

    candidates = list(candidates)
    for patient in candidates:
        first = normalize_text(patient.first_name)
        last = normalize_text(patient.last_name)
        if search in (first, last, normalize_text(patient.full_name)):
            return patient

    if len(search) < 3:
        return None
    for patient in candidates:
        first = normalize_text(patient.first_name)
        if first.startswith(search) or search in normalize_text(patient.full_name):
            return patient
    return None


def _candidate_snippet(patient: PatientSummary) -> str:
    parts = [patient.full_name]
    for label, value in (("Diagnosis", patient.diagnosis), ("Chief complaint", patient.chief_complaint)):
        if value:
            parts.append(f"{label}: {value}")
    return " | ".join(part for part in parts if part)[:SNIPPET_LENGTH]


# =============================================================================
# Evidence Retriever
# =============================================================================

class EvidenceRetriever:
    """Narrow a candidate pool to the patients relevant to a free-text query"""

    def __init__(
        self,
        index: EmbeddingIndex,
        embedding_service: EmbeddingService,
        classifier: Optional[QueryClassifier] = None
    ):
        self.index = index
        self.embedding_service = embedding_service
        self.classifier = classifier or QueryClassifier()

    async def _semantic_search(self, text: str, top_k: int) -> List[IndexHit]:
        """Embed and search; any service failure counts as zero results"""
        try:
            vector = await self.embedding_service.embed(text)
            return await self.index.search(vector, top_k)
        except Exception as e:
            logger.warning(f"Semantic search unavailable, treating as zero results: {e}")
            return []

    async def _direct_lookup(
        self,
        patient_id: str,
        patient: Optional[PatientSummary]
    ) -> Optional[RetrievedPatient]:
        """Fetch one patient's record by identifier, bypassing semantic ranking"""
        try:
            record = await self.index.get(patient_id)
        except Exception as e:
            logger.warning(f"Direct lookup failed for patient {patient_id}: {e}")
            record = None

        if record is not None:
            logger.info(f"✓ Direct lookup hit for patient {patient_id}")
            return RetrievedPatient(
                patient_id=patient_id,
                similarity_score=1.0,
                content_snippet=record.content[:SNIPPET_LENGTH],
                match_source=MatchSource.DIRECT_LOOKUP
            )

        if patient is None:
            return None

        lookup_text = " ".join(p for p in (patient.first_name, patient.last_name, patient.medical_record_number) if p)
        for hit in await self._semantic_search(lookup_text, NAME_LOOKUP_TOP_K):
            if hit.patient_id == patient_id:
                logger.info(f"✓ Located patient {patient_id} via name search")
                return RetrievedPatient(
                    patient_id=patient_id,
                    similarity_score=hit.score,
                    content_snippet=hit.content[:SNIPPET_LENGTH],
                    match_source=MatchSource.SEMANTIC
                )

        logger.info(f"Patient {patient_id} not indexed, using candidate record")
        return RetrievedPatient(
            patient_id=patient_id,
            similarity_score=None,
            content_snippet=_candidate_snippet(patient),
            match_source=MatchSource.DIRECT_LOOKUP
        )

    async def _resolve_target(
        self,
        query: RetrievalQuery,
        by_id: Dict[str, PatientSummary]
    ) -> Optional[RetrievedPatient]:
        if query.patient_id:
            return await self._direct_lookup(query.patient_id, by_id.get(query.patient_id))

        if query.mode != RetrievalMode.INTERACTIVE:
            return None

        for name in extract_patient_names(query.text):
            patient = find_patient_by_name(name, by_id.values())
            if patient is not None:
                logger.info(f"Query names patient {patient.patient_id}")
                return await self._direct_lookup(patient.patient_id, patient)
        return None

    @staticmethod
    def _keyword_filter(
        patients: Iterable[PatientSummary],
        keywords: List[str],
        source: MatchSource,
        hits: Optional[Dict[str, IndexHit]] = None
    ) -> List[RetrievedPatient]:
        """Keep patients with an expanded keyword in any clinical-text field"""
        if not keywords:
            return []
        kept = []
        for patient in patients:
            if not any(text_matches_keywords(field, keywords) for field in patient.clinical_text_fields()):
                continue
            hit = (hits or {}).get(patient.patient_id)
            kept.append(RetrievedPatient(
                patient_id=patient.patient_id,
                similarity_score=hit.score if hit else None,
                content_snippet=hit.content[:SNIPPET_LENGTH] if hit else _candidate_snippet(patient),
                match_source=source
            ))
        return kept

    async def retrieve(
        self,
        query: RetrievalQuery,
        candidates: List[PatientSummary]
    ) -> RetrievalResult:
        """
        Run the retrieval state machine for one request

        Args:
            query: Free-text request with top_k, optional patient id and mode
            candidates: The population to narrow (read-only)

        Returns:
            RetrievalResult whose status tells matched, population-wide and
            no-match outcomes apart
        """
        by_id: Dict[str, PatientSummary] = {}
        for patient in candidates:
            by_id.setdefault(patient.patient_id, patient)

        text = query.text.strip()

        # Identifier without a question: direct lookup only
        if not text:
            if query.patient_id:
                target = await self._direct_lookup(query.patient_id, by_id.get(query.patient_id))
                if target is not None:
                    return RetrievalResult(status=RetrievalStatus.MATCHED, patients=[target])
                return RetrievalResult(
                    status=RetrievalStatus.NO_MATCH,
                    message=f"No indexed record for patient {query.patient_id}"
                )
            return RetrievalResult(status=RetrievalStatus.NO_MATCH, message="Empty query")

        classification: ClassificationResult = await self.classifier.classify(text)

        if classification.is_population:
            logger.info(f"Population query - using all {len(by_id)} candidates")
            pinned_id = query.patient_id if query.patient_id in by_id else None
            ordered = ([by_id[pinned_id]] if pinned_id else []) + [
                p for pid, p in by_id.items() if pid != pinned_id
            ]
            return RetrievalResult(
                status=RetrievalStatus.POPULATION,
                classification=classification,
                patients=[
                    RetrievedPatient(
                        patient_id=p.patient_id,
                        content_snippet=_candidate_snippet(p),
                        match_source=MatchSource.POPULATION
                    )
                    for p in ordered
                ]
            )

        target = await self._resolve_target(query, by_id)

        hits = await self._semantic_search(text, query.top_k)
        mean_similarity = float(np.mean([hit.score for hit in hits])) if hits else None

        hit_by_id: Dict[str, IndexHit] = {}
        for hit in hits:
            if hit.patient_id in by_id:
                hit_by_id.setdefault(hit.patient_id, hit)
        logger.info(
            f"Semantic search: {len(hits)} hits, {len(hit_by_id)} in candidate pool, "
            f"mean similarity={mean_similarity if mean_similarity is None else round(mean_similarity, 3)}"
        )

        keywords = expand_keywords(derive_query_keywords(text))
        keyword_validation_applied = False

        if hit_by_id and mean_similarity > settings.retrieval_high_confidence_threshold:
            logger.info("High-confidence semantic results - keeping all matches")
            semantic_patients = [
                RetrievedPatient(
                    patient_id=pid,
                    similarity_score=hit.score,
                    content_snippet=hit.content[:SNIPPET_LENGTH],
                    match_source=MatchSource.SEMANTIC
                )
                for pid, hit in hit_by_id.items()
            ]
        elif hit_by_id:
            keyword_validation_applied = True
            semantic_patients = self._keyword_filter(
                (by_id[pid] for pid in hit_by_id), keywords, MatchSource.KEYWORD_VALIDATED, hit_by_id
            )
            logger.info(f"Keyword validation kept {len(semantic_patients)}/{len(hit_by_id)} patients")
        else:
            semantic_patients = []

        patients: List[RetrievedPatient] = [target] if target is not None else []
        fallback_applied = False

        if not semantic_patients and not patients:
            fallback_applied = True
            semantic_patients = self._keyword_filter(by_id.values(), keywords, MatchSource.KEYWORD_FALLBACK)
            logger.info(f"Keyword fallback found {len(semantic_patients)} patients")

        seen = {p.patient_id for p in patients}
        for patient in semantic_patients:
            if patient.patient_id not in seen:
                seen.add(patient.patient_id)
                patients.append(patient)

        if not patients:
            logger.warning("No patients matched condition-specific query")
            return RetrievalResult(
                status=RetrievalStatus.NO_MATCH,
                classification=classification,
                mean_similarity=mean_similarity,
                keyword_validation_applied=keyword_validation_applied,
                fallback_applied=fallback_applied,
                message=f"No patients found matching \"{text}\""
            )

        return RetrievalResult(
            status=RetrievalStatus.MATCHED,
            patients=patients,
            classification=classification,
            mean_similarity=mean_similarity,
            keyword_validation_applied=keyword_validation_applied,
            fallback_applied=fallback_applied
        )


# =============================================================================
# Public API
# =============================================================================

async def retrieve_relevant_patients(
    text: str,
    candidates: Optional[List[PatientSummary]] = None,
    top_k: Optional[int] = None,
    patient_id: Optional[str] = None,
    mode: RetrievalMode = RetrievalMode.REPORT,
    client: Optional[GenerativeClient] = None,
    patient_source: Optional[PatientRecordSource] = None
) -> RetrievalResult:
    """
    Main entry point for evidence retrieval

    Args:
        text: Free-text request
        candidates: Population to narrow; all active patients when None
        top_k: Semantic result size; defaults by mode
        patient_id: Optional target patient for a direct lookup
        mode: Interactive lookups may resolve a named patient
        client: Generative backend for classification
        patient_source: Record source used when candidates is None

    Returns:
        RetrievalResult
    """
    if candidates is None:
        candidates = await (patient_source or get_patient_source()).list_patients(active_only=True)

    if top_k is None:
        top_k = (
            settings.retrieval_report_top_k if mode == RetrievalMode.REPORT
            else settings.retrieval_interactive_top_k
        )

    retriever = EvidenceRetriever(
        index=get_embedding_index(),
        embedding_service=get_embedding_service(),
        classifier=QueryClassifier(client)
    )
    query = RetrievalQuery(text=text, top_k=top_k, patient_id=patient_id, mode=mode)
    return await retriever.retrieve(query, candidates)
