"""
Clinsight Extraction Engine
Hybrid pattern + generative extraction, merged with range validation and negation resolution
"""

import asyncio
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from clinsight.config import settings
from clinsight.exceptions import ExtractionFailedError
from clinsight.modules.normalization import (
    dedupe_preserving_order, first_valid, is_near_match, split_list_items,
    parse_blood_pressure, validate_blood_pressure,
    parse_heart_rate, validate_heart_rate,
    parse_temperature_c, validate_temperature_c,
    parse_weight_kg, validate_weight_kg,
    parse_height_cm, validate_height_cm,
)
from clinsight.modules.pattern_extraction import (
    ClinicalPatterns, extract_negated_terms, extract_patterns
)
from clinsight.modules.schema_extraction import SchemaExtractor
from clinsight.schemas import (
    BloodPressure, ExtractionMethod, ExtractionResult, MedicalInfo,
    MedicationEntry, NegationFlags, VitalSigns
)
from clinsight.services.llm_client import GenerativeClient

logger = logging.getLogger(__name__)


NONE_VALUES = {
    "", "none", "n/a", "na", "nil", "unknown", "nkda", "nka",
    "no known allergies", "no known drug allergies", "not applicable",
}


# =============================================================================
# Field Helpers
# =============================================================================

def _as_text(value: Any) -> Optional[str]:
    """Free-text field from a string or list; blanks and 'none' become None"""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v).strip() for v in value if v and str(v).strip())
    text = re.sub(r"\s+", " ", str(value)).strip()
    if text.lower() in NONE_VALUES:
        return None
    return text


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return split_list_items(value)
    return [value]


def _clean_terms(values: List[Any]) -> List[str]:
    terms = [str(v).strip() for v in values if v is not None and not isinstance(v, dict)]
    return dedupe_preserving_order(t for t in terms if t.lower() not in NONE_VALUES)


def _split_matches(matches: List[str]) -> List[str]:
    items: List[str] = []
    for match in matches:
        items.extend(split_list_items(match))
    return items


def parse_medication(raw: Any) -> Optional[MedicationEntry]:
    """
    Split a medication string into name, dosage and frequency

    Dosage and frequency are filled only when a recognizable substring is
    present; otherwise the raw string is kept as the name.
    """
    if isinstance(raw, MedicationEntry):
        return raw
    if isinstance(raw, dict):
        name = _as_text(raw.get("name"))
        if not name:
            return None
        return MedicationEntry(
            name=name,
            dosage=_as_text(raw.get("dosage")),
            frequency=_as_text(raw.get("frequency"))
        )

    text = _as_text(raw)
    if not text:
        return None

    dose_match = ClinicalPatterns.MEDICATION_DOSE.search(text)
    freq_match = ClinicalPatterns.MEDICATION_FREQ.search(text)

    name = text
    for match in sorted(filter(None, (dose_match, freq_match)), key=lambda m: m.start(), reverse=True):
        name = name[:match.start()] + " " + name[match.end():]
    name = re.sub(r"\s+", " ", name).strip(" ,-")

    return MedicationEntry(
        name=name or text,
        dosage=dose_match.group(0).strip() if dose_match else None,
        frequency=freq_match.group(0).strip() if freq_match else None
    )


# =============================================================================
# Extraction Merger
# =============================================================================

class ExtractionMerger:
    """Combine pattern and schema passes into one validated ExtractionResult"""

    def _merge_vitals(
        self,
        patterns: Dict[str, List[str]],
        schema_vitals: Dict[str, Any]
    ) -> Tuple[VitalSigns, List[str]]:
        """Schema value first, then pattern matches; the first plausible reading wins"""
        rejected: List[str] = []

        def pick(field: str, candidates: List[Any], parse, check):
            value, was_rejected = first_valid(
                [c for c in candidates if c is not None], parse, check
            )
            if was_rejected:
                rejected.append(field)
                logger.warning(f"Discarded implausible {field} reading")
            return value

        blood_pressure: Optional[BloodPressure] = pick(
            "blood_pressure",
            [schema_vitals.get("bloodPressure")] + patterns.get("blood_pressure", []),
            parse_blood_pressure, validate_blood_pressure
        )
        heart_rate = pick(
            "heart_rate",
            [schema_vitals.get("heartRate")] + patterns.get("heart_rate", []),
            parse_heart_rate, validate_heart_rate
        )

        temperature_unit = schema_vitals.get("temperatureUnit")
        temperature_c = pick(
            "temperature",
            [(schema_vitals.get("temperature"), temperature_unit)]
            + [(raw, None) for raw in patterns.get("temperature", [])],
            lambda c: parse_temperature_c(*c), validate_temperature_c
        )

        weight_unit = schema_vitals.get("weightUnit")
        weight_kg = pick(
            "weight",
            [(schema_vitals.get("weight"), weight_unit)]
            + [(raw, None) for raw in patterns.get("weight", [])],
            lambda c: parse_weight_kg(*c), validate_weight_kg
        )

        height_cm = pick(
            "height",
            [schema_vitals.get("height")] + patterns.get("height", []),
            parse_height_cm, validate_height_cm
        )

        vitals = VitalSigns(
            blood_pressure=blood_pressure,
            heart_rate=heart_rate,
            temperature_c=temperature_c,
            weight_kg=weight_kg,
            height_cm=height_cm
        )
        return vitals, rejected

    def _merge_medical_info(
        self,
        patterns: Dict[str, List[str]],
        schema_info: Dict[str, Any]
    ) -> MedicalInfo:
        """Schema fields are authoritative; pattern matches only fill empty fields"""
        symptoms = _clean_terms(_as_list(schema_info.get("symptoms")))
        if not symptoms:
            symptoms = _clean_terms(_split_matches(patterns.get("symptoms", [])))

        allergies = _clean_terms(_as_list(schema_info.get("allergies")))
        if not allergies:
            allergies = _clean_terms(_split_matches(patterns.get("allergies", [])))

        raw_medications = _as_list(schema_info.get("currentMedications"))
        if not raw_medications:
            raw_medications = _split_matches(patterns.get("medications", []))
        medications: List[MedicationEntry] = []
        seen = set()
        for raw in raw_medications:
            entry = parse_medication(raw)
            if entry is None or entry.name.lower() in NONE_VALUES:
                continue
            key = str(entry).lower()
            if key not in seen:
                seen.add(key)
                medications.append(entry)

        diagnosis = _as_text(schema_info.get("diagnosis"))
        if not diagnosis and patterns.get("diagnosis"):
            diagnosis = _as_text(patterns["diagnosis"][0])

        return MedicalInfo(
            chief_complaint=_as_text(schema_info.get("chiefComplaint")),
            symptoms=symptoms,
            current_medications=medications,
            allergies=allergies,
            medical_history=_as_text(schema_info.get("medicalHistory")),
            diagnosis=diagnosis,
            treatment_plan=_as_text(schema_info.get("treatmentPlan"))
        )

    @staticmethod
    def _merge_negations(
        schema_flags: Dict[str, Any],
        negated_terms: Dict[str, List[str]]
    ) -> NegationFlags:
        return NegationFlags(
            negated_symptoms=_clean_terms(
                _as_list(schema_flags.get("negatedSymptoms")) + negated_terms.get("symptoms", [])
            ),
            negated_medications=_clean_terms(
                _as_list(schema_flags.get("negatedMedications")) + negated_terms.get("medications", [])
            ),
            negated_allergies=_clean_terms(
                _as_list(schema_flags.get("negatedAllergies")) + negated_terms.get("allergies", [])
            )
        )

    @staticmethod
    def _resolve_negations(
        info: MedicalInfo,
        flags: NegationFlags
    ) -> Tuple[MedicalInfo, Dict[str, List[str]]]:
        """Drop positive entries matching a negated term; report what was dropped"""
        removed: Dict[str, List[str]] = {}

        def is_negated(candidates: List[str], negated: List[str]) -> bool:
            return any(is_near_match(c, n) for c in candidates for n in negated)

        symptoms = [s for s in info.symptoms if not is_negated([s], flags.negated_symptoms)]
        allergies = [a for a in info.allergies if not is_negated([a], flags.negated_allergies)]
        medications = [
            m for m in info.current_medications
            if not is_negated([m.name, str(m)], flags.negated_medications)
        ]

        for category, before, after in (
            ("symptoms", info.symptoms, symptoms),
            ("allergies", info.allergies, allergies),
            ("medications", [str(m) for m in info.current_medications], [str(m) for m in medications]),
        ):
            dropped = [item for item in before if item not in after]
            if dropped:
                removed[category] = dropped

        resolved = info.model_copy(update={
            "symptoms": symptoms,
            "allergies": allergies,
            "current_medications": medications,
        })
        return resolved, removed

    @staticmethod
    def _confidence(schema: Optional[Dict[str, Any]]) -> float:
        fallback = settings.extraction_fallback_confidence
        if schema is None:
            return fallback
        value = schema.get("confidence")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return fallback
        if isinstance(value, float) and not math.isfinite(value):
            return fallback
        return float(min(max(value, 0.0), 1.0))

    def merge(
        self,
        patterns: Dict[str, List[str]],
        schema: Optional[Dict[str, Any]],
        negated_terms: Optional[Dict[str, List[str]]] = None
    ) -> ExtractionResult:
        """
        Merge both passes into one ExtractionResult

        Args:
            patterns: Raw matches from the pattern pass
            schema: Parsed generative output, or None if that pass failed
            negated_terms: Regex-detected negations by category

        Raises:
            ExtractionFailedError: if neither pass produced anything usable
        """
        schema_data = schema or {}
        schema_vitals = schema_data.get("vitalSigns") if isinstance(schema_data.get("vitalSigns"), dict) else {}
        schema_info = schema_data.get("medicalInfo") if isinstance(schema_data.get("medicalInfo"), dict) else {}
        schema_flags = schema_data.get("negationFlags") if isinstance(schema_data.get("negationFlags"), dict) else {}

        vitals, rejected = self._merge_vitals(patterns, schema_vitals)
        info = self._merge_medical_info(patterns, schema_info)
        flags = self._merge_negations(schema_flags, negated_terms or {})
        info, removed = self._resolve_negations(info, flags)

        if removed:
            counts = {category: len(items) for category, items in removed.items()}
            logger.info(f"Negation resolution removed: {counts}")

        result = ExtractionResult(
            vital_signs=vitals,
            medical_info=info,
            negation_flags=flags,
            confidence=self._confidence(schema),
            extraction_method=ExtractionMethod.HYBRID if schema is not None else ExtractionMethod.PATTERN_ONLY,
            removed_by_negation=removed,
            rejected_vitals=rejected
        )

        if not result.has_content():
            raise ExtractionFailedError("Neither extraction pass produced usable data")
        return result


# =============================================================================
# Hybrid Extraction Engine
# =============================================================================

def _pattern_pass(text: str) -> Tuple[Dict[str, List[str]], Dict[str, List[str]]]:
    patterns = extract_patterns(text)
    if settings.extraction_enable_negation_detection:
        negated = extract_negated_terms(text)
    else:
        negated = {}
    return patterns, negated


class HybridExtractionEngine:
    """
    Main extraction engine combining regex and generative passes

    Both passes run concurrently; the merge waits for both.
    """

    def __init__(
        self,
        schema_extractor: Optional[SchemaExtractor] = None,
        merger: Optional[ExtractionMerger] = None
    ):
        self.schema_extractor = schema_extractor or SchemaExtractor()
        self.merger = merger or ExtractionMerger()

    async def extract(self, text: str) -> ExtractionResult:
        """
        Extract structured medical information from a transcript

        Raises:
            ExtractionFailedError: empty transcript, or both passes produced nothing
        """
        if not text or not text.strip():
            raise ExtractionFailedError("Transcript is empty")

        logger.info(f"Starting extraction ({len(text)} chars)")
        (patterns, negated), schema = await asyncio.gather(
            asyncio.to_thread(_pattern_pass, text),
            self.schema_extractor.extract(text)
        )

        if schema is None:
            logger.warning("Schema pass unavailable - falling back to pattern-only extraction")

        result = self.merger.merge(patterns, schema, negated)
        logger.info(
            f"✓ Extraction complete: method={result.extraction_method.value}, "
            f"confidence={result.confidence:.2f}, symptoms={len(result.medical_info.symptoms)}, "
            f"medications={len(result.medical_info.current_medications)}"
        )
        return result


# =============================================================================
# Public API
# =============================================================================

async def extract_medical_info(
    text: str,
    client: Optional[GenerativeClient] = None
) -> ExtractionResult:
    """
    Main entry point for transcript extraction

    Args:
        text: Raw transcript text
        client: Generative backend; the configured LLM client when None

    Returns:
        Validated ExtractionResult
    """
    engine = HybridExtractionEngine(schema_extractor=SchemaExtractor(client))
    return await engine.extract(text)
