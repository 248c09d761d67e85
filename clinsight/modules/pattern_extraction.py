"""
Clinsight Pattern Extractor
Regex first pass over transcripts: permissive raw matches plus explicit negation cues
"""

import re
import logging
from typing import Dict, List

from clinsight.modules.normalization import dedupe_preserving_order, split_list_items

logger = logging.getLogger(__name__)


PATTERN_FIELDS = (
    "blood_pressure", "heart_rate", "temperature", "weight", "height",
    "medications", "allergies", "symptoms", "diagnosis",
)

NEGATION_CATEGORIES = ("symptoms", "medications", "allergies")

# Cues that may negate a whole "a, b and c" list
ENUMERATING_CUES = ("denies", "denied", "denying", "negative for")


# =============================================================================
# Regular Expression Patterns
# =============================================================================

class ClinicalPatterns:
    """Regular expression patterns for transcript extraction"""

    # Vital signs (e.g., "BP 140/90", "blood pressure: 140 / 90")
    BLOOD_PRESSURE = re.compile(
        r'(?:blood\s+pressure|\bb\.?p\b\.?|\bpressure\b)[^\d\n]{0,20}?(\d{2,3}\s*/\s*\d{2,3})',
        re.IGNORECASE
    )

    HEART_RATE = re.compile(
        r'(?:heart\s+rate|\bhr\b|\bpulse\b)[^\d\n]{0,20}?(\d{2,3})\b|\b(\d{2,3})\s*bpm\b',
        re.IGNORECASE
    )

    TEMPERATURE = re.compile(
        r'(?:temperature|\btemp\b|\bfever\s+(?:of\s+)?)[^\d\n]{0,20}?'
        r'(\d{2,3}(?:\.\d{1,2})?(?:\s*°?\s*(?:fahrenheit|celsius|[fc]\b))?)',
        re.IGNORECASE
    )

    WEIGHT = re.compile(
        r'(?:weight|\bwt\b|\bweighs\b)[^\d\n]{0,15}?'
        r'(\d{2,3}(?:\.\d{1,2})?(?:\s*(?:kg|kilograms?|lbs?|pounds?)\b)?)',
        re.IGNORECASE
    )

    HEIGHT = re.compile(
        r'(?:height|\bht\b|\bstands\b)[^\d\n]{0,15}?'
        r'(\d\s*(?:\'|ft\b|feet\b|foot\b)\s*(?:\d{1,2}(?:\.\d)?\s*(?:"|\'\'|in\b|inches\b)?)?'
        r'|\d{1,3}(?:\.\d{1,2})?(?:\s*(?:cm|centimeters?|meters?|m|inches|in)\b)?)',
        re.IGNORECASE
    )

    # Free-text findings, captured up to the end of the clause
    MEDICATIONS = re.compile(
        r'(?:\bmedications?\b|\bmeds\b|\bprescriptions?\b|\bprescribed\b|'
        r'(?<!not )\btaking\b|\bstarted\s+on\b)\s*[:\-]?\s*([^.;\n]+)',
        re.IGNORECASE
    )

    ALLERGIES = re.compile(
        r'(?:\ballerg(?:y|ies)\b(?:\s+to)?|\ballergic\s+to\b)\s*[:\-]?\s*([^.;\n]+)',
        re.IGNORECASE
    )

    SYMPTOMS = re.compile(
        r'(?:\bsymptoms?\b(?:\s+include)?|\bcomplain(?:s|ing)?\s+of\b|\bc/o\b|\breports?\b|'
        r'\bpresent(?:s|ing)?\s+with\b|\bfeeling\b|\bexperiencing\b)\s*[:\-]?\s*([^.;\n]+)',
        re.IGNORECASE
    )

    DIAGNOSIS = re.compile(
        r'(?:\bdiagnosis\b(?:\s+of)?|\bdiagnosed\s+with\b|\bdx\b|\bassessment\b|\bimpression\b)'
        r'\s*[:\-]?\s*([^.;\n]+)',
        re.IGNORECASE
    )

    # Medication dosing
    MEDICATION_DOSE = re.compile(
        r'\b\d+(?:\.\d+)?\s*(?:mg|mcg|μg|g|ml|l|units?|iu|meq|%|tabs?|tablets?|capsules?|caps?|puffs?|drops?)(?![a-z])',
        re.IGNORECASE
    )

    # Medication frequency
    MEDICATION_FREQ = re.compile(
        r'\b(?:once\s+(?:a\s+)?day|once\s+daily|twice\s+(?:a\s+)?day|twice\s+daily|'
        r'(?:three|four)\s+times\s+(?:a\s+day|daily)|every\s+\d+\s*(?:-\s*\d+\s*)?hours?|'
        r'every\s+(?:morning|night|evening)|at\s+bedtime|as\s+needed|'
        r'q\d+h|qhs|qam|qpm|qd|bid|tid|qid|prn|daily|nightly|weekly)\b',
        re.IGNORECASE
    )

    # Negation cues
    NEGATED_FINDING = re.compile(
        r'\b(?:denies|denied|denying|no(?!\s+longer)|negative\s+for|without|free\s+of|absence\s+of)\s+([^.;\n]+)',
        re.IGNORECASE
    )

    NEGATED_MEDICATION = re.compile(
        r'\b(?:not\s+(?:currently\s+)?(?:taking|on)|stopped\s+taking|discontinued|'
        r'no\s+longer\s+(?:taking|on))\s+([^.;\n]+)',
        re.IGNORECASE
    )

    NEGATED_ALLERGY = re.compile(
        r'\b(?:not\s+allergic\s+to|no\s+(?:known\s+)?allerg(?:y|ies)\s+to)\s+([^.;\n]+)',
        re.IGNORECASE
    )

    # Verbs and subjects opening a new clause ("denies fever, has headache")
    CLAUSE_BREAK = re.compile(
        r'\b(?:but|however|although|though|except|has|have|had|reports?|reported|'
        r'presents?|complains?|is|are|was|were|takes?|taking|started|currently|'
        r'noted|persists?|persistent|ongoing|continues|remains?|endorses|admits|'
        r'blood|bp|heart|hr|temp|temperature|weight|height|patient|pt|she|he|they)\b',
        re.IGNORECASE
    )

    # Time and cause qualifiers ending the negated phrase ("no cough since Monday")
    SCOPE_END = re.compile(
        r'\b(?:last|yesterday|today|ago|since|because|due|for|after|when|during)\b',
        re.IGNORECASE
    )

    LIST_SEPARATOR = re.compile(r',|\band\b|\bor\b|\bnor\b', re.IGNORECASE)
    CLOSING_AND = re.compile(r'\band\b', re.IGNORECASE)
    CLOSING_OR = re.compile(r'\b(?:or|nor)\b', re.IGNORECASE)

    # Placeholder phrasing, not a denied allergen
    NO_KNOWN_ALLERGIES = re.compile(r'^(?:known\s+)?(?:drug\s+)?allerg(?:y|ies)$', re.IGNORECASE)

    FIELD_PATTERNS = {
        "blood_pressure": BLOOD_PRESSURE,
        "heart_rate": HEART_RATE,
        "temperature": TEMPERATURE,
        "weight": WEIGHT,
        "height": HEIGHT,
        "medications": MEDICATIONS,
        "allergies": ALLERGIES,
        "symptoms": SYMPTOMS,
        "diagnosis": DIAGNOSIS,
    }


def _first_group(match: re.Match) -> str:
    for group in match.groups():
        if group:
            return group
    return ""


def _clean_match(field: str, value: str) -> str:
    value = value.strip(" \t,:-")
    if field == "blood_pressure":
        return re.sub(r"\s+", "", value)
    return re.sub(r"\s+", " ", value)


# =============================================================================
# Public API
# =============================================================================

def extract_patterns(text: str) -> Dict[str, List[str]]:
    """
    Run every field pattern over the text

    Returns a mapping of field name to raw matches, with an empty list for
    fields that never matched. Never raises.
    """
    results: Dict[str, List[str]] = {field: [] for field in PATTERN_FIELDS}
    if not text:
        return results

    for field, pattern in ClinicalPatterns.FIELD_PATTERNS.items():
        try:
            matches = [_clean_match(field, _first_group(m)) for m in pattern.finditer(text)]
            results[field] = dedupe_preserving_order(m for m in matches if m)
        except Exception as e:
            logger.error(f"Pattern pass failed for {field}: {e}")
            results[field] = []

    found = {field: len(values) for field, values in results.items() if values}
    logger.debug(f"Pattern pass matched: {found}")
    return results


def _negation_scope(fragment: str) -> str:
    """Cut the text after a cue down to the part the cue actually negates"""
    scope_end = ClinicalPatterns.SCOPE_END.search(fragment)
    if scope_end:
        fragment = fragment[:scope_end.start()]

    breaker = ClinicalPatterns.CLAUSE_BREAK.search(fragment)
    if breaker:
        fragment = fragment[:breaker.start()]
        separators = list(ClinicalPatterns.LIST_SEPARATOR.finditer(fragment))
        # Words between the last separator and the verb are the new clause's subject
        if separators and fragment[separators[-1].end():].strip():
            fragment = fragment[:separators[-1].start()]
    return fragment


def _negated_items(fragment: str, cue: str = "") -> List[str]:
    """
    Terms a negation cue applies to

    The cue spans comma-separated items only when the list is closed by a
    conjunction: "or"/"nor" for any cue, "and" only after a denial cue.
    "No fever, cough and wheezing" negates fever alone.
    """
    segments = [s for s in _negation_scope(fragment).split(",") if s.strip()]
    if not segments:
        return []
    if len(segments) > 1:
        closing = segments[-1]
        enumerating = " ".join(cue.lower().split()) in ENUMERATING_CUES
        closed = ClinicalPatterns.CLOSING_OR.search(closing) or (
            enumerating and ClinicalPatterns.CLOSING_AND.search(closing)
        )
        if not closed:
            segments = segments[:1]

    items = []
    for item in split_list_items(",".join(segments)):
        item = re.sub(r"^(?:any|other|signs\s+of)\s+", "", item, flags=re.IGNORECASE).strip()
        # Long fragments are prose, not a denied term
        if item and len(item.split()) <= 5:
            items.append(item)
    return items


def extract_negated_terms(text: str) -> Dict[str, List[str]]:
    """
    Terms explicitly denied in the text, grouped by category

    "Denies fever, has headache" yields symptoms ["fever"] and
    "No fever, cough present for 3 days" leaves cough alone.
    """
    negated: Dict[str, List[str]] = {category: [] for category in NEGATION_CATEGORIES}
    if not text:
        return negated

    def cue_of(match: re.Match) -> str:
        return text[match.start():match.start(1)].strip()

    try:
        for match in ClinicalPatterns.NEGATED_ALLERGY.finditer(text):
            negated["allergies"].extend(_negated_items(match.group(1), cue_of(match)))

        for match in ClinicalPatterns.NEGATED_MEDICATION.finditer(text):
            negated["medications"].extend(_negated_items(match.group(1), cue_of(match)))

        for match in ClinicalPatterns.NEGATED_FINDING.finditer(text):
            for item in _negated_items(match.group(1), cue_of(match)):
                lowered = item.lower()
                if "allerg" in lowered:
                    if not lowered.endswith(" to") and not ClinicalPatterns.NO_KNOWN_ALLERGIES.match(item):
                        negated["allergies"].append(item)
                elif "medication" in lowered or lowered in ("meds", "drugs"):
                    continue
                else:
                    negated["symptoms"].append(item)
    except Exception as e:
        logger.error(f"Negation cue detection failed: {e}")

    return {category: dedupe_preserving_order(terms) for category, terms in negated.items()}
