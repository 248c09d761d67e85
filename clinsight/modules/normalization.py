"""
Clinsight Normalization Utilities
String normalization, bounded fuzzy matching, keyword expansion and vital-sign unit checks
"""

import math
import re
import unicodedata
from typing import Any, Iterable, List, Optional, Tuple

from clinsight.config import settings
from clinsight.schemas import BloodPressure


# =============================================================================
# String Normalization
# =============================================================================

_WHITESPACE = re.compile(r"\s+")
_EDGE_PUNCTUATION = re.compile(r"^[\W_]+|[\W_]+$")
_WORD = re.compile(r"\w+")


def normalize_text(value: Optional[str]) -> str:
    """Casefold, NFKC-normalize, collapse whitespace and trim edge punctuation"""
    if not value:
        return ""
    text = unicodedata.normalize("NFKC", str(value)).casefold()
    text = _WHITESPACE.sub(" ", text).strip()
    return _EDGE_PUNCTUATION.sub("", text)


def tokenize(value: Optional[str]) -> List[str]:
    """Split normalized text into word tokens"""
    return _WORD.findall(normalize_text(value))


def dedupe_preserving_order(values: Iterable[str]) -> List[str]:
    """Drop blanks and case-insensitive duplicates, keep first spelling"""
    seen = set()
    result = []
    for value in values:
        if value is None:
            continue
        cleaned = _WHITESPACE.sub(" ", str(value)).strip()
        key = normalize_text(cleaned)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(cleaned)
    return result


# =============================================================================
# Fuzzy Comparison
# =============================================================================

def bounded_edit_distance(a: str, b: str, max_distance: int) -> int:
    """
    Levenshtein distance between two strings, capped at max_distance + 1

    Rows are abandoned as soon as every cell exceeds the bound, so comparing
    unrelated words costs far less than a full matrix.
    """
    if a == b:
        return 0
    if abs(len(a) - len(b)) > max_distance:
        return max_distance + 1
    if not a or not b:
        return min(max(len(a), len(b)), max_distance + 1)

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        row_min = current[0]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current[j] = min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost
            )
            row_min = min(row_min, current[j])
        if row_min > max_distance:
            return max_distance + 1
        previous = current

    return min(previous[-1], max_distance + 1)


def is_fuzzy_word_match(
    word: str,
    keyword: str,
    max_distance: Optional[int] = None,
    max_length_delta: Optional[int] = None
) -> bool:
    """True if word is within max_distance edits of keyword and their lengths are close"""
    max_distance = settings.fuzzy_max_distance if max_distance is None else max_distance
    max_length_delta = settings.fuzzy_max_length_delta if max_length_delta is None else max_length_delta

    if abs(len(word) - len(keyword)) > max_length_delta:
        return False
    return bounded_edit_distance(word, keyword, max_distance) <= max_distance


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word containment on normalized text"""
    text_norm = normalize_text(text)
    phrase_norm = normalize_text(phrase)
    if not text_norm or not phrase_norm:
        return False
    return re.search(rf"(?<!\w){re.escape(phrase_norm)}(?!\w)", text_norm) is not None


def is_near_match(candidate: str, negated: str) -> bool:
    """
    Exact or near-exact match used by negation resolution

    Matches on normalized equality, whole-phrase containment of the negated
    term, or a single edit for terms of five characters or more.
    """
    a = normalize_text(candidate)
    b = normalize_text(negated)
    if not a or not b:
        return False
    if a == b or contains_phrase(a, b):
        return True
    if min(len(a), len(b)) >= 5:
        return bounded_edit_distance(a, b, 1) <= 1
    return False


# =============================================================================
# Query Keywords
# =============================================================================

STOP_WORDS = frozenset({
    "a", "about", "all", "an", "and", "any", "are", "for", "from", "generate",
    "get", "give", "gives", "has", "have", "having", "list", "me", "of", "on",
    "or", "patient", "patients", "please", "report", "reports", "show", "that",
    "the", "their", "them", "there", "these", "those", "what", "which", "who",
    "whom", "with", "write", "create", "find", "currently", "suffering",
    "presenting", "complaining", "history", "diagnosed", "people", "cases",
})


def derive_query_keywords(query: str, min_length: Optional[int] = None) -> List[str]:
    """Condition keywords of a query: non-stop-words of at least min_length characters"""
    min_length = settings.keyword_min_length if min_length is None else min_length
    words = [w for w in tokenize(query) if w not in STOP_WORDS and len(w) >= min_length]
    return dedupe_preserving_order(words)


def keyword_variants(keyword: str) -> List[str]:
    """Morphological variants plus a single trailing-character drop"""
    variants = [keyword]
    if keyword.endswith("ing"):
        variants.append(keyword[:-3])
        variants.append(keyword[:-4])
    if keyword.endswith("ed"):
        variants.append(keyword[:-2])
    if keyword.endswith("s"):
        variants.append(keyword[:-1])
    variants.append(keyword[:-1])
    return variants


def expand_keywords(keywords: Iterable[str], min_variant_length: Optional[int] = None) -> List[str]:
    """Expand keywords with their variants, dropping variants that became too short"""
    min_variant_length = settings.keyword_min_length if min_variant_length is None else min_variant_length
    expanded = []
    for keyword in keywords:
        for variant in keyword_variants(normalize_text(keyword)):
            if variant == keyword or len(variant) >= min_variant_length:
                expanded.append(variant)
    return dedupe_preserving_order(expanded)


def text_matches_keywords(
    text: str,
    keywords: Iterable[str],
    max_distance: Optional[int] = None,
    max_length_delta: Optional[int] = None
) -> bool:
    """True if text contains any keyword as a substring, or a word fuzzily equal to one"""
    text_norm = normalize_text(text)
    if not text_norm:
        return False
    words = set(_WORD.findall(text_norm))

    for keyword in keywords:
        if not keyword:
            continue
        if keyword in text_norm:
            return True
        if any(is_fuzzy_word_match(word, keyword, max_distance, max_length_delta) for word in words):
            return True
    return False


# =============================================================================
# Numeric Parsing
# =============================================================================

_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_BP_PAIR = re.compile(r"(\d{2,3})\s*/\s*(\d{2,3})")


def parse_number(value: Any) -> Optional[float]:
    """First finite number in a value, or None"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    else:
        match = _NUMBER.search(str(value))
        if not match:
            return None
        number = float(match.group(0))
    # JSON decoding lets NaN and Infinity through
    return number if math.isfinite(number) else None


# =============================================================================
# Vital Sign Parsing and Plausibility
# =============================================================================

def parse_blood_pressure(value: Any) -> Optional[BloodPressure]:
    """Parse '140/90', '140 / 90 mmHg' or a {systolic, diastolic} mapping"""
    if value is None:
        return None
    if isinstance(value, BloodPressure):
        return value
    if isinstance(value, dict):
        systolic = parse_number(value.get("systolic"))
        diastolic = parse_number(value.get("diastolic"))
        if systolic is None or diastolic is None or systolic < 0 or diastolic < 0:
            return None
        return BloodPressure(systolic=int(systolic), diastolic=int(diastolic))
    match = _BP_PAIR.search(str(value))
    if not match:
        return None
    return BloodPressure(systolic=int(match.group(1)), diastolic=int(match.group(2)))


def validate_blood_pressure(bp: BloodPressure) -> bool:
    if bp.systolic > settings.bp_systolic_max or bp.diastolic > settings.bp_diastolic_max:
        return False
    if bp.systolic < bp.diastolic:
        return False
    return bp.diastolic > 0


def parse_heart_rate(value: Any) -> Optional[int]:
    number = parse_number(value)
    return int(round(number)) if number is not None else None


def validate_heart_rate(bpm: int) -> bool:
    return settings.heart_rate_min <= bpm <= settings.heart_rate_max


def _unit_of(value: Any, unit: Optional[str]) -> str:
    if unit:
        return normalize_text(unit)
    if isinstance(value, str):
        return normalize_text(_NUMBER.sub(" ", value))
    return ""


def parse_temperature_c(value: Any, unit: Optional[str] = None) -> Optional[float]:
    """
    Temperature in Celsius

    An explicit unit wins; otherwise readings up to 45 are taken as Celsius
    and anything higher as Fahrenheit.
    """
    number = parse_number(value)
    if number is None:
        return None
    unit_text = _unit_of(value, unit)
    if unit_text.startswith("f") or "°f" in unit_text or "fahrenheit" in unit_text:
        is_fahrenheit = True
    elif unit_text.startswith("c") or "°c" in unit_text or "celsius" in unit_text:
        is_fahrenheit = False
    else:
        is_fahrenheit = number > 45
    celsius = (number - 32) * 5 / 9 if is_fahrenheit else number
    return round(celsius, 1)


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def validate_temperature_c(celsius: float) -> bool:
    fahrenheit = celsius_to_fahrenheit(celsius)
    # Rounding to 0.1 °C can move the edge by up to 0.09 °F
    return settings.temperature_min_f - 0.1 <= fahrenheit <= settings.temperature_max_f + 0.1


_POUNDS = ("lb", "lbs", "pound", "pounds")


def parse_weight_kg(value: Any, unit: Optional[str] = None) -> Optional[float]:
    """Weight in kilograms; pounds are converted, bare numbers are taken as kilograms"""
    number = parse_number(value)
    if number is None:
        return None
    unit_text = _unit_of(value, unit)
    if any(unit_text.startswith(p) for p in _POUNDS):
        number = number * 0.45359237
    return round(number, 1)


def validate_weight_kg(kg: float) -> bool:
    return 0.5 <= kg <= 500


_FEET_INCHES = re.compile(
    r"(\d)\s*(?:'|ft|feet|foot)\s*(?:(\d{1,2}(?:\.\d+)?)\s*(?:\"|''|in|inch|inches)?)?",
    re.IGNORECASE
)


def parse_height_cm(value: Any, unit: Optional[str] = None) -> Optional[float]:
    """Height in centimetres from cm, metres, or feet/inches notation"""
    if value is None:
        return None
    if isinstance(value, str):
        imperial = _FEET_INCHES.search(value)
        if imperial:
            feet = int(imperial.group(1))
            inches = float(imperial.group(2)) if imperial.group(2) else 0.0
            return round((feet * 12 + inches) * 2.54, 1)
    number = parse_number(value)
    if number is None:
        return None
    unit_text = _unit_of(value, unit)
    if unit_text.startswith("in"):
        return round(number * 2.54, 1)
    if unit_text.startswith("ft") or unit_text.startswith("feet"):
        return round(number * 30.48, 1)
    if unit_text.startswith("m") and not unit_text.startswith("mm") or (not unit_text and number <= 3):
        return round(number * 100, 1)
    return round(number, 1)


def validate_height_cm(cm: float) -> bool:
    return 30 <= cm <= 272


def split_list_items(value: str) -> List[str]:
    """Split a free-text enumeration on commas, semicolons, 'and' and 'or'"""
    parts = re.split(r",|;|\band\b|\bor\b|\bnor\b|\balso\b", value, flags=re.IGNORECASE)
    return [part.strip(" \t-:") for part in parts if part and part.strip(" \t-:")]


def first_valid(candidates: Iterable[Any], parse, check) -> Tuple[Optional[Any], bool]:
    """
    First candidate that parses and passes its plausibility check

    Returns (value, rejected) where rejected is True if some candidate parsed
    but was discarded as implausible.
    """
    rejected = False
    for candidate in candidates:
        parsed = parse(candidate)
        if parsed is None:
            continue
        if check(parsed):
            return parsed, rejected
        rejected = True
    return None, rejected
