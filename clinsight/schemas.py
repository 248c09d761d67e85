"""
Clinsight - Clinical Data Schemas
Pydantic models for extraction results, query classification and evidence retrieval
"""

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime, date, timezone
from enum import Enum


# ============================================================================
# Enumerations
# ============================================================================

class ExtractionMethod(str, Enum):
    """Which passes contributed to an extraction result"""
    HYBRID = "hybrid"
    PATTERN_ONLY = "pattern_only"


class QueryType(str, Enum):
    """Scope of a free-text report or lookup request"""
    POPULATION = "population"
    CONDITION_SPECIFIC = "condition-specific"


class ClassificationConfidence(str, Enum):
    """Coarse confidence reported by the query classifier"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RetrievalMode(str, Enum):
    """Caller profile; interactive lookups may resolve a named patient"""
    INTERACTIVE = "interactive"
    REPORT = "report"


class RetrievalStatus(str, Enum):
    """Terminal state of an evidence retrieval request"""
    MATCHED = "matched"
    POPULATION = "population"
    NO_MATCH = "no_match"


class MatchSource(str, Enum):
    """How a patient entered the retrieval result"""
    DIRECT_LOOKUP = "direct_lookup"
    SEMANTIC = "semantic"
    KEYWORD_VALIDATED = "keyword_validated"
    KEYWORD_FALLBACK = "keyword_fallback"
    POPULATION = "population"


class IndexingStatus(str, Enum):
    """Outcome of one embedding refresh"""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases on the wire"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False
    )


# ============================================================================
# Extraction Models
# ============================================================================

class BloodPressure(CamelModel):
    """Systolic/diastolic pair in mmHg"""
    systolic: int = Field(..., ge=0)
    diastolic: int = Field(..., ge=0)

    def __str__(self) -> str:
        return f"{self.systolic}/{self.diastolic}"


class VitalSigns(CamelModel):
    """Vital signs; a field is None when absent or rejected as implausible"""
    blood_pressure: Optional[BloodPressure] = None
    heart_rate: Optional[int] = Field(None, description="Beats per minute")
    temperature_c: Optional[float] = Field(None, description="Degrees Celsius")
    weight_kg: Optional[float] = Field(None, alias="weight", description="Kilograms")
    height_cm: Optional[float] = Field(None, alias="height", description="Centimetres")

    def is_empty(self) -> bool:
        return all(
            value is None for value in (
                self.blood_pressure, self.heart_rate, self.temperature_c,
                self.weight_kg, self.height_cm
            )
        )


class MedicationEntry(CamelModel):
    """A current medication; dosage and frequency are never guessed"""
    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None

    def __str__(self) -> str:
        return " ".join(part for part in (self.name, self.dosage, self.frequency) if part)


class MedicalInfo(CamelModel):
    """Positive clinical findings of a transcript"""
    chief_complaint: Optional[str] = None
    symptoms: List[str] = Field(default_factory=list)
    current_medications: List[MedicationEntry] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)
    medical_history: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None

    def is_empty(self) -> bool:
        return not any([
            self.chief_complaint, self.symptoms, self.current_medications,
            self.allergies, self.medical_history, self.diagnosis, self.treatment_plan
        ])


class NegationFlags(CamelModel):
    """Terms the source text explicitly denied"""
    negated_symptoms: List[str] = Field(default_factory=list)
    negated_medications: List[str] = Field(default_factory=list)
    negated_allergies: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.negated_symptoms or self.negated_medications or self.negated_allergies)


class ExtractionResult(CamelModel):
    """Structured, validated output of one transcript extraction"""
    vital_signs: VitalSigns = Field(default_factory=VitalSigns)
    medical_info: MedicalInfo = Field(default_factory=MedicalInfo)
    negation_flags: NegationFlags = Field(default_factory=NegationFlags)
    confidence: float = Field(..., ge=0.0, le=1.0)
    extraction_method: ExtractionMethod = ExtractionMethod.HYBRID
    removed_by_negation: Dict[str, List[str]] = Field(default_factory=dict)
    rejected_vitals: List[str] = Field(default_factory=list)
    extracted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_negations_resolved(self) -> "ExtractionResult":
        """A negated term must never survive as a positive finding"""
        pairs = [
            (self.negation_flags.negated_symptoms, self.medical_info.symptoms),
            (self.negation_flags.negated_allergies, self.medical_info.allergies),
            (self.negation_flags.negated_medications,
             [med.name for med in self.medical_info.current_medications]),
        ]
        for negated, positive in pairs:
            negated_lower = {term.strip().lower() for term in negated}
            clash = [term for term in positive if term.strip().lower() in negated_lower]
            if clash:
                raise ValueError(f"Negated terms present as positive findings: {clash}")
        return self

    def has_content(self) -> bool:
        """True when at least one vital, finding or negation was captured"""
        return not (
            self.vital_signs.is_empty()
            and self.medical_info.is_empty()
            and self.negation_flags.is_empty()
        )

    def to_record_fields(self) -> Dict[str, Any]:
        """Map onto flat patient-record fields for the external record updater"""
        vitals = self.vital_signs
        medical = self.medical_info
        fields: Dict[str, Any] = {
            "vital_signs": {
                "blood_pressure": str(vitals.blood_pressure) if vitals.blood_pressure else None,
                "heart_rate": vitals.heart_rate,
                "temperature": vitals.temperature_c,
                "weight": vitals.weight_kg,
                "height": vitals.height_cm,
            },
            "chief_complaint": medical.chief_complaint,
            "symptoms": ", ".join(medical.symptoms) or None,
            "current_medications": ", ".join(str(med) for med in medical.current_medications) or None,
            "allergies": ", ".join(medical.allergies) or None,
            "medical_history": medical.medical_history,
            "diagnosis": medical.diagnosis,
            "treatment_plan": medical.treatment_plan,
        }
        return fields


# ============================================================================
# Query Classification Models
# ============================================================================

class ClassificationResult(CamelModel):
    """Population-wide vs condition-specific decision for one query"""
    query_type: QueryType = Field(..., alias="type")
    confidence: ClassificationConfidence = ClassificationConfidence.LOW
    reasoning: str = Field(default="", max_length=1000)

    @field_validator("query_type", mode="before")
    @classmethod
    def normalize_query_type(cls, v: Any) -> Any:
        if isinstance(v, str):
            cleaned = v.strip().lower().replace("_", "-").replace(" ", "-")
            if cleaned in ("population-level", "population-wide"):
                return QueryType.POPULATION.value
            if cleaned in ("condition", "conditionspecific"):
                return QueryType.CONDITION_SPECIFIC.value
            return cleaned
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def is_population(self) -> bool:
        return self.query_type == QueryType.POPULATION


# ============================================================================
# Patient Record Inputs
# ============================================================================

class PatientSummary(CamelModel):
    """Current record of a patient as held by the external record store"""
    patient_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    medical_record_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    status: str = "active"
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    medical_history: Optional[str] = None
    treatment_plan: Optional[str] = None
    current_medications: Optional[str] = None
    allergies: Optional[str] = None
    vital_signs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("patient_id", mode="before")
    @classmethod
    def coerce_patient_id(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def clinical_text_fields(self) -> List[str]:
        """Fields consulted by keyword validation"""
        return [
            self.diagnosis or "",
            self.chief_complaint or "",
            self.medical_history or "",
            self.treatment_plan or "",
            self.current_medications or "",
        ]


class VisitRecord(CamelModel):
    """One clinical visit"""
    visit_date: datetime
    chief_complaint: Optional[str] = None
    symptoms: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment_plan: Optional[str] = None
    medical_history: Optional[str] = None
    current_medications: Optional[str] = None
    allergies: Optional[str] = None
    notes: Optional[str] = None


class CheckupRecord(CamelModel):
    """One vital-sign checkup"""
    date: datetime
    bp_sys: Optional[int] = None
    bp_dia: Optional[int] = None
    heart_rate: Optional[int] = None
    temperature_c: Optional[float] = None
    weight: Optional[float] = None
    height: Optional[float] = None


# ============================================================================
# Retrieval Models
# ============================================================================

class RetrievalQuery(CamelModel):
    """A free-text retrieval request"""
    text: str = ""
    top_k: int = Field(default=10, ge=1, le=200)
    patient_id: Optional[str] = None
    mode: RetrievalMode = RetrievalMode.INTERACTIVE


class RetrievedPatient(CamelModel):
    """One relevant patient"""
    patient_id: str
    similarity_score: Optional[float] = None
    content_snippet: str = ""
    match_source: MatchSource


class RetrievalResult(CamelModel):
    """Ordered, deduplicated relevant-patient set"""
    status: RetrievalStatus
    patients: List[RetrievedPatient] = Field(default_factory=list)
    classification: Optional[ClassificationResult] = None
    mean_similarity: Optional[float] = None
    keyword_validation_applied: bool = False
    fallback_applied: bool = False
    message: str = ""

    @model_validator(mode="after")
    def check_unique_patients(self) -> "RetrievalResult":
        ids = [p.patient_id for p in self.patients]
        if len(ids) != len(set(ids)):
            raise ValueError("Retrieval result contains duplicate patient ids")
        if self.status == RetrievalStatus.NO_MATCH and self.patients:
            raise ValueError("A no_match result cannot carry patients")
        return self

    @computed_field
    @property
    def patient_ids(self) -> List[str]:
        return [p.patient_id for p in self.patients]


class IndexHit(BaseModel):
    """One similarity-search hit from the embedding index"""
    patient_id: str
    content: str
    score: float


# ============================================================================
# Embedding Index Models
# ============================================================================

class PatientEmbeddingRecord(CamelModel):
    """Canonical content blob and its vector for one patient"""
    patient_id: str
    content: str
    vector: List[float]
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model: Optional[str] = None


class IndexingOutcome(CamelModel):
    """Result of refreshing one patient's embedding"""
    patient_id: str
    status: IndexingStatus
    last_updated: Optional[datetime] = None
    reason: Optional[str] = None


class BatchIndexingReport(CamelModel):
    """Aggregate of a multi-patient refresh"""
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = Field(default_factory=list)

    def record(self, outcome: IndexingOutcome) -> None:
        counter = outcome.status.value
        setattr(self, counter, getattr(self, counter) + 1)
