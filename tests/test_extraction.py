"""
Unit tests for extraction module
"""

import pytest
from conftest import FakeLLMClient
from pydantic import ValidationError

from clinsight.exceptions import ExtractionFailedError, ServiceUnavailableError
from clinsight.modules.extraction import (
    ExtractionMerger,
    HybridExtractionEngine,
    extract_medical_info,
    parse_medication,
)
from clinsight.modules.pattern_extraction import extract_patterns
from clinsight.modules.schema_extraction import SchemaExtractor
from clinsight.schemas import ExtractionMethod, ExtractionResult, MedicalInfo, NegationFlags
from clinsight.services.llm_client import parse_json_object


def engine_with(*responses):
    return HybridExtractionEngine(schema_extractor=SchemaExtractor(FakeLLMClient(list(responses))))


def unavailable_engine():
    return engine_with(ServiceUnavailableError("LLM down"))


class TestMedicationParsing:
    """Test medication string parsing"""

    def test_medication_with_dose_and_frequency(self):
        """Test extracting medication with dosing information"""
        med = parse_medication("metformin 500mg twice daily")

        assert med.name == "metformin"
        assert med.dosage == "500mg"
        assert med.frequency == "twice daily"

    def test_medication_name_only(self):
        """Test dosage and frequency are never guessed"""
        med = parse_medication("lisinopril")

        assert med.name == "lisinopril"
        assert med.dosage is None
        assert med.frequency is None

    def test_structured_medication(self):
        med = parse_medication({"name": "albuterol", "dosage": "2 puffs", "frequency": "prn"})
        assert str(med) == "albuterol 2 puffs prn"

    def test_placeholder_is_dropped(self):
        assert parse_medication("none") is None
        assert parse_medication({"dosage": "10mg"}) is None


class TestNegationResolution:
    """Test that denied findings never survive as positives"""

    @pytest.mark.anyio
    async def test_schema_negation_removes_symptom(self):
        engine = engine_with({
            "medicalInfo": {"symptoms": ["fever", "headache"]},
            "negationFlags": {"negatedSymptoms": ["fever"]},
        })

        result = await engine.extract("Denies fever, has headache")

        assert result.medical_info.symptoms == ["headache"]
        assert "fever" in result.negation_flags.negated_symptoms
        assert result.removed_by_negation == {"symptoms": ["fever"]}

    @pytest.mark.anyio
    async def test_regex_negation_catches_missed_flag(self):
        """Test the pattern pass negation overrides a schema that missed it"""
        engine = engine_with({"medicalInfo": {"symptoms": ["fever", "headache"]}})

        result = await engine.extract("Denies fever, has headache")

        assert result.medical_info.symptoms == ["headache"]
        assert result.negation_flags.negated_symptoms == ["fever"]

    @pytest.mark.anyio
    async def test_present_finding_after_negation_kept(self):
        """Test a denial does not carry past the comma into a present finding"""
        engine = engine_with({
            "medicalInfo": {"symptoms": ["cough"]},
            "negationFlags": {"negatedSymptoms": ["fever"]},
        })

        result = await engine.extract("No fever, cough present for 3 days.")

        assert result.medical_info.symptoms == ["cough"]
        assert result.negation_flags.negated_symptoms == ["fever"]
        assert result.removed_by_negation == {}

    @pytest.mark.anyio
    async def test_negated_medication_removed(self):
        engine = engine_with({
            "medicalInfo": {"currentMedications": ["aspirin 81mg daily", "metformin 500mg twice daily"]},
            "negationFlags": {"negatedMedications": ["aspirin"]},
        })

        result = await engine.extract("Stopped taking aspirin. Taking metformin 500mg twice daily.")

        names = [med.name for med in result.medical_info.current_medications]
        assert names == ["metformin"]
        assert result.removed_by_negation["medications"] == ["aspirin 81mg daily"]

    def test_result_rejects_unresolved_negation(self):
        """Test the result model refuses a negated term as a positive finding"""
        with pytest.raises(ValidationError):
            ExtractionResult(
                medical_info=MedicalInfo(symptoms=["Fever"]),
                negation_flags=NegationFlags(negated_symptoms=["fever"]),
                confidence=0.8
            )


class TestVitalSignValidation:
    """Test vital sign merge and plausibility checks"""

    @pytest.mark.anyio
    async def test_implausible_blood_pressure_discarded(self):
        """Test an out-of-range reading is dropped, never stored"""
        result = await unavailable_engine().extract("BP 400/250, heart rate 80.")

        assert result.vital_signs.blood_pressure is None
        assert result.vital_signs.heart_rate == 80
        assert result.rejected_vitals == ["blood_pressure"]
        assert "400/250" not in result.model_dump_json()

    @pytest.mark.anyio
    async def test_pattern_value_used_when_schema_value_invalid(self):
        engine = engine_with({"vitalSigns": {"bloodPressure": "400/250"}})

        result = await engine.extract("BP 130/85 on recheck")

        assert str(result.vital_signs.blood_pressure) == "130/85"
        assert result.rejected_vitals == ["blood_pressure"]

    @pytest.mark.anyio
    async def test_unparseable_schema_value_is_not_a_rejection(self):
        engine = engine_with({"vitalSigns": {"bloodPressure": "normal"}})

        result = await engine.extract("BP 130/85")

        assert str(result.vital_signs.blood_pressure) == "130/85"
        assert result.rejected_vitals == []

    @pytest.mark.anyio
    async def test_fahrenheit_converted(self):
        engine = engine_with({"vitalSigns": {"temperature": 101.3, "temperatureUnit": "F"}})

        result = await engine.extract("Feels warm")

        assert result.vital_signs.temperature_c == pytest.approx(38.5)

    @pytest.mark.anyio
    @pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
    async def test_non_finite_schema_vitals_ignored(self, literal):
        """Test NaN/Infinity in the model's JSON fall through to the pattern reading"""
        response = parse_json_object(
            f'{{"vitalSigns": {{"heartRate": {literal}, "temperature": {literal}}}, '
            f'"medicalInfo": {{"symptoms": ["cough"]}}}}'
        )
        engine = engine_with(response)

        result = await engine.extract("Cough, heart rate 88.")

        assert result.vital_signs.heart_rate == 88
        assert result.vital_signs.temperature_c is None
        assert result.rejected_vitals == []

    @pytest.mark.anyio
    async def test_negative_blood_pressure_ignored(self):
        engine = engine_with({
            "vitalSigns": {"bloodPressure": {"systolic": 120, "diastolic": -80}},
            "medicalInfo": {"symptoms": ["cough"]}
        })

        result = await engine.extract("BP 118/76, cough")

        assert str(result.vital_signs.blood_pressure) == "118/76"
        assert result.rejected_vitals == []


class TestHybridExtractionEngine:
    """Test complete extraction engine"""

    @pytest.fixture
    def sample_text(self):
        """Sample transcript"""
        return "BP 140/90, heart rate 85. Patient reports headache. Allergic to penicillin."

    @pytest.mark.anyio
    async def test_pattern_only_fallback(self, sample_text):
        """Test extraction still succeeds when the generative service is down"""
        result = await unavailable_engine().extract(sample_text)

        assert result.extraction_method == ExtractionMethod.PATTERN_ONLY
        assert result.confidence == pytest.approx(0.7)
        assert str(result.vital_signs.blood_pressure) == "140/90"
        assert result.vital_signs.heart_rate == 85
        assert result.medical_info.symptoms == ["headache"]
        assert result.medical_info.allergies == ["penicillin"]

    @pytest.mark.anyio
    async def test_hybrid_uses_schema_confidence(self, sample_text):
        engine = engine_with({"medicalInfo": {"symptoms": ["headache"]}, "confidence": 0.92})

        result = await engine.extract(sample_text)

        assert result.extraction_method == ExtractionMethod.HYBRID
        assert result.confidence == pytest.approx(0.92)

    @pytest.mark.anyio
    async def test_confidence_clamped(self, sample_text):
        engine = engine_with({"medicalInfo": {"symptoms": ["headache"]}, "confidence": 1.7})
        result = await engine.extract(sample_text)
        assert result.confidence == 1.0

    @pytest.mark.anyio
    async def test_non_finite_confidence_uses_fallback(self, sample_text):
        engine = engine_with({"medicalInfo": {"symptoms": ["headache"]}, "confidence": float("nan")})
        result = await engine.extract(sample_text)
        assert result.confidence == pytest.approx(0.7)

    @pytest.mark.anyio
    async def test_patterns_fill_missing_schema_fields(self, sample_text):
        """Test schema fields win and pattern matches fill the gaps"""
        engine = engine_with({"medicalInfo": {"symptoms": ["tension headache"]}})

        result = await engine.extract(sample_text)

        assert result.medical_info.symptoms == ["tension headache"]
        assert result.medical_info.allergies == ["penicillin"]
        assert str(result.vital_signs.blood_pressure) == "140/90"

    @pytest.mark.anyio
    async def test_empty_transcript(self):
        with pytest.raises(ExtractionFailedError):
            await unavailable_engine().extract("   ")

    @pytest.mark.anyio
    async def test_nothing_usable(self):
        """Test failure when neither pass yields anything"""
        with pytest.raises(ExtractionFailedError):
            await unavailable_engine().extract("Hello there, how are you?")

        with pytest.raises(ExtractionFailedError):
            await engine_with({"vitalSigns": {}, "medicalInfo": {}}).extract("Hello there, how are you?")

    @pytest.mark.anyio
    async def test_record_fields(self, sample_text):
        result = await extract_medical_info(sample_text, client=FakeLLMClient([ServiceUnavailableError("down")]))

        fields = result.to_record_fields()
        assert fields["vital_signs"]["blood_pressure"] == "140/90"
        assert fields["symptoms"] == "headache"
        assert fields["current_medications"] is None


class TestExtractionMerger:
    """Test merging raw passes directly"""

    def test_merge_pattern_only(self):
        patterns = extract_patterns("Taking lisinopril 10mg daily and metformin.")

        result = ExtractionMerger().merge(patterns, None)

        assert result.extraction_method == ExtractionMethod.PATTERN_ONLY
        assert [str(m) for m in result.medical_info.current_medications] == [
            "lisinopril 10mg daily", "metformin"
        ]

    def test_placeholder_values_ignored(self):
        schema = {"medicalInfo": {"allergies": ["NKDA"], "diagnosis": "none", "symptoms": ["cough"]}}

        result = ExtractionMerger().merge(extract_patterns(""), schema)

        assert result.medical_info.allergies == []
        assert result.medical_info.diagnosis is None
        assert result.medical_info.symptoms == ["cough"]
