"""
Unit tests for the schema (generative) extraction pass
"""

import pytest
from conftest import FakeLLMClient

from clinsight.config import settings
from clinsight.exceptions import MalformedResponseError, ServiceUnavailableError
from clinsight.modules.schema_extraction import (
    EXTRACTION_SCHEMA,
    SYSTEM_PROMPT,
    SchemaExtractor,
    build_user_prompt,
)


VALID_RESPONSE = {
    "vitalSigns": {"bloodPressure": "140/90"},
    "medicalInfo": {"symptoms": ["headache"]},
    "negationFlags": {"negatedSymptoms": ["fever"]},
    "confidence": 0.9,
}


class TestPromptConstruction:
    """Test the extraction prompt"""

    def test_prompt_contains_schema_examples_and_text(self):
        prompt = build_user_prompt("BP 120/80, denies chest pain")

        assert "negatedSymptoms" in prompt
        assert "Denies fever" in prompt
        assert prompt.rstrip().endswith("BP 120/80, denies chest pain")

    def test_schema_has_negation_flags(self):
        flags = EXTRACTION_SCHEMA["properties"]["negationFlags"]["properties"]
        assert set(flags) == {"negatedSymptoms", "negatedMedications", "negatedAllergies"}


class TestSchemaExtractor:
    """Test the generative pass and its failure modes"""

    @pytest.mark.anyio
    async def test_returns_parsed_structure(self):
        client = FakeLLMClient([VALID_RESPONSE])

        result = await SchemaExtractor(client).extract("BP 140/90, denies fever, has headache")

        assert result == VALID_RESPONSE
        call = client.calls[0]
        assert call["system_prompt"] == SYSTEM_PROMPT
        assert call["temperature"] == settings.extraction_temperature
        assert call["model"] == settings.openai_model

    @pytest.mark.anyio
    @pytest.mark.parametrize("error", [
        ServiceUnavailableError("timeout"),
        MalformedResponseError("not json"),
    ])
    async def test_service_failure_yields_none(self, error):
        """Test a failing generative service degrades to None"""
        client = FakeLLMClient([error])
        assert await SchemaExtractor(client).extract("BP 140/90") is None

    @pytest.mark.anyio
    async def test_response_outside_schema_yields_none(self):
        client = FakeLLMClient([{"answer": "The patient is fine"}])
        assert await SchemaExtractor(client).extract("BP 140/90") is None

    @pytest.mark.anyio
    async def test_empty_text_skips_call(self):
        client = FakeLLMClient([VALID_RESPONSE])
        assert await SchemaExtractor(client).extract("   ") is None
        assert client.calls == []

    @pytest.mark.anyio
    async def test_disabled_by_configuration(self, monkeypatch):
        monkeypatch.setattr(settings, "extraction_use_llm", False)
        client = FakeLLMClient([VALID_RESPONSE])

        assert await SchemaExtractor(client).extract("BP 140/90") is None
        assert client.calls == []
