"""
Unit tests for query classification
"""

import pytest
from conftest import FakeLLMClient

from clinsight.config import settings
from clinsight.exceptions import MalformedResponseError, ServiceUnavailableError
from clinsight.modules.classification import QueryClassifier, classify_query
from clinsight.schemas import ClassificationConfidence, QueryType


class TestQueryClassifier:
    """Test population vs condition-specific classification"""

    @pytest.mark.anyio
    async def test_population_query(self):
        client = FakeLLMClient([{
            "type": "population",
            "confidence": "high",
            "reasoning": "Asks for statistics across all patients",
        }])

        result = await QueryClassifier(client).classify("Analyze disease distribution")

        assert result.query_type == QueryType.POPULATION
        assert result.is_population
        assert result.confidence == ClassificationConfidence.HIGH

    @pytest.mark.anyio
    async def test_condition_specific_query(self):
        client = FakeLLMClient([{"type": "Condition_Specific", "confidence": "Medium", "reasoning": "x"}])

        result = await classify_query("Find patients with diabetes", client=client)

        assert result.query_type == QueryType.CONDITION_SPECIFIC
        assert result.confidence == ClassificationConfidence.MEDIUM

    @pytest.mark.anyio
    async def test_deterministic_call_settings(self):
        """Test the classifier asks for a short, zero-temperature answer"""
        client = FakeLLMClient([{"type": "population", "confidence": "high", "reasoning": ""}])

        await QueryClassifier(client).classify("Show health trends")

        call = client.calls[0]
        assert call["temperature"] == settings.classifier_temperature == 0.0
        assert call["model"] == settings.classifier_model
        assert call["max_tokens"] == settings.classifier_max_tokens
        assert "Show health trends" in call["user_prompt"]

    @pytest.mark.anyio
    async def test_service_failure_falls_back(self):
        """Test a service failure yields the conservative default"""
        client = FakeLLMClient([ServiceUnavailableError("timeout")])

        result = await QueryClassifier(client).classify("Patients who have vomiting")

        assert result.query_type == QueryType.CONDITION_SPECIFIC
        assert result.confidence == ClassificationConfidence.LOW
        assert result.reasoning == "LLM classification failed"

    @pytest.mark.anyio
    async def test_unparseable_answer_falls_back(self):
        client = FakeLLMClient([MalformedResponseError("no json")])

        result = await QueryClassifier(client).classify("Patients who have vomiting")

        assert result.query_type == QueryType.CONDITION_SPECIFIC
        assert result.reasoning == "Failed to parse LLM response"

    @pytest.mark.anyio
    @pytest.mark.parametrize("response", [
        {"type": "unknown", "confidence": "high"},
        {"confidence": "high", "reasoning": "missing type"},
        {"type": "population", "confidence": "certain"},
    ])
    async def test_answer_outside_schema_falls_back(self, response):
        """Test an answer outside the label set is never trusted"""
        result = await QueryClassifier(FakeLLMClient([response])).classify("Show me pregnant patients")

        assert result.query_type == QueryType.CONDITION_SPECIFIC
        assert result.confidence == ClassificationConfidence.LOW
        assert result.reasoning == "Failed to parse LLM response"
