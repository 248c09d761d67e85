"""
Clinsight Query Classifier
Population-wide vs condition-specific decision for free-text report requests
"""

import json
import logging
from typing import Optional

from pydantic import ValidationError

from clinsight.config import settings
from clinsight.exceptions import GenerativeServiceError, MalformedResponseError
from clinsight.schemas import ClassificationConfidence, ClassificationResult, QueryType
from clinsight.services.llm_client import GenerativeClient, get_llm_client

logger = logging.getLogger(__name__)


CLASSIFIER_SYSTEM_PROMPT = """You are a medical query classifier. Your ONLY job is to classify queries into two categories and respond with ONLY a JSON object.

**Category 1: POPULATION-LEVEL ANALYSIS**
Queries asking for statistics/analysis about ALL patients.
Examples: "Analyze disease distribution", "Identify top comorbidities", "Show health trends"

**Category 2: CONDITION-SPECIFIC FILTERING**
Queries looking for specific patients with a condition.
Examples: "Patients who have vomiting", "Show me pregnant patients", "Find patients with diabetes"

RESPOND WITH ONLY THIS JSON (no other text):
{"type": "population" or "condition-specific", "confidence": "high/medium/low", "reasoning": "one sentence"}"""


def conservative_default(reasoning: str) -> ClassificationResult:
    """Condition-specific with low confidence, so downstream validation stays strict"""
    return ClassificationResult(
        query_type=QueryType.CONDITION_SPECIFIC,
        confidence=ClassificationConfidence.LOW,
        reasoning=reasoning
    )


class QueryClassifier:
    """One generative call per query, with a strict conservative fallback"""

    def __init__(self, client: Optional[GenerativeClient] = None):
        self.client = client

    def _get_client(self) -> GenerativeClient:
        if self.client is None:
            self.client = get_llm_client()
        return self.client

    async def classify(self, query: str) -> ClassificationResult:
        """
        Classify a free-text query

        Never raises: service failures and unparseable answers both yield
        the conservative default.
        """
        try:
            response = await self._get_client().generate_json(
                CLASSIFIER_SYSTEM_PROMPT,
                f"Classify this query: {json.dumps(query)}",
                model=settings.classifier_model,
                temperature=settings.classifier_temperature,
                max_tokens=settings.classifier_max_tokens
            )
        except MalformedResponseError as e:
            logger.warning(f"Failed to parse LLM classification, using fallback: {e}")
            return conservative_default("Failed to parse LLM response")
        except GenerativeServiceError as e:
            logger.error(f"LLM classification failed, using fallback: {e}")
            return conservative_default("LLM classification failed")

        try:
            result = ClassificationResult.model_validate(response)
        except ValidationError as e:
            logger.warning(f"LLM classification outside schema, using fallback: {e.error_count()} errors")
            return conservative_default("Failed to parse LLM response")

        logger.info(
            f"Query classified as {result.query_type.value} "
            f"(confidence={result.confidence.value})"
        )
        return result


# =============================================================================
# Public API
# =============================================================================

async def classify_query(query: str, client: Optional[GenerativeClient] = None) -> ClassificationResult:
    """Classify a report request as population-wide or condition-specific"""
    return await QueryClassifier(client).classify(query)
