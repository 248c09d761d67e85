"""
Clinsight Schema Extractor
Generative pass: fixed JSON schema plus few-shot negation examples, low temperature, JSON only
"""

import json
import logging
from typing import Any, Dict, Optional

from clinsight.config import settings
from clinsight.exceptions import GenerativeServiceError
from clinsight.services.llm_client import GenerativeClient, get_llm_client

logger = logging.getLogger(__name__)


EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "vitalSigns": {
            "type": "object",
            "properties": {
                "bloodPressure": {"type": "string", "description": "Blood pressure as 'systolic/diastolic'"},
                "heartRate": {"type": "number", "description": "Heart rate in BPM"},
                "temperature": {"type": "number", "description": "Body temperature as stated"},
                "temperatureUnit": {"type": "string", "enum": ["F", "C"]},
                "weight": {"type": "number", "description": "Body weight as stated"},
                "weightUnit": {"type": "string", "enum": ["kg", "lb"]},
                "height": {"type": "string", "description": "Height as stated, e.g. 5'10\" or 178 cm"}
            }
        },
        "medicalInfo": {
            "type": "object",
            "properties": {
                "chiefComplaint": {"type": "string", "description": "Primary complaint or reason for visit"},
                "symptoms": {"type": "array", "items": {"type": "string"}, "description": "Symptoms present now"},
                "currentMedications": {"type": "array", "items": {"type": "string"},
                                       "description": "Current medications with dose and frequency as stated"},
                "allergies": {"type": "array", "items": {"type": "string"}, "description": "Known allergies"},
                "medicalHistory": {"type": "string", "description": "Relevant medical history"},
                "diagnosis": {"type": "string", "description": "Diagnosis or suspected condition"},
                "treatmentPlan": {"type": "string", "description": "Treatment plan or recommendations"}
            }
        },
        "confidence": {"type": "number", "description": "Confidence score 0-1 for the extraction"},
        "negationFlags": {
            "type": "object",
            "description": "Terms the speaker explicitly denied (e.g., 'no fever', 'denies chest pain')",
            "properties": {
                "negatedSymptoms": {"type": "array", "items": {"type": "string"}},
                "negatedMedications": {"type": "array", "items": {"type": "string"}},
                "negatedAllergies": {"type": "array", "items": {"type": "string"}}
            }
        }
    }
}

FEW_SHOT_EXAMPLES = [
    (
        "Patient presents with chest pain for 2 days, blood pressure 140/90, heart rate 85. "
        "No known allergies. Taking metformin 500mg twice daily.",
        {
            "vitalSigns": {"bloodPressure": "140/90", "heartRate": 85},
            "medicalInfo": {
                "chiefComplaint": "chest pain for 2 days",
                "symptoms": ["chest pain"],
                "currentMedications": ["metformin 500mg twice daily"],
                "allergies": [],
                "medicalHistory": "",
                "diagnosis": "",
                "treatmentPlan": ""
            },
            "confidence": 0.9,
            "negationFlags": {"negatedAllergies": ["known allergies"]}
        }
    ),
    (
        "Denies fever, blood pressure normal, patient reports headache and nausea.",
        {
            "vitalSigns": {},
            "medicalInfo": {
                "chiefComplaint": "headache and nausea",
                "symptoms": ["headache", "nausea"],
                "currentMedications": [],
                "allergies": [],
                "medicalHistory": "",
                "diagnosis": "",
                "treatmentPlan": ""
            },
            "confidence": 0.8,
            "negationFlags": {"negatedSymptoms": ["fever"]}
        }
    ),
    (
        "Temp 101.3, weight 180 lbs. Stopped taking ibuprofen last week, no shortness of breath. "
        "Allergic to penicillin. Likely viral syndrome, fluids and rest.",
        {
            "vitalSigns": {"temperature": 101.3, "temperatureUnit": "F", "weight": 180, "weightUnit": "lb"},
            "medicalInfo": {
                "chiefComplaint": "fever",
                "symptoms": ["fever"],
                "currentMedications": [],
                "allergies": ["penicillin"],
                "medicalHistory": "",
                "diagnosis": "viral syndrome",
                "treatmentPlan": "fluids and rest"
            },
            "confidence": 0.85,
            "negationFlags": {
                "negatedSymptoms": ["shortness of breath"],
                "negatedMedications": ["ibuprofen"]
            }
        }
    ),
]

SYSTEM_PROMPT = (
    "You are a medical information extraction specialist. Extract structured medical "
    "information from doctor-patient conversations. Focus on accuracy and handle negation "
    "patterns carefully: a denied finding goes in negationFlags, never in medicalInfo. "
    "Do not invent values that are not stated. Always respond with valid JSON matching the schema."
)

RESULT_KEYS = ("vitalSigns", "medicalInfo", "negationFlags")


def build_user_prompt(text: str) -> str:
    """Schema, few-shot examples and the transcript as one prompt"""
    examples = "\n\n".join(
        f'Input: "{source}"\nOutput: {json.dumps(output, indent=2)}'
        for source, output in FEW_SHOT_EXAMPLES
    )
    return (
        f"JSON schema:\n{json.dumps(EXTRACTION_SCHEMA, indent=2)}\n\n"
        f"Examples of medical conversation extraction:\n\n{examples}\n\n"
        f"Extract medical information from this conversation:\n\n{text}"
    )


class SchemaExtractor:
    """Generative extraction pass; any failure yields None"""

    def __init__(self, client: Optional[GenerativeClient] = None):
        self.client = client

    def _get_client(self) -> GenerativeClient:
        if self.client is None:
            self.client = get_llm_client()
        return self.client

    async def extract(self, text: str) -> Optional[Dict[str, Any]]:
        """
        Extract structured fields with the generative service

        Returns:
            Parsed camelCase structure, or None if the service failed or
            answered outside the schema
        """
        if not settings.extraction_use_llm or not text or not text.strip():
            return None

        try:
            response = await self._get_client().generate_json(
                SYSTEM_PROMPT,
                build_user_prompt(text),
                model=settings.openai_model,
                temperature=settings.extraction_temperature
            )
        except GenerativeServiceError as e:
            logger.warning(f"Schema extraction unavailable, continuing with pattern pass: {e}")
            return None

        if not any(isinstance(response.get(key), dict) for key in RESULT_KEYS):
            logger.warning(f"Schema extraction response has none of {RESULT_KEYS}; ignoring it")
            return None

        logger.info("✓ Schema extraction completed")
        return response
