"""
Clinsight - Generative Language Client
Single JSON-in/JSON-out interface over OpenAI and Anthropic
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import anthropic
import openai
from tenacity import retry, stop_after_attempt, wait_exponential

from clinsight.config import settings
from clinsight.exceptions import MalformedResponseError, ServiceUnavailableError

logger = logging.getLogger(__name__)


# =============================================================================
# JSON Location
# =============================================================================

def _balanced_object_end(text: str, start: int) -> int:
    """Index one past the brace closing the object opened at start, or -1"""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index + 1
    return -1


def parse_json_object(text: Optional[str]) -> Dict[str, Any]:
    """
    Locate and parse the first complete JSON object in a model response

    Tolerates prose or code fences around the object. Each opening brace is
    tried in turn until one yields a balanced, parseable object.

    Raises:
        MalformedResponseError: if no JSON object can be recovered
    """
    if not text:
        raise MalformedResponseError("Empty response from generative service")

    start = text.find("{")
    while start != -1:
        end = _balanced_object_end(text, start)
        if end == -1:
            break
        try:
            parsed = json.loads(text[start:end])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
        start = text.find("{", start + 1)

    raise MalformedResponseError(f"No JSON object found in response: {text[:200]}")


# =============================================================================
# Client Interface
# =============================================================================

class GenerativeClient(ABC):
    """Takes a prompt and returns a parsed JSON object, or raises GenerativeServiceError"""

    @abstractmethod
    async def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        ...


class LLMClient(GenerativeClient):
    """Handles communication with OpenAI and Anthropic"""

    def __init__(
        self,
        openai_client: Optional[openai.AsyncOpenAI] = None,
        anthropic_client: Optional[anthropic.AsyncAnthropic] = None
    ):
        self.provider = settings.llm_provider
        self.fallback_provider = settings.llm_fallback_provider
        self.openai_client = openai_client
        self.anthropic_client = anthropic_client

        if self.openai_client is None and settings.openai_api_key:
            self.openai_client = openai.AsyncOpenAI(
                api_key=settings.openai_api_key,
                timeout=settings.llm_timeout,
                max_retries=0
            )
            logger.info("OpenAI client initialized")

        if self.anthropic_client is None and settings.anthropic_api_key:
            self.anthropic_client = anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                timeout=settings.llm_timeout,
                max_retries=0
            )
            logger.info("Anthropic client initialized")

        if not self.openai_client and not self.anthropic_client:
            logger.warning("No LLM API clients initialized - generative calls will degrade")

    @property
    def available(self) -> bool:
        return bool(self.openai_client or self.anthropic_client)

    @retry(
        stop=stop_after_attempt(settings.llm_max_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True
    )
    async def _call_openai(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str],
        temperature: float,
        max_tokens: Optional[int]
    ) -> str:
        """Call OpenAI chat completions in JSON mode"""
        response = await self.openai_client.chat.completions.create(
            model=model or settings.openai_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            response_format={"type": "json_object"},
            temperature=temperature,
            max_tokens=max_tokens or settings.openai_max_tokens
        )
        return response.choices[0].message.content or ""

    @retry(
        stop=stop_after_attempt(settings.llm_max_attempts),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True
    )
    async def _call_anthropic(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: Optional[int]
    ) -> str:
        """Call Anthropic messages API"""
        response = await self.anthropic_client.messages.create(
            model=settings.anthropic_model,
            system=f"{system_prompt}\nReturn ONLY a valid JSON object, no other text.",
            messages=[{"role": "user", "content": user_prompt}],
            temperature=temperature,
            max_tokens=max_tokens or settings.anthropic_max_tokens
        )
        return "".join(block.text for block in response.content if getattr(block, "text", None))

    def _provider_order(self):
        order = [self.provider]
        if self.fallback_provider and self.fallback_provider != self.provider:
            order.append(self.fallback_provider)
        return order

    async def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Run the prompt against the primary provider, then the fallback provider

        Args:
            system_prompt: Instructions for the model
            user_prompt: Task input
            model: OpenAI model override (Anthropic always uses its configured model)
            temperature: Sampling temperature
            max_tokens: Completion limit, provider default when None

        Returns:
            Parsed JSON object

        Raises:
            ServiceUnavailableError: no provider configured, or every provider call failed
            MalformedResponseError: a provider answered without a JSON object
        """
        last_error: Optional[Exception] = None

        for provider in self._provider_order():
            try:
                if provider == "openai" and self.openai_client:
                    content = await self._call_openai(
                        system_prompt, user_prompt, model, temperature, max_tokens
                    )
                elif provider == "anthropic" and self.anthropic_client:
                    content = await self._call_anthropic(
                        system_prompt, user_prompt, temperature, max_tokens
                    )
                else:
                    continue
            except (openai.OpenAIError, anthropic.AnthropicError) as e:
                logger.warning(f"{provider} call failed: {e}")
                last_error = e
                continue

            return parse_json_object(content)

        if last_error is None:
            raise ServiceUnavailableError("No generative provider configured")
        raise ServiceUnavailableError(f"All generative providers failed: {last_error}") from last_error


# =============================================================================
# Global Instance
# =============================================================================

_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Get or create the process-wide LLM client"""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient()
    return _llm_client
