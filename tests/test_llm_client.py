"""
Unit tests for the generative client
"""

from types import SimpleNamespace

import anthropic
import openai
import pytest

from clinsight.config import settings
from clinsight.exceptions import MalformedResponseError, ServiceUnavailableError
from clinsight.services.llm_client import LLMClient, parse_json_object


def fake_openai(content=None, error=None):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client.calls = calls
    return client


def fake_anthropic(text=None, error=None):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        return SimpleNamespace(content=[SimpleNamespace(text=text)])

    client = SimpleNamespace(messages=SimpleNamespace(create=create))
    client.calls = calls
    return client


class TestParseJsonObject:
    """Test JSON recovery from model output"""

    def test_plain_object(self):
        assert parse_json_object('{"type": "population"}') == {"type": "population"}

    def test_object_wrapped_in_prose(self):
        """Test prose and code fences around the object are ignored"""
        text = 'Sure! Here it is:\n```json\n{"a": {"b": [1, 2]}, "c": "x"}\n```\nHope that helps.'
        assert parse_json_object(text) == {"a": {"b": [1, 2]}, "c": "x"}

    def test_braces_inside_strings(self):
        text = 'Result: {"reasoning": "uses {braces} and \\"quotes\\"", "ok": true}'
        parsed = parse_json_object(text)
        assert parsed["reasoning"] == 'uses {braces} and "quotes"'
        assert parsed["ok"] is True

    def test_skips_unparseable_candidate(self):
        """Test a broken leading object does not hide a later valid one"""
        text = "{not json} then {\"type\": \"condition-specific\"}"
        assert parse_json_object(text) == {"type": "condition-specific"}

    @pytest.mark.parametrize("text", ["", None, "no json here", "{\"unterminated\": 1"])
    def test_unrecoverable(self, text):
        with pytest.raises(MalformedResponseError):
            parse_json_object(text)


class TestLLMClient:
    """Test provider selection and failure handling"""

    @pytest.fixture(autouse=True)
    def providers(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", None)
        monkeypatch.setattr(settings, "anthropic_api_key", None)
        monkeypatch.setattr(settings, "llm_provider", "openai")
        monkeypatch.setattr(settings, "llm_fallback_provider", "anthropic")

    @pytest.mark.anyio
    async def test_primary_provider(self):
        primary = fake_openai(content='{"type": "population"}')
        client = LLMClient(openai_client=primary, anthropic_client=fake_anthropic(text="{}"))

        result = await client.generate_json("system", "user", temperature=0.0)

        assert result == {"type": "population"}
        assert primary.calls[0]["response_format"] == {"type": "json_object"}
        assert primary.calls[0]["temperature"] == 0.0

    @pytest.mark.anyio
    async def test_falls_back_to_secondary_provider(self):
        """Test a failing primary hands over to the fallback provider"""
        primary = fake_openai(error=openai.OpenAIError("connection reset"))
        secondary = fake_anthropic(text='Here you go: {"type": "condition-specific"}')
        client = LLMClient(openai_client=primary, anthropic_client=secondary)

        result = await client.generate_json("system", "user")

        assert result == {"type": "condition-specific"}
        assert len(primary.calls) == 1
        assert len(secondary.calls) == 1

    @pytest.mark.anyio
    async def test_all_providers_fail(self):
        client = LLMClient(
            openai_client=fake_openai(error=openai.OpenAIError("down")),
            anthropic_client=fake_anthropic(error=anthropic.AnthropicError("down"))
        )
        with pytest.raises(ServiceUnavailableError):
            await client.generate_json("system", "user")

    @pytest.mark.anyio
    async def test_no_provider_configured(self):
        client = LLMClient()
        assert not client.available
        with pytest.raises(ServiceUnavailableError):
            await client.generate_json("system", "user")

    @pytest.mark.anyio
    async def test_malformed_answer(self):
        client = LLMClient(openai_client=fake_openai(content="I cannot answer that."))
        with pytest.raises(MalformedResponseError):
            await client.generate_json("system", "user")
