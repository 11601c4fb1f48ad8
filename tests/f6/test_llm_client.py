"""Tests for LLM client module (F6)."""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import APIConnectionError, OpenAIError

from drillcoach.config.app_config import ProviderConfig
from drillcoach.llm.client import (
    LOCAL_API_KEY,
    LLMClient,
    LLMConfig,
    LLMConnectionError,
    LLMError,
    LLMResponse,
    LLMResponseError,
    Message,
    extract_json_object,
)


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "test-model"
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 20
    response.usage.total_tokens = 30
    return response


class TestLLMConfig:
    """Tests for LLMConfig dataclass."""

    def test_default_config(self):
        config = LLMConfig()

        assert config.provider == "lmstudio"
        assert config.base_url == "http://localhost:1234/v1"
        assert config.temperature == 0.4
        assert config.max_tokens == 2048

    def test_from_provider_lmstudio_uses_local_key(self):
        provider = ProviderConfig(base_url="http://localhost:1234/v1", default_model="local-model")

        config = LLMConfig.from_provider("lmstudio", provider)

        assert config.model == "local-model"
        assert config.api_key == LOCAL_API_KEY

    def test_from_provider_openai_reads_env(self):
        provider = ProviderConfig(base_url=None, default_model="gpt-4o-mini", api_key_env="OPENAI_API_KEY")

        with patch.dict("os.environ", {"OPENAI_API_KEY": "test-key"}):
            config = LLMConfig.from_provider("openai", provider, model="gpt-4o")

        assert config.provider == "openai"
        assert config.model == "gpt-4o"
        assert config.api_key == "test-key"
        assert config.base_url is None

    def test_from_provider_unknown(self):
        with patch("drillcoach.llm.client.get_provider_config", return_value=None):
            config = LLMConfig.from_provider("nowhere")

        assert config.provider == "nowhere"
        assert config.model == "default"


class TestMessages:
    def test_message_to_dict(self):
        assert Message(role="user", content="Hello").to_dict() == {"role": "user", "content": "Hello"}

    def test_response_total_tokens(self):
        response = LLMResponse(content="x", model="m", provider="lmstudio", usage={"total_tokens": 7})
        assert response.total_tokens == 7


class TestExtractJsonObject:
    """Tests for pulling a JSON object out of model output."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ('{"a": 1}', {"a": 1}),
            ('Sure!\n```json\n{"a": 1}\n```\nDone.', {"a": 1}),
            ('Result: {"a": {"b": 2}} as requested', {"a": {"b": 2}}),
            ('<reasoning>{"a": 0}</reasoning>\n{"a": 3}', {"a": 3}),
        ],
    )
    def test_extracts_object(self, text, expected):
        assert extract_json_object(text) == expected

    @pytest.mark.parametrize("text", ["[1, 2]", "no braces here", "{broken: json}", ""])
    def test_returns_none(self, text):
        assert extract_json_object(text) is None


class TestLLMClientMocked:
    """Tests for LLMClient using mocks (no real API calls)."""

    @pytest.fixture
    def mock_openai_client(self):
        """Create a mock OpenAI client."""
        with patch("drillcoach.llm.client.OpenAI") as mock:
            mock_instance = MagicMock()
            mock.return_value = mock_instance
            yield mock_instance

    def test_chat_success(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion("Test response")

        client = LLMClient(config=LLMConfig(model="test-model"))
        response = client.chat([Message(role="user", content="Hello")])

        assert response.content == "Test response"
        assert response.total_tokens == 30
        mock_openai_client.chat.completions.create.assert_called_once()

    def test_chat_empty_response(self, mock_openai_client):
        response = MagicMock()
        response.choices = []
        mock_openai_client.chat.completions.create.return_value = response

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMResponseError, match="Empty response"):
            client.chat([Message(role="user", content="Hello")])

    def test_chat_connection_error(self, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = APIConnectionError(
            request=httpx.Request("POST", "http://localhost:1234/v1/chat/completions")
        )

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMConnectionError, match="Could not connect"):
            client.chat([Message(role="user", content="Hello")])

    def test_chat_other_error(self, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = OpenAIError("rate limited")

        client = LLMClient(config=LLMConfig())

        with pytest.raises(LLMError, match="LLM call failed"):
            client.chat([Message(role="user", content="Hello")])

    def test_no_response_format_for_lmstudio(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion('{"a": 1}')

        LLMClient(config=LLMConfig(provider="lmstudio")).chat_json([Message(role="user", content="x")])

        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert "response_format" not in kwargs

    def test_response_format_for_openai(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion('{"a": 1}')

        LLMClient(config=LLMConfig(provider="openai", api_key="k")).chat_json(
            [Message(role="user", content="x")]
        )

        kwargs = mock_openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_chat_json_extracts_from_markdown_block(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion(
            'Here you go:\n```json\n{"stages": []}\n```'
        )

        result = LLMClient(config=LLMConfig()).chat_json([Message(role="user", content="x")])

        assert result == {"stages": []}

    def test_chat_json_strips_think_tags(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion(
            '<think>{"wrong": true}</think>{"right": true}'
        )

        result = LLMClient(config=LLMConfig()).chat_json([Message(role="user", content="x")])

        assert result == {"right": True}

    def test_chat_json_repairs_once(self, mock_openai_client):
        mock_openai_client.chat.completions.create.side_effect = [
            _completion("not json at all"),
            _completion('{"fixed": true}'),
        ]

        result = LLMClient(config=LLMConfig()).chat_json([Message(role="user", content="x")])

        assert result == {"fixed": True}
        retry_messages = mock_openai_client.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert "not json at all" in retry_messages[-1]["content"]

    def test_chat_json_gives_up(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion("still not json")

        with pytest.raises(LLMResponseError, match="Could not obtain valid JSON"):
            LLMClient(config=LLMConfig()).chat_json([Message(role="user", content="x")])

        assert mock_openai_client.chat.completions.create.call_count == 2

    def test_simple_json_sends_system_and_user(self, mock_openai_client):
        mock_openai_client.chat.completions.create.return_value = _completion('{"ok": 1}')

        LLMClient(config=LLMConfig()).simple_json("system text", "user text")

        messages = mock_openai_client.chat.completions.create.call_args.kwargs["messages"]
        assert [m["role"] for m in messages] == ["system", "user"]

    def test_is_available(self, mock_openai_client):
        client = LLMClient(config=LLMConfig())
        assert client.is_available()

        mock_openai_client.models.list.side_effect = OpenAIError("down")
        assert not client.is_available()
