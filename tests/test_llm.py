"""Tests for lkb/llm.py client, error mapping and retries."""

from types import SimpleNamespace

import httpx
import openai
import pytest

from lkb.config import Settings
from lkb.errors import (
    ConfigurationError,
    ContentFiltered,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    Timeout,
)
from lkb.llm import LLMClient, map_openai_error
from lkb.prompts import EXTRACT_NOTES, SUMMARY

SETTINGS = Settings(
    endpoint="https://example.openai.azure.com",
    api_key="secret",
    embedding_deployment="embed-deploy",
    chat_deployment="chat-deploy",
    store_uri="./data/knowledge",
)

REQUEST = httpx.Request("POST", "https://example.openai.azure.com/openai/deployments/x")


def status_error(cls, status, body=None):
    return cls("error", response=httpx.Response(status, request=REQUEST), body=body)


class ScriptedCall:
    """Callable that raises or returns the next scripted outcome."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.kwargs = []

    def __call__(self, **kwargs):
        self.kwargs.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def embedding_response(vector):
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector)])


def chat_response(content, finish_reason="stop"):
    message = SimpleNamespace(content=content)
    return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason=finish_reason)])


def make_client(embed=None, chat=None, max_retries=3):
    fake = SimpleNamespace(
        embeddings=SimpleNamespace(create=embed),
        chat=SimpleNamespace(completions=SimpleNamespace(create=chat)),
    )
    config = {"llm": {"max_retries": max_retries, "retry_backoff": 0}}
    return LLMClient(SETTINGS, config, client=fake)


class TestMapOpenAIError:
    def test_rate_limit(self):
        assert isinstance(map_openai_error(status_error(openai.RateLimitError, 429)), RateLimited)

    def test_timeout(self):
        assert isinstance(map_openai_error(openai.APITimeoutError(request=REQUEST)), Timeout)

    def test_connection(self):
        error = openai.APIConnectionError(request=REQUEST)
        assert isinstance(map_openai_error(error), ProviderUnavailable)

    def test_server_error(self):
        error = status_error(openai.InternalServerError, 503)
        assert isinstance(map_openai_error(error), ProviderUnavailable)

    def test_content_filter(self):
        error = status_error(openai.BadRequestError, 400, body={"code": "content_filter"})
        assert isinstance(map_openai_error(error), ContentFiltered)

    def test_other_status_not_transient(self):
        mapped = map_openai_error(status_error(openai.AuthenticationError, 401))
        assert type(mapped) is ProviderError


class TestEmbed:
    def test_returns_vector(self):
        create = ScriptedCall(embedding_response([0.1, 0.2, 0.3]))
        client = make_client(embed=create)

        assert client.embed("hello") == [0.1, 0.2, 0.3]
        assert create.kwargs[0] == {"model": "embed-deploy", "input": "hello"}

    def test_retries_transient_errors(self):
        create = ScriptedCall(
            status_error(openai.RateLimitError, 429),
            openai.APITimeoutError(request=REQUEST),
            embedding_response([1.0]),
        )
        client = make_client(embed=create, max_retries=3)

        assert client.embed("hello") == [1.0]
        assert len(create.kwargs) == 3

    def test_gives_up_after_max_retries(self):
        create = ScriptedCall(*[status_error(openai.RateLimitError, 429) for _ in range(2)])
        client = make_client(embed=create, max_retries=2)

        with pytest.raises(RateLimited):
            client.embed("hello")
        assert len(create.kwargs) == 2

    def test_non_transient_not_retried(self):
        create = ScriptedCall(status_error(openai.AuthenticationError, 401), embedding_response([1.0]))
        client = make_client(embed=create)

        with pytest.raises(ProviderError):
            client.embed("hello")
        assert len(create.kwargs) == 1


class TestGenerate:
    def test_renders_template(self):
        create = ScriptedCall(chat_response('{"topic": "A", "content": "a"}'))
        client = make_client(chat=create)

        result = client.generate(EXTRACT_NOTES, "my course notes")

        assert result == '{"topic": "A", "content": "a"}'
        kwargs = create.kwargs[0]
        assert kwargs["model"] == "chat-deploy"
        assert "my course notes" in kwargs["messages"][0]["content"]

    def test_extra_variables(self):
        create = ScriptedCall(chat_response("Because."))
        client = make_client(chat=create)

        client.generate(SUMMARY, "Entry text", question="Why?")

        prompt = create.kwargs[0]["messages"][0]["content"]
        assert "Entry text" in prompt
        assert "Why?" in prompt

    def test_unknown_template(self):
        client = make_client(chat=ScriptedCall())
        with pytest.raises(ConfigurationError):
            client.generate("no_such_template", "x")

    def test_content_filter_finish_reason(self):
        client = make_client(chat=ScriptedCall(chat_response(None, finish_reason="content_filter")))
        with pytest.raises(ContentFiltered):
            client.generate(SUMMARY, "x", question="q")

    def test_empty_completion(self):
        client = make_client(chat=ScriptedCall(chat_response("")))
        with pytest.raises(ProviderError):
            client.generate(SUMMARY, "x", question="q")

    def test_template_override(self, tmp_path):
        (tmp_path / "summary.txt").write_text("CUSTOM {input} / {question}")
        create = ScriptedCall(chat_response("ok"))
        fake = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        client = LLMClient(SETTINGS, {"llm": {"prompts_dir": str(tmp_path)}}, client=fake)

        client.generate(SUMMARY, "ctx", question="q")

        assert create.kwargs[0]["messages"][0]["content"] == "CUSTOM ctx / q"


class TestCreateClient:
    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            LLMClient(SETTINGS, {"llm": {"provider": "carrier-pigeon"}})

    def test_azure_default(self):
        client = LLMClient(SETTINGS, {})
        assert isinstance(client.client, openai.AzureOpenAI)

    def test_openai_compatible(self):
        client = LLMClient(SETTINGS, {"llm": {"provider": "openai"}})
        assert isinstance(client.client, openai.OpenAI)
        assert not isinstance(client.client, openai.AzureOpenAI)
