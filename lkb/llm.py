"""
LLM client for embeddings and text generation.

Provides:
    - Provider interfaces (embedding, text generation)
    - OpenAI / Azure OpenAI implementation
    - SDK error mapping onto the pipeline's error taxonomy
    - Retry logic with tenacity for transient failures
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, TypeVar

import openai
from openai import AzureOpenAI, OpenAI
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lkb.config import Settings
from lkb.errors import (
    ConfigurationError,
    ContentFiltered,
    ProviderError,
    ProviderUnavailable,
    RateLimited,
    Timeout,
    TransientError,
)
from lkb.prompts import load_templates, render

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EmbeddingProvider(ABC):
    """Turns text into a fixed-dimension vector."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        pass


class TextGenerator(ABC):
    """Runs an instruction template against input text."""

    @abstractmethod
    def generate(self, template_id: str, input: str, **variables: str) -> str:
        pass


def map_openai_error(e: Exception) -> ProviderError:
    """Translate an ``openai`` SDK exception into a pipeline error."""
    # APITimeoutError subclasses APIConnectionError, so check it first
    if isinstance(e, openai.APITimeoutError):
        return Timeout("Provider request timed out", detail=str(e))
    if isinstance(e, openai.APIConnectionError):
        return ProviderUnavailable("Provider unreachable", detail=str(e))
    if isinstance(e, openai.RateLimitError):
        return RateLimited("Provider rate limit exceeded", detail=str(e))
    if isinstance(e, openai.InternalServerError):
        return ProviderUnavailable(f"Provider error {e.status_code}", detail=str(e))
    if isinstance(e, openai.BadRequestError) and getattr(e, "code", None) == "content_filter":
        return ContentFiltered("Input rejected by content filter", detail=str(e))
    if isinstance(e, openai.APIStatusError):
        return ProviderError(f"Provider error {e.status_code}", detail=str(e))
    return ProviderError(f"Provider call failed: {e}")


class LLMClient(EmbeddingProvider, TextGenerator):
    """
    OpenAI-compatible LLM client.

    Supports Azure OpenAI deployments (default) and any OpenAI-compatible API.
    """

    def __init__(
        self,
        settings: Settings,
        config: dict[str, Any] | None = None,
        client: OpenAI | None = None,
    ):
        llm_config = (config or {}).get("llm", {})

        self.embedding_model = settings.embedding_deployment
        self.chat_model = settings.chat_deployment
        self.temperature = llm_config.get("temperature", 0)
        self.max_tokens = llm_config.get("max_tokens", 2000)
        self.max_retries = llm_config.get("max_retries", 3)
        self.retry_backoff = llm_config.get("retry_backoff", 1.0)
        self.templates = load_templates(llm_config.get("prompts_dir"))

        self.client = client or self._create_client(settings, llm_config)

        self._retry = retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_backoff, max=10),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    @staticmethod
    def _create_client(settings: Settings, llm_config: dict[str, Any]) -> OpenAI:
        provider = llm_config.get("provider", "azure")
        timeout = llm_config.get("timeout", 60.0)

        # Retries are handled by tenacity
        if provider == "azure":
            return AzureOpenAI(
                azure_endpoint=settings.endpoint,
                api_key=settings.api_key,
                api_version=llm_config.get("api_version", "2024-06-01"),
                timeout=timeout,
                max_retries=0,
            )
        if provider == "openai":
            return OpenAI(
                api_key=settings.api_key,
                base_url=settings.endpoint,
                timeout=timeout,
                max_retries=0,
            )
        raise ConfigurationError(f"Unknown llm provider: {provider}")

    def _call(self, fn: Callable[[], T]) -> T:
        def attempt() -> T:
            try:
                return fn()
            except openai.OpenAIError as e:
                raise map_openai_error(e) from e

        return self._retry(attempt)()

    def embed(self, text: str) -> list[float]:
        """
        Embed text with the embedding deployment.

        Raises:
            ProviderUnavailable, RateLimited, Timeout: after retries are exhausted
        """
        response = self._call(
            lambda: self.client.embeddings.create(model=self.embedding_model, input=text)
        )
        return list(response.data[0].embedding)

    def generate(self, template_id: str, input: str, **variables: str) -> str:
        """
        Run an instruction template through the chat deployment.

        Args:
            template_id: Key into the loaded templates
            input: Text substituted for ``{input}``
            **variables: Extra template placeholders

        Returns:
            Completion text
        """
        if template_id not in self.templates:
            raise ConfigurationError(f"Unknown instruction template: {template_id}")

        prompt = render(self.templates[template_id], input, **variables)
        messages = [{"role": "user", "content": prompt}]

        response = self._call(
            lambda: self.client.chat.completions.create(
                model=self.chat_model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        )

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentFiltered(f"Completion filtered for template {template_id}")

        content = choice.message.content
        if not content:
            raise ProviderError(f"Empty completion for template {template_id}")
        return content
