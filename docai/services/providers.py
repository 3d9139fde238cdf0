"""
AI analysis providers.

Each provider turns a prompt into raw model text. Retry, parsing and
fallback live in the orchestrator; a provider only classifies its own
failures as retryable (rate limiting, transient server errors, timeouts)
or not.
"""
from abc import ABC, abstractmethod

import google.generativeai as genai
import openai
from google.api_core import exceptions as google_exceptions
from openai import AsyncOpenAI

from docai.errors import ProviderError

_GEMINI_RETRYABLE = (
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
    google_exceptions.ServiceUnavailable,
    google_exceptions.InternalServerError,
    google_exceptions.DeadlineExceeded,
)

_OPENAI_RETRYABLE = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


class Provider(ABC):
    """One AI backend in the fallback chain."""

    name: str = "provider"

    @abstractmethod
    async def complete(self, prompt: str, timeout: float) -> str:
        """
        Send `prompt` and return the model's raw text answer.

        Raises:
            ProviderError: with `retryable` set for transient failures
        """
        ...


class GeminiProvider(Provider):
    """Google Gemini through google-generativeai."""

    name = "gemini"

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash"):
        genai.configure(api_key=api_key)
        self.model_name = model

    async def complete(self, prompt: str, timeout: float) -> str:
        model = genai.GenerativeModel(self.model_name)
        try:
            response = await model.generate_content_async(
                prompt,
                generation_config={"temperature": 0.2},
                request_options={"timeout": timeout},
            )
            return response.text
        except _GEMINI_RETRYABLE as exc:
            raise ProviderError(f"Gemini unavailable: {exc}", retryable=True) from exc
        except google_exceptions.GoogleAPIError as exc:
            raise ProviderError(f"Gemini request failed: {exc}") from exc
        except ValueError as exc:
            # response.text raises when the candidate was blocked or empty
            raise ProviderError(f"Gemini returned no text: {exc}") from exc


class OpenAIProvider(Provider):
    """OpenAI chat completions."""

    name = "openai"

    def __init__(self, api_key: str, model: str = "gpt-4o"):
        # Retries are owned by the orchestrator
        self.client = AsyncOpenAI(api_key=api_key, max_retries=0)
        self.model = model

    async def complete(self, prompt: str, timeout: float) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": "You analyze documents and answer only with JSON."},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.2,
                timeout=timeout,
            )
        except _OPENAI_RETRYABLE as exc:
            raise ProviderError(f"OpenAI unavailable: {exc}", retryable=True) from exc
        except openai.OpenAIError as exc:
            raise ProviderError(f"OpenAI request failed: {exc}") from exc

        content = response.choices[0].message.content
        if not content:
            raise ProviderError("OpenAI returned an empty message")
        return content.strip()


def build_providers(settings) -> list[Provider]:
    """Ordered fallback chain of the providers that have credentials."""
    providers: list[Provider] = []
    if settings.GEMINI_API_KEY:
        providers.append(GeminiProvider(settings.GEMINI_API_KEY, settings.GEMINI_MODEL))
    if settings.OPENAI_API_KEY:
        providers.append(OpenAIProvider(settings.OPENAI_API_KEY, settings.OPENAI_MODEL))
    return providers
