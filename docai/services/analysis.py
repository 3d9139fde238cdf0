"""
Analysis orchestrator.

Walks an ordered provider chain. Each provider gets up to
ANALYSIS_MAX_ATTEMPTS calls with exponential backoff; retryable failures
and unparseable answers use up an attempt, anything else moves straight to
the next provider. When every provider is exhausted the caller still gets a
deterministic fallback result, so an AI outage never fails a job.
"""
import asyncio
import json
import re

from docai.errors import AnalysisParseError, ProviderError
from docai.logging_config import get_logger
from docai.sentry_config import capture_exception
from docai.services.providers import Provider

log = get_logger(component="analysis")

CATEGORIES = ("Business", "Technical", "Legal", "Educational", "Personal", "Medical", "Financial", "Other")
SENTIMENTS = ("Positive", "Negative", "Neutral", "Mixed")

FALLBACK_SUMMARY = "Document processed. AI analysis could not generate a structured response."

PROMPT_TEMPLATE = """Analyze the following document text and provide a structured response in JSON format with these exact fields:
{{
  "summary": "A concise 2-3 sentence summary",
  "keyPoints": ["point 1", "point 2", "point 3"],
  "keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"],
  "category": "{categories}",
  "sentiment": "{sentiments}",
  "wordCount": 1234
}}

Document text:
{text}

Respond ONLY with valid JSON. Do not include markdown code blocks or any other text."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def count_words(text: str) -> int:
    return len(text.split())


def build_prompt(text: str, max_chars: int) -> str:
    return PROMPT_TEMPLATE.format(
        categories="|".join(CATEGORIES),
        sentiments="|".join(SENTIMENTS),
        text=text[:max_chars],
    )


def parse_response(raw: str) -> dict:
    """
    Parse a provider answer into a dict.

    Tolerates markdown code fences and prose around the JSON object.

    Raises:
        AnalysisParseError: if no JSON object can be recovered
    """
    cleaned = _FENCE_RE.sub("", (raw or "").strip()).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(cleaned)
        if match is None:
            raise AnalysisParseError("Provider response contained no JSON object")
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise AnalysisParseError(f"Provider response was not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise AnalysisParseError("Provider response was not a JSON object")
    return parsed


def _valid_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _string_list(value, default: list[str]) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    items = [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]
    return items or list(default)


def _choice(value, options: tuple[str, ...], default: str) -> str:
    if isinstance(value, str):
        for option in options:
            if value.strip().lower() == option.lower():
                return option
    return default


def normalize_analysis(parsed: dict, text: str) -> dict:
    """
    Shape a parsed provider answer into the analysis result.

    Counts reported by the provider are used only when they are
    non-negative integers; otherwise they are recomputed from `text`.
    """
    summary = parsed.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        summary = "No summary available"

    word_count = parsed.get("wordCount")
    char_count = parsed.get("charCount")
    return {
        "summary": summary.strip(),
        "keyPoints": _string_list(parsed.get("keyPoints"), ["Analysis pending"]),
        "keywords": _string_list(parsed.get("keywords"), ["document"]),
        "category": _choice(parsed.get("category"), CATEGORIES, "Other"),
        "sentiment": _choice(parsed.get("sentiment"), SENTIMENTS, "Neutral"),
        "wordCount": word_count if _valid_count(word_count) else count_words(text),
        "charCount": char_count if _valid_count(char_count) else len(text),
    }


def fallback_analysis(text: str) -> dict:
    """Deterministic result used when no provider produced an answer."""
    return {
        "summary": FALLBACK_SUMMARY,
        "keyPoints": ["Document content extracted", "Manual review recommended"],
        "keywords": ["document"],
        "category": "Other",
        "sentiment": "Neutral",
        "wordCount": count_words(text),
        "charCount": len(text),
    }


def placeholder_analysis(text: str, media_type: str) -> dict:
    """Result for files that were stored but cannot be read as text."""
    return {
        "summary": (
            f"File uploaded successfully. Type: {media_type}. "
            "This file type requires specialized processing for content extraction."
        ),
        "keyPoints": ["File stored successfully", "Content extraction not available for this file type"],
        "keywords": ["file", "upload"],
        "category": "Other",
        "sentiment": "Neutral",
        "wordCount": count_words(text),
        "charCount": len(text),
    }


class AnalysisOrchestrator:
    """Retry-and-fallback driver over an ordered provider chain."""

    def __init__(
        self,
        providers: list[Provider],
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        timeout: float = 60.0,
        max_input_chars: int = 30_000,
        sleep=asyncio.sleep,
    ):
        self.providers = providers
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self.max_input_chars = max_input_chars
        self._sleep = sleep

    async def analyze(self, text: str) -> tuple[dict, str | None]:
        """
        Analyze `text`. Never raises for provider trouble.

        Returns:
            (analysis, provider name) or (fallback analysis, None)
        """
        prompt = build_prompt(text, self.max_input_chars)

        for provider in self.providers:
            analysis = await self._run_provider(provider, prompt, text)
            if analysis is not None:
                return analysis, provider.name

        log.warning("analysis_fallback_used", providers=[p.name for p in self.providers])
        return fallback_analysis(text), None

    async def _run_provider(self, provider: Provider, prompt: str, text: str) -> dict | None:
        plog = log.bind(provider=provider.name)

        for attempt in range(1, self.max_attempts + 1):
            try:
                raw = await asyncio.wait_for(
                    provider.complete(prompt, self.timeout),
                    timeout=self.timeout,
                )
                analysis = normalize_analysis(parse_response(raw), text)
                plog.info("provider_succeeded", attempt=attempt)
                return analysis
            except asyncio.TimeoutError:
                plog.warning("provider_attempt_failed", attempt=attempt, reason="timeout")
            except ProviderError as exc:
                plog.warning(
                    "provider_attempt_failed",
                    attempt=attempt,
                    reason=exc.message,
                    retryable=exc.retryable,
                )
                if not exc.retryable:
                    return None
            except AnalysisParseError as exc:
                plog.warning("provider_attempt_failed", attempt=attempt, reason=exc.message)
            except Exception as exc:
                # Unmapped SDK or transport error: give up on this provider only
                plog.warning(
                    "provider_attempt_failed",
                    attempt=attempt,
                    reason=f"{type(exc).__name__}: {exc}",
                    retryable=False,
                )
                capture_exception(exc)
                return None

            if attempt < self.max_attempts:
                await self._sleep(self.backoff_seconds * 2 ** (attempt - 1))

        plog.warning("provider_exhausted", attempts=self.max_attempts)
        return None


def build_orchestrator(settings, providers: list[Provider]) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        providers,
        max_attempts=settings.ANALYSIS_MAX_ATTEMPTS,
        backoff_seconds=settings.ANALYSIS_BACKOFF_SECONDS,
        timeout=settings.ANALYSIS_TIMEOUT_SECONDS,
        max_input_chars=settings.ANALYSIS_MAX_INPUT_CHARS,
    )
