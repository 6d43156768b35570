"""Gemini extraction client.

Turns one free-text financial message into a ParsedExpense by calling the
Gemini generateContent API. The model is treated as a black box: the only
contract is the JSON record described in the system prompt.

Failures are fatal for the message (ExtractionError); there is no retry loop.

Privacy Constraints:
- Never log raw message text or prompts at INFO level
- The API key travels in a header, never in the URL
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime
from typing import TYPE_CHECKING

import httpx

from ..pipeline.dates import current_local_times
from ..schemas.extraction import ParsedExpense
from .prompts import PROMPT_VERSION, ExtractionPrompt

if TYPE_CHECKING:
    from ..config import ExtractorConfig
    from ..state_store import CacheStore

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Extraction failed (transport error, API error or unusable output)."""

    pass


def extraction_cache_key(text: str, dynamic_prompts: list[str], current_date: str) -> str:
    """SHA256 cache key over normalized text, prompt sections and local date.

    The date is part of the key because relative references ("hoy") resolve
    against it.
    """
    components = [
        PROMPT_VERSION,
        current_date,
        text.strip().lower(),
        *dynamic_prompts,
    ]
    return hashlib.sha256("|".join(components).encode()).hexdigest()


def parse_json_response(content: str) -> dict:
    """Parse the model's JSON, tolerating markdown fences and stray text.

    Raises:
        ExtractionError: If no JSON object can be recovered.
    """
    if not content:
        raise ExtractionError("Empty response from model")

    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    content = content.strip()

    try:
        data = json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r"\{[\s\S]*\}", content)
        if not match:
            raise ExtractionError("Model output is not JSON") from None
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as e:
            raise ExtractionError(f"Model output is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ExtractionError("Model output is not a JSON object")
    return data


class GeminiExtractor:
    """Extracts structured expense data from message text.

    Usage:
        with GeminiExtractor(config.extractor, cache) as extractor:
            parsed = extractor.parse(text, dynamic_prompts)
    """

    def __init__(
        self,
        config: ExtractorConfig,
        cache: CacheStore | None = None,
        timezone: str = "America/Bogota",
    ) -> None:
        """Initialize the extractor.

        Args:
            config: Extractor configuration.
            cache: Optional local cache for parsed results.
            timezone: Timezone used for CURRENT_DATE/CURRENT_TIME.
        """
        self.config = config
        self.cache = cache
        self.timezone = timezone
        self._prompt = ExtractionPrompt()

        self._client = httpx.Client(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(config.timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": config.api_key,
            },
        )

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/models/{self.config.model}:generateContent"

    def _build_request(self, text: str, dynamic_prompts: list[str], current_date: str, current_time: str) -> dict:
        system_prompt = self._prompt.format_system_prompt(current_date, current_time, self.timezone)
        system_parts = [{"text": system_prompt}] + [{"text": p} for p in dynamic_prompts]
        return {
            "systemInstruction": {"parts": system_parts},
            "contents": [
                {"role": "user", "parts": [{"text": self._prompt.format_user_message(text)}]}
            ],
            "generationConfig": {
                "temperature": 0.1,
                "topP": 0.95,
                "topK": 40,
                "maxOutputTokens": 2048,
                "responseMimeType": "application/json",
            },
        }

    def _call_model(self, payload: dict) -> str:
        """POST to generateContent and return the first candidate's text."""
        try:
            response = self._client.post(self.endpoint, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            logger.error("Gemini request timed out after %ds", self.config.timeout_seconds)
            raise ExtractionError("Extraction request timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error("Gemini API error %s for model '%s'", e.response.status_code, self.config.model)
            raise ExtractionError(f"Gemini API error {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("Gemini request failed: %s", e)
            raise ExtractionError(f"Extraction request failed: {e}") from e
        except ValueError as e:
            raise ExtractionError("Gemini returned a non-JSON body") from e

        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError("Gemini response has no candidate text") from e

    def parse(
        self,
        text: str,
        dynamic_prompts: list[str] | None = None,
        now: datetime | None = None,
    ) -> ParsedExpense:
        """Extract one message.

        Args:
            text: Raw message text.
            dynamic_prompts: Rule-derived prompt sections appended to the system prompt.
            now: Override for the current time (tests).

        Returns:
            The parsed record. Non-transactions come back with is_transaction=False.

        Raises:
            ExtractionError: On transport failure or unusable output.
        """
        dynamic_prompts = [p for p in (dynamic_prompts or []) if p]
        current_date, current_time = current_local_times(self.timezone, now)

        cache_key = extraction_cache_key(text, dynamic_prompts, current_date)
        if self.cache is not None:
            cached = self.cache.get_extraction(cache_key)
            if cached is not None:
                logger.debug("Extraction cache hit %s", cache_key[:12])
                return ParsedExpense.from_dict(cached)

        logger.debug("Extracting message: %s", text[:50])
        payload = self._build_request(text, dynamic_prompts, current_date, current_time)
        data = parse_json_response(self._call_model(payload))
        parsed = ParsedExpense.from_dict(data)

        if parsed.is_transaction:
            if parsed.amount is None or parsed.amount <= 0:
                raise ExtractionError("Extracted amount is missing or not positive")
            if not parsed.description:
                raise ExtractionError("Extracted description is empty")

        if self.cache is not None:
            self.cache.put_extraction(
                cache_key, parsed.to_dict(), self.config.cache_ttl_days, model=self.config.model
            )

        logger.info(
            "Extracted message (transaction=%s, confidence=%d)",
            parsed.is_transaction,
            parsed.confidence,
        )
        return parsed

    def close(self) -> None:
        """Close HTTP client."""
        self._client.close()

    def __enter__(self) -> GeminiExtractor:
        return self

    def __exit__(self, *args) -> None:
        self.close()
