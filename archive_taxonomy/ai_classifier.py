"""
ai_classifier.py — Optional Gemini-backed filename classifier.

The model only ever supplies hints. analyze() never raises: rate limits are
retried with linear backoff, everything else degrades to None so the caller
falls back to deterministic extraction.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from archive_taxonomy.config import Settings
from archive_taxonomy.errors import ClassificationUpstreamFailure, RateLimited
from archive_taxonomy.extraction import KNOWN_BRANDS, BRAND_CANONICAL
from archive_taxonomy.models import ClassificationHint

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

_CODE_FENCE = re.compile(r'```(?:json)?', re.IGNORECASE)

PROMPT_TEMPLATE = """
Analyze the following file path and name to extract structured metadata for a Printer/Copier machine database.

File Name: "{file_name}"
Path Context: "{path}"

STRICT RULES:
1. **BRAND**: Must be one of: {brands}.
   - If the input contains "TEST MÁY RICOH", the Brand is "Ricoh". Ignore "TEST", "MÁY", "OFFICE".
   - If NO valid brand is found, return null. DO NOT invent new brands.

2. **MODELS (CRITICAL)**: Return an ARRAY of specific model names.
   - **Expand Ranges/Lists**: "MPC 3054-4054-5054" -> ["MPC 3054", "MPC 4054", "MPC 5054"]
   - **Mixed Series**: "MPC 6503-8003- Pro C5200S-C5210S" -> ["MPC 6503", "MPC 8003", "Pro C5200S", "Pro C5210S"]
   - **Delimiters**: Handle "-", "/", ",", "&" as separators.
   - Always attach the Series Prefix (e.g., "MPC") to the number if missing.

3. **Context**:
   - Category Hints: "Tài liệu" (Docs), "Driver", "Firmware".
   - Topic Hints: "Service Manual", "User Guide", "Brochure".

Return ONLY a valid JSON object (no markdown, no comments):
{{
    "brand": "string (Canonical Name) or null",
    "models": ["string", "string"],
    "category": "string or null",
    "topic": "string or null",
    "tags": ["string"]
}}
"""


def _brand_list() -> str:
    names = [BRAND_CANONICAL.get(b, b.capitalize()) for b in KNOWN_BRANDS]
    return ", ".join(dict.fromkeys(names))


def build_prompt(file_name: str, path_segments: list[str]) -> str:
    return PROMPT_TEMPLATE.format(
        file_name=file_name,
        path="/".join(path_segments),
        brands=_brand_list(),
    )


def parse_hint(text: str) -> ClassificationHint:
    """
    Strip markdown fences, JSON-decode and validate the model's reply.

    Raises:
        ClassificationUpstreamFailure: reply is not a JSON object.
    """
    clean = _CODE_FENCE.sub('', text or '').strip()
    try:
        payload = json.loads(clean)
    except json.JSONDecodeError as e:
        raise ClassificationUpstreamFailure(f"Model reply is not JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ClassificationUpstreamFailure(
            f"Model reply is {type(payload).__name__}, expected object")
    try:
        return ClassificationHint.model_validate(payload)
    except ValidationError as e:
        raise ClassificationUpstreamFailure(f"Model reply failed validation: {e}") from e


def backoff_seconds(retry: int, step: float) -> float:
    """Linear backoff: retry 1 -> step, retry 2 -> 2*step, ..."""
    return retry * step


class AIClassifier:
    """Async client for the Gemini generateContent endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash-lite-preview-02-05",
        api_url: str = "https://generativelanguage.googleapis.com/v1beta",
        request_delay: float = 2.0,
        max_retries: int = 3,
        backoff_step: float = 5.0,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.request_delay = request_delay
        self.max_retries = max_retries
        self.backoff_step = backoff_step
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0))

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "AIClassifier":
        return cls(
            api_key=settings.gemini_api_key or "",
            model=settings.gemini_model,
            api_url=settings.gemini_api_url,
            request_delay=settings.ai_request_delay_seconds,
            max_retries=settings.ai_max_retries,
            backoff_step=settings.ai_backoff_step_seconds,
            timeout=settings.ai_timeout_seconds,
            **kwargs,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "AIClassifier":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    async def analyze(
        self, file_name: str, path_segments: list[str]
    ) -> Optional[ClassificationHint]:
        """
        Ask the model for brand/models/category/topic/tags.

        Returns None after exhausting rate-limit retries or on any other
        failure. Never raises.
        """
        prompt = build_prompt(file_name, path_segments)
        retry = 0
        while True:
            try:
                return await self._attempt(prompt)
            except RateLimited:
                retry += 1
                if retry > self.max_retries:
                    logger.warning("Rate limit persisted after %d retries for %s; "
                                   "using deterministic extraction", self.max_retries, file_name)
                    return None
                wait = backoff_seconds(retry, self.backoff_step)
                logger.warning("Rate limit hit. Waiting %.0fs (retry %d/%d)...",
                               wait, retry, self.max_retries)
                await self._sleep(wait)
            except Exception as e:
                logger.error("AI classification failed for %s: %s", file_name, e)
                return None

    # ----------------------------------------------------------
    # Transport
    # ----------------------------------------------------------

    async def _attempt(self, prompt: str) -> ClassificationHint:
        # Courtesy delay before every call.
        if self.request_delay > 0:
            await self._sleep(self.request_delay)
        text = await self._generate(prompt)
        return parse_hint(text)

    async def _generate(self, prompt: str) -> str:
        url = f"{self.api_url}/models/{self.model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.1},
        }
        try:
            response = await self._client.post(
                url, params={"key": self.api_key}, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429 or "429" in e.response.text:
                raise RateLimited(f"Gemini rate limit: {e.response.status_code}") from e
            raise ClassificationUpstreamFailure(
                f"Gemini HTTP {e.response.status_code}: {e.response.text[:200]}") from e
        except httpx.RequestError as e:
            if "429" in str(e):
                raise RateLimited(str(e)) from e
            raise ClassificationUpstreamFailure(f"Gemini request failed: {e}") from e

        return self._extract_text(response.json())

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str:
        try:
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(p.get("text", "") for p in parts)
        except (KeyError, IndexError, TypeError) as e:
            raise ClassificationUpstreamFailure(
                "Gemini response has no candidate text. "
                "Response keys: %s" % list(data.keys() if isinstance(data, dict) else [])
            ) from e
