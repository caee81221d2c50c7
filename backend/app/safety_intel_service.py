from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from pydantic import ValidationError

from .config import DEFAULT_SAFETY_INTEL_MODEL
from .schemas import SafetyIntel, SafetyIntelResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 25.0

_CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

FALLBACK_INTEL: dict[str, Any] = {
    "safety_summary": "No API key / fetch failed. Showing fallback sample.",
    "grades": {"overall": "B-", "violent": "C", "property": "D", "other": "B+"},
    "breakdown": {
        "violent": [{"type": "Assault", "grade": "C"}, {"type": "Robbery", "grade": "B"}],
        "property": [{"type": "Theft", "grade": "D"}, {"type": "Burglary", "grade": "F"}],
        "other": [{"type": "Vandalism", "grade": "B"}],
    },
    "sectors": {"n": "D", "s": "C", "e": "B", "w": "A", "ne": "D", "nw": "D", "se": "B", "sw": "B"},
    "schools": [],
}


class MissingAPIKeyError(RuntimeError):
    """Raised when GEMINI_API_KEY is not configured."""


class SafetyIntelProviderError(RuntimeError):
    """Raised when Gemini request/response handling fails."""


@dataclass(frozen=True)
class ParsedIntel:
    intel: SafetyIntel


@dataclass(frozen=True)
class SchemaMismatch:
    reason: str


IntelParseResult = Union[ParsedIntel, SchemaMismatch]


def fallback_intel() -> SafetyIntel:
    return SafetyIntel.model_validate(FALLBACK_INTEL)


def _build_prompt(location_label: str) -> str:
    return (
        "Perform a total verified data harvest from CrimeGrade.org for the address: "
        f"{location_label}.\n"
        "Return strictly JSON with these keys and nothing else:\n"
        '- "safety_summary": two or three sentences on the local crime picture.\n'
        '- "grades": object with letter grades for "overall", "violent", "property", "other".\n'
        '- "breakdown": object with "violent", "property", "other" arrays of {"type", "grade"}.\n'
        '- "sectors": letter grades for "n", "s", "e", "w", "ne", "nw", "se", "sw" around the address.\n'
        '- "schools": array of nearby schools as {"name", "grade", "rating", "level", "distance_miles"}.\n'
        "Letter grades use A+ through F."
    )


def _extract_text_from_response(response: Any) -> str | None:
    text = getattr(response, "text", None)
    if isinstance(text, str) and text.strip():
        return text

    candidates = getattr(response, "candidates", None)
    if not isinstance(candidates, list):
        return None

    for candidate in candidates:
        content = getattr(candidate, "content", None)
        parts = getattr(content, "parts", None)
        if not isinstance(parts, list):
            continue
        for part in parts:
            part_text = getattr(part, "text", None)
            if isinstance(part_text, str) and part_text.strip():
                return part_text
    return None


def _call_gemini(prompt: str, api_key: str, model_name: str) -> str:
    try:
        from google import genai
        from google.genai import types
    except ImportError as exc:  # pragma: no cover - import environment specific
        raise SafetyIntelProviderError(
            "google-genai dependency is not available. Install `google-genai`."
        ) from exc

    try:
        client = genai.Client(api_key=api_key)
        response = client.models.generate_content(
            model=model_name,
            contents=prompt,
            config=types.GenerateContentConfig(
                temperature=0.2,
                tools=[types.Tool(google_search=types.GoogleSearch())],
            ),
        )
    except Exception as exc:
        raise SafetyIntelProviderError(f"Gemini request failed: {exc}") from exc

    response_text = _extract_text_from_response(response)
    if not response_text:
        raise SafetyIntelProviderError("Gemini returned an empty response body.")
    return response_text


def parse_safety_intel(text: str) -> IntelParseResult:
    cleaned = _CODE_FENCE_RE.sub("", text or "").strip()
    if not cleaned:
        return SchemaMismatch("Response body is empty.")

    # Search-grounded answers sometimes wrap the object in prose.
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        return SchemaMismatch("Response does not contain a JSON object.")

    try:
        payload = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        return SchemaMismatch(f"Response is not valid JSON: {exc.msg}")

    try:
        return ParsedIntel(SafetyIntel.model_validate(payload))
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        return SchemaMismatch(f"{location or 'payload'}: {first.get('msg', 'invalid value')}")


def _fallback_response(location_label: str, reason: str, model_name: str | None) -> SafetyIntelResponse:
    logger.info("Using fallback safety intel for %r: %s", location_label, reason)
    return SafetyIntelResponse(
        location_label=location_label,
        source="fallback",
        model=model_name,
        generated_at=datetime.now(timezone.utc),
        fallback_reason=reason,
        intel=fallback_intel(),
    )


async def request_safety_intel(
    location_label: str,
    *,
    api_key: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    model_name: str = DEFAULT_SAFETY_INTEL_MODEL,
) -> IntelParseResult:
    """Call Gemini and validate its answer. Raises on provider trouble."""
    if not api_key:
        raise MissingAPIKeyError("GEMINI_API_KEY is not configured on the backend.")

    prompt = _build_prompt(location_label)
    try:
        response_text = await asyncio.wait_for(
            asyncio.to_thread(_call_gemini, prompt, api_key, model_name),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        raise SafetyIntelProviderError(
            f"Gemini safety intel request timed out after {timeout_seconds:.0f}s."
        ) from exc
    return parse_safety_intel(response_text)


async def generate_safety_intel(
    location_label: str,
    *,
    api_key: str,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    model_name: str = DEFAULT_SAFETY_INTEL_MODEL,
) -> SafetyIntelResponse:
    """Safety narrative for a location; degrades to the static sample on any failure."""
    try:
        result = await request_safety_intel(
            location_label,
            api_key=api_key,
            timeout_seconds=timeout_seconds,
            model_name=model_name,
        )
    except (MissingAPIKeyError, SafetyIntelProviderError) as exc:
        return _fallback_response(location_label, str(exc), model_name if api_key else None)
    except Exception as exc:
        logger.exception("Unexpected safety intel failure for %r", location_label)
        return _fallback_response(location_label, f"Safety intel failed: {exc}", model_name)

    if isinstance(result, SchemaMismatch):
        logger.warning("Gemini safety intel failed validation: %s", result.reason)
        return _fallback_response(location_label, f"Schema mismatch: {result.reason}", model_name)

    return SafetyIntelResponse(
        location_label=location_label,
        source="gemini",
        model=model_name,
        generated_at=datetime.now(timezone.utc),
        intel=result.intel,
    )
