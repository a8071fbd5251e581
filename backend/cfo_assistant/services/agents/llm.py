"""Gemini client used by the intent classifier.

Only the user's message and a fixed instruction block are sent; no
financial records leave the process.
"""

import json
import logging
import os
from datetime import date, datetime
from typing import Any, Dict, Optional, Tuple

import httpx

from ...config import GEMINI_MODEL, LLM_TIMEOUT

logger = logging.getLogger(__name__)


# Rate limiting state (in-memory - resets on server restart)
_rate_limit_state = {
    "requests_today": 0,
    "last_reset": date.today(),
    "requests_per_minute": [],
}

DAILY_LIMIT = 1500
PER_MINUTE_LIMIT = 15

ERROR_PREFIXES = ("API error:", "Error calling LLM:", "Rate limit exceeded:")


def _check_rate_limit() -> Tuple[bool, Dict[str, Any]]:
    """Check if we're within rate limits. Returns (allowed, status_info)."""
    today = date.today()

    # Reset daily counter if new day
    if _rate_limit_state["last_reset"] != today:
        _rate_limit_state["requests_today"] = 0
        _rate_limit_state["last_reset"] = today

    # Clean up old minute timestamps
    now = datetime.now()
    _rate_limit_state["requests_per_minute"] = [
        ts for ts in _rate_limit_state["requests_per_minute"]
        if (now - ts).total_seconds() < 60
    ]

    daily_remaining = DAILY_LIMIT - _rate_limit_state["requests_today"]
    minute_remaining = PER_MINUTE_LIMIT - len(_rate_limit_state["requests_per_minute"])

    status = {
        "daily_remaining": daily_remaining,
        "minute_remaining": minute_remaining,
        "daily_limit": DAILY_LIMIT,
        "minute_limit": PER_MINUTE_LIMIT,
    }

    if daily_remaining <= 0:
        return False, {**status, "error": "Daily limit reached. Resets at midnight."}
    if minute_remaining <= 0:
        return False, {**status, "error": "Rate limit reached. Wait a minute."}

    return True, status


def _record_llm_request():
    """Record an LLM request for rate limiting."""
    _rate_limit_state["requests_today"] += 1
    _rate_limit_state["requests_per_minute"].append(datetime.now())


def get_rate_limit_status() -> Dict[str, Any]:
    """Get current rate limit status."""
    _, status = _check_rate_limit()
    return status


async def call_gemini_api(
    prompt: str,
    system_instruction: str = "",
    response_schema: Optional[Dict[str, Any]] = None,
    temperature: float = 0.7,
    timeout: float = LLM_TIMEOUT,
) -> Optional[str]:
    """Call Gemini API for LLM tasks.

    Args:
        prompt: The prompt to send to the model
        system_instruction: Optional system instruction for the model
        response_schema: Optional JSON schema to enforce structured output
        temperature: Model temperature (0 = deterministic, 1 = creative)
        timeout: Request timeout in seconds

    Returns:
        Response text, an error string starting with one of ERROR_PREFIXES,
        or None when no key is configured or the reply is empty
    """
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        logger.warning("[LLM] GEMINI_API_KEY not found in environment")
        return None

    allowed, status = _check_rate_limit()
    if not allowed:
        logger.warning(f"[LLM] Rate limit exceeded: {status}")
        return f"Rate limit exceeded: {status.get('error', 'Try again later.')}"

    logger.debug(f"[LLM] Making API call (rate limit status: {status})")

    url = f"https://generativelanguage.googleapis.com/v1beta/models/{GEMINI_MODEL}:generateContent?key={api_key}"

    generation_config = {
        "temperature": temperature,
        "maxOutputTokens": 1024,
    }

    # Enable JSON mode if schema is provided
    if response_schema:
        generation_config["responseMimeType"] = "application/json"
        generation_config["responseSchema"] = response_schema

    payload = {
        "contents": [
            {
                "parts": [{"text": prompt}]
            }
        ],
        "generationConfig": generation_config
    }

    if system_instruction:
        payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()

            _record_llm_request()

            candidates = data.get("candidates", [])
            if candidates:
                content = candidates[0].get("content", {})
                parts = content.get("parts", [])
                if parts:
                    return parts[0].get("text", "")
            return None
    except httpx.HTTPStatusError as e:
        # Include response body for debugging
        try:
            error_detail = e.response.json().get("error", {}).get("message", "")
        except ValueError:
            error_detail = e.response.text[:200] if e.response.text else ""
        logger.error(f"[LLM] HTTP error: {e.response.status_code} - {error_detail}")
        return f"API error: {e.response.status_code} - {error_detail}"
    except Exception as e:
        logger.exception(f"[LLM] Exception during API call: {e}")
        return f"Error calling LLM: {str(e)}"


def is_valid_llm_response(response: Optional[str]) -> bool:
    """Check if LLM response is valid and usable."""
    if not response:
        return False
    if response.startswith(ERROR_PREFIXES):
        return False
    # Structured replies must at least be parseable JSON
    if response.lstrip().startswith("{"):
        try:
            json.loads(strip_code_fence(response))
            return True
        except json.JSONDecodeError:
            return False
    return True


def strip_code_fence(response: str) -> str:
    """Remove a markdown code block wrapper if the model added one."""
    cleaned = response.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        cleaned = "\n".join(
            lines[1:-1] if lines[-1].startswith("```") else lines[1:]
        )
    return cleaned
