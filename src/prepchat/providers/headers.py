from __future__ import annotations
import json
import logging
from typing import Dict, NamedTuple, Optional

from prepchat.core.errors import HeaderParseError
from prepchat.core.models import ProviderFamily

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
JSON_CONTENT = "application/json"


class HeaderResult(NamedTuple):
    headers: Dict[str, str]
    warning: Optional[str] = None


def _bearer(api_key: str) -> Dict[str, str]:
    return {"Content-Type": JSON_CONTENT, "Authorization": f"Bearer {api_key}"}


def parse_custom_headers(raw: str) -> Dict[str, str]:
    try:
        parsed = json.loads(raw)
    except ValueError as e:
        raise HeaderParseError(f"Custom headers are not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise HeaderParseError("Custom headers must be a JSON object")
    return {str(k): str(v) for k, v in parsed.items()}


def build_headers(family: ProviderFamily, api_key: str, custom_headers: Optional[str] = None) -> HeaderResult:
    """
    Auth and content headers for a provider family.
    Bad custom headers never fail the call: the generic Bearer set is used
    and the problem comes back in HeaderResult.warning.
    """
    api_key = api_key or ""

    if family is ProviderFamily.CUSTOM and custom_headers and custom_headers.strip():
        try:
            headers = parse_custom_headers(custom_headers)
        except HeaderParseError as e:
            logger.warning("Error parsing custom headers, using defaults: %s", e)
            return HeaderResult(_bearer(api_key), str(e))
        if not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = JSON_CONTENT
        return HeaderResult(headers)

    if family is ProviderFamily.ANTHROPIC:
        return HeaderResult({
            "Content-Type": JSON_CONTENT,
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        })
    if family is ProviderFamily.GEMINI:
        return HeaderResult({"Content-Type": JSON_CONTENT, "x-goog-api-key": api_key})
    if family is ProviderFamily.OLLAMA:
        return HeaderResult({"Content-Type": JSON_CONTENT})
    return HeaderResult(_bearer(api_key))
