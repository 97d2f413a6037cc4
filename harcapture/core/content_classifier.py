import json
from typing import Optional

import jsbeautifier

from harcapture.core.errors import NormalizationError
from harcapture.core.scope_filter import ScopeFilter
from harcapture.models.models import NormalizedBody, ResponseRecord

# Substrings of a mime type whose bodies are never worth storing as text.
BLOCKED_MIME_FRAGMENTS = ("image", "audio", "font", "binary", "video")

NO_CONTENT_STATUS = 204
INDENT_SIZE = 4


def is_capture_eligible(response: ResponseRecord, scope: Optional[ScopeFilter] = None) -> bool:
    """
    Decides whether the body of a response should be fetched.

    Args:
        response: The response metadata from a Network.responseReceived event.
        scope: The capture scope; None means unrestricted.

    Returns:
        True when the response has a body, is not a redirect, lies within the
        scope and is not a media or binary type.
    """
    if response.status == NO_CONTENT_STATUS:
        return False
    if response.header("location") is not None:
        return False
    if scope is not None and not scope.in_scope(response.url):
        return False
    return not any(fragment in response.mime_type for fragment in BLOCKED_MIME_FRAGMENTS)


def _beautify_javascript(source: str) -> str:
    options = jsbeautifier.default_options()
    options.indent_size = INDENT_SIZE
    options.space_in_empty_paren = True
    return jsbeautifier.beautify(source, options)


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")


def normalize(mime_type: str, raw: str) -> NormalizedBody:
    """
    Reformats a decoded body according to its declared mime type.

    JSON is re-serialized with 4-space indentation and JavaScript is
    beautified; anything else is passed through unchanged.

    Raises:
        NormalizationError: If the body cannot be parsed or reformatted.
    """
    if "json" in mime_type:
        try:
            parsed = json.loads(raw, parse_constant=_reject_constant)
            text = json.dumps(parsed, indent=INDENT_SIZE, ensure_ascii=False, allow_nan=False)
        except ValueError as e:
            raise NormalizationError(f"Invalid JSON body: {e}") from e
        return NormalizedBody(text, pretty=True)

    if "javascript" in mime_type:
        try:
            return NormalizedBody(_beautify_javascript(raw), pretty=True)
        except Exception as e:
            raise NormalizationError(f"Could not beautify script: {e}") from e

    return NormalizedBody(raw, pretty=False)
