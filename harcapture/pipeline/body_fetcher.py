import asyncio
import base64
import logging
from typing import Any, Dict, Optional

from harcapture.core.content_classifier import normalize
from harcapture.models.models import EnrichmentResult, InstrumentationEvent, ResponseRecord

logger = logging.getLogger(__name__)

GET_RESPONSE_BODY = "Network.getResponseBody"


def decode_body(payload: Dict[str, Any]) -> str:
    """
    Turns a Network.getResponseBody result into text.

    Base64 payloads are decoded strictly and read as UTF-8; anything else is
    already text.
    """
    body = payload.get("body", "")
    if payload.get("base64Encoded"):
        return base64.b64decode(body, validate=True).decode("utf-8", errors="replace")
    return body


class BodyFetcher:
    """
    Retrieves and normalizes the body of a single response over a CDP session.

    Failures are never raised; they come back as a failed EnrichmentResult so one
    broken response cannot affect the others.
    """

    def __init__(self, client, timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout or None

    async def _get_body(self, request_id: str) -> Dict[str, Any]:
        request = self.client.send(GET_RESPONSE_BODY, {"requestId": request_id})
        if self.timeout:
            return await asyncio.wait_for(request, timeout=self.timeout)
        return await request

    async def fetch(self, event: InstrumentationEvent) -> EnrichmentResult:
        response = ResponseRecord.from_params(event.params)
        try:
            payload = await self._get_body(response.request_id)
            normalized = normalize(response.mime_type, decode_body(payload))
        except Exception as e:
            logger.debug(f"Body fetch for request {response.request_id} failed: {e!r}")
            return EnrichmentResult.failed(event, response, e)
        return EnrichmentResult.enriched(event, response, normalized)
