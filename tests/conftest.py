"""Shared test fixtures for harcapture tests."""

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeCDPSession:
    """Stands in for a Playwright CDPSession: event subscription plus Network.getResponseBody."""

    def __init__(self):
        self.handlers: Dict[str, list] = {}
        self.bodies: Dict[str, Any] = {}
        self.delays: Dict[str, float] = {}
        self.sent = []

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def remove_listener(self, event, handler):
        self.handlers[event].remove(handler)

    def emit(self, event, params):
        for handler in list(self.handlers.get(event, [])):
            handler(params)

    @property
    def listener_count(self) -> int:
        return sum(len(handlers) for handlers in self.handlers.values())

    async def send(self, method, params=None):
        self.sent.append((method, params))
        if method != "Network.getResponseBody":
            return {}
        request_id = params["requestId"]
        if request_id in self.delays:
            await asyncio.sleep(self.delays[request_id])
        body = self.bodies.get(request_id)
        if isinstance(body, Exception):
            raise body
        if body is None:
            raise RuntimeError(f"No resource with given identifier found: {request_id}")
        return body


@pytest.fixture
def cdp_client():
    return FakeCDPSession()


def build_response_params(request_id: str, url: str, status: int = 200,
                          mime_type: str = "application/json",
                          headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    return {
        "requestId": request_id,
        "loaderId": "loader-1",
        "timestamp": 100.5,
        "type": "XHR",
        "frameId": "frame-1",
        "response": {
            "url": url,
            "status": status,
            "statusText": "OK",
            "headers": headers or {"content-type": mime_type},
            "mimeType": mime_type,
            "protocol": "http/1.1",
            "connectionId": 7,
            "remoteIPAddress": "93.184.216.34",
            "encodedDataLength": 120,
        },
    }


def build_request_params(request_id: str, url: str, resource_type: str = "XHR",
                         timestamp: float = 100.0) -> Dict[str, Any]:
    return {
        "requestId": request_id,
        "loaderId": "loader-1",
        "documentURL": url,
        "request": {
            "url": url,
            "method": "GET",
            "headers": {"Accept": "*/*"},
            "initialPriority": "High",
        },
        "timestamp": timestamp,
        "wallTime": 1700000000.0 + (timestamp - 100.0),
        "initiator": {"type": "other"},
        "type": resource_type,
        "frameId": "frame-1",
    }


@pytest.fixture
def response_params():
    """Factory for Network.responseReceived params."""
    return build_response_params


@pytest.fixture
def request_params():
    """Factory for Network.requestWillBeSent params."""
    return build_request_params
