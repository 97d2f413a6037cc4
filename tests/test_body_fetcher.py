"""Unit tests for the body fetcher."""

import asyncio
import base64
import binascii

import pytest

from harcapture.core.errors import NormalizationError
from harcapture.models.models import CdpMethod, InstrumentationEvent
from harcapture.pipeline.body_fetcher import BodyFetcher, decode_body


class TestDecodeBody:
    """Tests for decode_body."""

    def test_plain_text(self):
        assert decode_body({"body": "hello", "base64Encoded": False}) == "hello"

    def test_base64(self):
        encoded = base64.b64encode("héllo".encode("utf-8")).decode("ascii")
        assert decode_body({"body": encoded, "base64Encoded": True}) == "héllo"

    def test_invalid_base64_raises(self):
        with pytest.raises(binascii.Error):
            decode_body({"body": "not base64!", "base64Encoded": True})


class TestBodyFetcher:
    """Tests for BodyFetcher."""

    @pytest.fixture
    def json_event(self, response_params):
        return InstrumentationEvent(
            CdpMethod.RESPONSE_RECEIVED,
            response_params("req-1", "https://a.com/api"),
        )

    @pytest.mark.asyncio
    async def test_fetch_success(self, cdp_client, json_event):
        cdp_client.bodies["req-1"] = {"body": '{"a":1}', "base64Encoded": False}

        result = await BodyFetcher(cdp_client).fetch(json_event)

        assert result.ok
        assert result.body == '{\n    "a": 1\n}'
        assert result.pretty
        assert cdp_client.sent == [("Network.getResponseBody", {"requestId": "req-1"})]

    @pytest.mark.asyncio
    async def test_fetch_decodes_base64_before_normalizing(self, cdp_client, json_event):
        payload = base64.b64encode(b'{"a":1}').decode("ascii")
        cdp_client.bodies["req-1"] = {"body": payload, "base64Encoded": True}

        result = await BodyFetcher(cdp_client).fetch(json_event)

        assert result.ok
        assert result.body == '{\n    "a": 1\n}'

    @pytest.mark.asyncio
    async def test_fetch_does_not_touch_event(self, cdp_client, json_event):
        cdp_client.bodies["req-1"] = {"body": '{"a":1}', "base64Encoded": False}

        await BodyFetcher(cdp_client).fetch(json_event)

        assert "body" not in json_event.params["response"]

    @pytest.mark.asyncio
    async def test_transport_failure_is_returned(self, cdp_client, json_event):
        cdp_client.bodies["req-1"] = RuntimeError("Target closed")

        result = await BodyFetcher(cdp_client).fetch(json_event)

        assert not result.ok
        assert isinstance(result.error, RuntimeError)
        assert result.body is None

    @pytest.mark.asyncio
    async def test_parse_failure_is_returned(self, cdp_client, json_event):
        cdp_client.bodies["req-1"] = {"body": "<html>", "base64Encoded": False}

        result = await BodyFetcher(cdp_client).fetch(json_event)

        assert not result.ok
        assert isinstance(result.error, NormalizationError)

    @pytest.mark.asyncio
    async def test_timeout_is_returned(self, cdp_client, json_event):
        cdp_client.bodies["req-1"] = {"body": "{}", "base64Encoded": False}
        cdp_client.delays["req-1"] = 1

        result = await BodyFetcher(cdp_client, timeout=0.01).fetch(json_event)

        assert not result.ok
        assert isinstance(result.error, asyncio.TimeoutError)
