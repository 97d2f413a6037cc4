"""End-to-end tests for a capture, with the browser mocked out."""

import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from harcapture.core.config import CaptureConfig
from harcapture.core.scope_filter import ScopeFilter
from harcapture.pipeline.archive_builder import archive_filename
from harcapture.pipeline.capture_task import CaptureTask


class TestCaptureTask:
    """Tests for CaptureTask."""

    @pytest.fixture
    def page(self):
        page = AsyncMock()
        page.on = MagicMock()
        return page

    @pytest.fixture
    def session_manager(self, cdp_client, page):
        context = AsyncMock()
        context.new_page.return_value = page
        session = MagicMock()
        session.get_context = AsyncMock(return_value=context)
        session.open_cdp_session = AsyncMock(return_value=cdp_client)
        return session

    @pytest.fixture
    def page_events(self, request_params, response_params):
        json_response = response_params("json", "https://a.com/data.json")
        image_response = response_params("img", "https://b.com/logo.png", mime_type="image/png")
        return {
            "json": json_response,
            "image": image_response,
            "sequence": [
                ("Page.frameStartedLoading", {"frameId": "frame-1"}),
                ("Network.requestWillBeSent", request_params("json", "https://a.com/data.json")),
                ("Network.requestWillBeSent", request_params("img", "https://b.com/logo.png", timestamp=100.1)),
                ("Network.responseReceived", json_response),
                ("Network.responseReceived", image_response),
                ("Network.loadingFinished", {"requestId": "json", "timestamp": 100.6, "encodedDataLength": 7}),
                ("Network.loadingFinished", {"requestId": "img", "timestamp": 100.7, "encodedDataLength": 900}),
                ("Page.loadEventFired", {"timestamp": 101.0}),
            ],
        }

    @pytest.mark.asyncio
    async def test_capture_end_to_end(self, tmp_path, cdp_client, page, session_manager, page_events, caplog):
        caplog.set_level(logging.INFO)
        cdp_client.bodies["json"] = {"body": '{"a":1}', "base64Encoded": False}

        async def goto(url, **kwargs):
            for method, params in page_events["sequence"]:
                cdp_client.emit(method, params)

        page.goto.side_effect = goto

        task = CaptureTask(session_manager, CaptureConfig(output_dir=tmp_path), ScopeFilter(["a.com"]))
        result = await task.run("https://a.com/index?q=1")

        assert page_events["json"]["response"]["body"] == '{\n    "a": 1\n}'
        assert "body" not in page_events["image"]["response"]

        messages = [record.getMessage() for record in caplog.records]
        assert len([line for line in messages if line.startswith("ADD ")]) == 1
        assert len([line for line in messages if line.startswith("IGNORE ")]) == 1
        assert "IGNORE https://b.com/logo.png 200 image/png" in messages

        assert result.event_count == len(page_events["sequence"])
        assert result.enriched_count == 1
        assert result.failed_count == 0
        assert result.ignored_count == 1

        archive = tmp_path / archive_filename("https://a.com/index?q=1")
        assert result.archive_path == str(archive)
        har = json.loads(archive.read_text(encoding="utf-8"))
        entries = {entry["request"]["url"]: entry for entry in har["log"]["entries"]}
        assert entries["https://a.com/data.json"]["response"]["content"]["text"] == '{\n    "a": 1\n}'
        assert "text" not in entries["https://b.com/logo.png"]["response"]["content"]

        page.goto.assert_awaited_once_with("https://a.com/index?q=1", wait_until="networkidle", timeout=60000)
        page.close.assert_awaited_once()
        assert cdp_client.listener_count == 0

    @pytest.mark.asyncio
    async def test_bodies_fetched_after_navigation(self, tmp_path, cdp_client, page, session_manager, response_params):
        cdp_client.bodies["1"] = {"body": "{}", "base64Encoded": False}
        fetched_during_navigation = []

        async def goto(url, **kwargs):
            cdp_client.emit("Network.responseReceived", response_params("1", "https://a.com/1"))
            fetched_during_navigation.extend(cdp_client.sent)

        page.goto.side_effect = goto

        result = await CaptureTask(session_manager, CaptureConfig(output_dir=tmp_path)).run("https://a.com/")

        assert fetched_during_navigation == []
        assert cdp_client.sent == [("Network.getResponseBody", {"requestId": "1"})]
        assert result.enriched_count == 1

    @pytest.mark.asyncio
    async def test_navigation_failure_propagates(self, tmp_path, cdp_client, page, session_manager):
        page.goto.side_effect = TimeoutError("Navigation timeout of 60000 ms exceeded")

        with pytest.raises(TimeoutError):
            await CaptureTask(session_manager, CaptureConfig(output_dir=tmp_path)).run("https://a.com/")

        assert cdp_client.listener_count == 0
        page.close.assert_awaited_once()
        assert list(tmp_path.iterdir()) == []
