import logging
from pathlib import Path
from typing import Optional

from harcapture.core.config import CaptureConfig
from harcapture.core.scope_filter import ScopeFilter
from harcapture.core.session_manager import SessionManager
from harcapture.models.models import CaptureResult
from harcapture.pipeline.archive_builder import archive_filename, har_from_messages, write_archive
from harcapture.pipeline.body_fetcher import BodyFetcher
from harcapture.pipeline.completion_barrier import CompletionBarrier
from harcapture.pipeline.event_collector import EventCollector

logger = logging.getLogger(__name__)

class CaptureTask:
    """
    Loads one page and records its network activity as a HAR file.

    The collector listens while the page loads, is closed once the network has
    gone quiet, and only then are the queued response bodies fetched and the
    archive assembled.
    """

    def __init__(self, session_manager: SessionManager, config: CaptureConfig,
                 scope: Optional[ScopeFilter] = None):
        self.session = session_manager
        self.config = config
        self.scope = scope or ScopeFilter()

    async def run(self, target_url: str) -> CaptureResult:
        """
        Captures the page at `target_url`.

        Args:
            target_url: The page to load.

        Returns:
            A summary of the capture, including the archive path.
        """
        logger.info(f"Starting capture of {target_url}")
        context = await self.session.get_context()
        page = await context.new_page()

        try:
            client = await self.session.open_cdp_session(page)
            fetcher = BodyFetcher(client, timeout=self.config.fetch_timeout)
            collector = EventCollector(client, fetcher, self.scope)

            collector.start()
            try:
                logger.info(f"Navigating to {target_url} (waiting for {self.config.wait_until})")
                await page.goto(
                    target_url,
                    wait_until=self.config.wait_until,
                    timeout=self.config.navigation_timeout_ms,
                )
            finally:
                collector.stop()

            report = await CompletionBarrier().drain(collector)

            har = har_from_messages(
                collector.messages(),
                include_resources_from_disk_cache=True,
                include_text_from_response_body=True,
            )
            archive_path = write_archive(har, Path(self.config.output_dir) / archive_filename(target_url))
        finally:
            await page.close()

        return CaptureResult(
            target_url=target_url,
            archive_path=str(archive_path),
            event_count=len(collector.events),
            enriched_count=len(report.enriched),
            failed_count=len(report.failures),
            ignored_count=len(collector.ignored),
        )
