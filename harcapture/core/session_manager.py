import logging
from typing import Optional

from playwright.async_api import async_playwright, Browser, BrowserContext, CDPSession, Page, Playwright

logger = logging.getLogger(__name__)

class SessionManager:
    """
    Manages the headless browser used for a capture and the CDP sessions opened on its pages.
    """

    def __init__(self, headless: bool = True):
        self.headless = headless
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    async def __aenter__(self):
        """Launches Chromium and opens a fresh browser context."""
        logger.info("Starting Playwright session...")
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(headless=self.headless)

        logger.info("Creating a new browser context.")
        self.context = await self.browser.new_context()

        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Closes the browser and stops Playwright."""
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self.playwright:
            await self.playwright.stop()
        logger.info("Playwright session closed.")

    async def get_context(self) -> BrowserContext:
        """Returns the current browser context."""
        if not self.context:
            raise ConnectionError("Session has not been initialized. Call __aenter__ first.")
        return self.context

    async def open_cdp_session(self, page: Page) -> CDPSession:
        """
        Attaches a CDP session to a page with the Page and Network domains enabled.

        Args:
            page: The page whose traffic will be observed.

        Returns:
            The CDP session.
        """
        context = await self.get_context()
        client = await context.new_cdp_session(page)
        await client.send("Page.enable")
        await client.send("Network.enable")
        logger.debug("CDP session attached with Page and Network domains enabled.")
        return client
