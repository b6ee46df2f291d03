import logging
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from loopwright.application.port import BrowserDriver, Session
from loopwright.domain.value_object import LaunchOptions

logger = logging.getLogger(__name__)

DEVTOOLS_ARG = "--auto-open-devtools-for-tabs"


def launch_kwargs(options: LaunchOptions) -> dict[str, Any]:
    """
    Translate launch options into ``chromium.launch`` keyword arguments.

    :param options: The effective launch options
    :type options: LaunchOptions
    :returns: Keyword arguments for ``BrowserType.launch``
    :rtype: dict[str, Any]
    """
    args = list(options.args)
    if options.devtools and DEVTOOLS_ARG not in args:
        args.append(DEVTOOLS_ARG)
    kwargs: dict[str, Any] = {"headless": options.headless and not options.devtools, "args": args}
    if options.sandbox is not None:
        kwargs["chromium_sandbox"] = options.sandbox
    if options.browser_version:
        kwargs["channel"] = options.browser_version
    return kwargs


def context_kwargs(options: LaunchOptions) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"ignore_https_errors": options.ignore_https_errors}
    if options.viewport is not None:
        kwargs["viewport"] = {"width": options.viewport.width, "height": options.viewport.height}
    return kwargs


class PlaywrightSession(Session):
    """A Chromium browser, its context and the page steps act upon."""

    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext, page: Page):
        self._playwright = playwright
        self.browser = browser
        self.context = context
        self._page = page
        self.closed = False

    @property
    def page(self) -> Page:
        return self._page

    async def close(self) -> None:
        """Close the context, the browser and Playwright. Later calls do nothing."""
        if self.closed:
            return
        self.closed = True
        try:
            await self.context.close()
            await self.browser.close()
        finally:
            await self._playwright.stop()
        logger.debug("Browser session closed")


class PlaywrightDriver(BrowserDriver):
    """Launches Chromium through the Playwright async API."""

    async def launch(self, options: LaunchOptions) -> PlaywrightSession:
        """
        Start Playwright, launch Chromium and open a page.

        :param options: The effective launch options
        :type options: LaunchOptions
        :returns: The launched session
        :rtype: PlaywrightSession
        """
        playwright = await async_playwright().start()
        try:
            kwargs = launch_kwargs(options)
            if options.debug:
                logger.info("Launching chromium with %s", kwargs)
            browser = await playwright.chromium.launch(**kwargs)
            context = await browser.new_context(**context_kwargs(options))
            page = await context.new_page()
        except BaseException:
            await playwright.stop()
            raise
        return PlaywrightSession(playwright, browser, context, page)
