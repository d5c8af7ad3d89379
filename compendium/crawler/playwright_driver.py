"""
Playwright-based browser driver for Compendium.

Implements the BrowserDriver protocol on top of a single Playwright page.

Features:
- Lazy browser/context/page initialization
- Resource blocking (images, media, fonts) for faster result pages
- In-page MutationObserver bridged to ``on_mutation`` while the page loads
- Playwright failures translated into NavigationError/ScriptError/UploadError
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError

from compendium.crawler.driver import (
    MutationEvent,
    MutationHandler,
    NavigationError,
    ResultShape,
    ScriptError,
    UploadError,
    coerce_script_result,
)
from compendium.utils.config import BrowserConfig, get_settings
from compendium.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = get_logger(__name__)

MUTATION_BINDING = "__compendiumMutation"

# Reports DOM mutations to the driver while the document is still loading.
# Notifications are coalesced to one per animation frame.
MUTATION_OBSERVER_SCRIPT = f"""
(() => {{
    let pending = false;
    const notify = () => {{
        if (pending || document.readyState === 'complete') return;
        pending = true;
        requestAnimationFrame(() => {{
            pending = false;
            if (window.{MUTATION_BINDING}) {{
                window.{MUTATION_BINDING}(document.readyState !== 'complete');
            }}
        }});
    }};
    const start = () => {{
        new MutationObserver(notify).observe(document.documentElement, {{
            childList: true,
            subtree: true,
        }});
    }};
    if (document.documentElement) {{
        start();
    }} else {{
        document.addEventListener('readystatechange', start, {{ once: true }});
    }}
}})();
"""

BLOCKED_RESOURCES = "**/*.{png,jpg,jpeg,gif,svg,webp,mp4,webm,mp3,woff,woff2}"


class PlaywrightDriver:
    """
    BrowserDriver implementation owning one Playwright page.

    Example:
        async with PlaywrightDriver() as driver:
            await driver.navigate("https://www.google.com/search?q=esp32")
            title = await driver.evaluate("return document.title", expecting=ResultShape.TEXT)
    """

    def __init__(self, config: BrowserConfig | None = None):
        """
        Initialize the driver.

        Args:
            config: Browser configuration (default: from settings).
        """
        self._config = config or get_settings().browser
        self._timeout_ms = self._config.navigation_timeout_ms

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None
        self._loading = False
        self._pending: set[asyncio.Task[None]] = set()

        self.on_mutation: MutationHandler | None = None

    async def __aenter__(self) -> PlaywrightDriver:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Launch the browser and open the session page."""
        await self._ensure_page()

    async def _ensure_page(self) -> Page:
        """Get or create the session page."""
        if self._page is not None and not self._page.is_closed():
            return self._page

        if self._playwright is None:
            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self._config.headless
            )
            logger.info("Browser launched", headless=self._config.headless)

        if self._context is None:
            assert self._browser is not None  # Launched above
            context_options: dict[str, Any] = {
                "viewport": {
                    "width": self._config.viewport_width,
                    "height": self._config.viewport_height,
                },
            }
            if self._config.user_agent:
                context_options["user_agent"] = self._config.user_agent
            self._context = await self._browser.new_context(**context_options)

            if self._config.block_resources:
                await self._context.route(BLOCKED_RESOURCES, lambda route: route.abort())

            await self._context.expose_function(MUTATION_BINDING, self._handle_mutation)
            await self._context.add_init_script(MUTATION_OBSERVER_SCRIPT)

        page = await self._context.new_page()
        page.on("framenavigated", self._handle_frame_navigated)
        page.on("load", self._handle_load)
        self._page = page
        return page

    def _handle_frame_navigated(self, frame: Any) -> None:
        if self._page is None or frame != self._page.main_frame:
            return
        self._loading = True
        # Same-document (History API) navigations are never followed by a load event
        task = asyncio.create_task(self._refresh_loading(frame))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _refresh_loading(self, frame: Any) -> None:
        try:
            state = await frame.evaluate("document.readyState")
        except PlaywrightError as e:
            logger.debug("Ready state check skipped", error=str(e))
            return
        if state == "complete":
            self._loading = False

    def _handle_load(self, _page: Any) -> None:
        self._loading = False

    def _handle_mutation(self, loading: bool) -> None:
        """Forward an in-page mutation notification to the registered handler."""
        handler = self.on_mutation
        if handler is None or not (loading or self._loading):
            return
        handler(MutationEvent(url=self.current_url, loading=True))

    @property
    def current_url(self) -> str:
        if self._page is None:
            return "about:blank"
        return self._page.url

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def navigate(self, url: str) -> None:
        page = await self._ensure_page()
        self._loading = True
        try:
            await page.goto(url, timeout=self._timeout_ms, wait_until="domcontentloaded")
        except PlaywrightError as e:
            logger.warning("Navigation failed", url=url[:100], error=str(e))
            raise NavigationError(url, str(e)) from e

    async def wait_for_navigation(self) -> None:
        page = await self._ensure_page()
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(page.url, str(e)) from e

    async def evaluate(
        self,
        script: str,
        arguments: dict[str, Any] | None = None,
        expecting: ResultShape = ResultShape.JSON,
    ) -> Any:
        page = await self._ensure_page()
        try:
            value = await page.evaluate(f"async (args) => {{\n{script}\n}}", arguments or {})
        except PlaywrightError as e:
            raise ScriptError(f"Script evaluation failed: {e}") from e
        return coerce_script_result(value, expecting)

    async def upload_file(self, path: str, target_selector: str) -> None:
        page = await self._ensure_page()
        if not Path(path).is_file():
            raise UploadError(target_selector, f"no such file: {path}")

        target = page.locator(target_selector)
        try:
            if await target.count() == 0:
                raise UploadError(target_selector, "target element not found")
            await target.first.set_input_files(path)
        except PlaywrightError as e:
            raise UploadError(target_selector, str(e)) from e

    async def close(self) -> None:
        """Close page, context and browser."""
        self.on_mutation = None
        for task in list(self._pending):
            task.cancel()
        try:
            if self._page and not self._page.is_closed():
                await self._page.close()

            if self._context:
                await self._context.close()

            if self._browser:
                await self._browser.close()

            if self._playwright:
                await self._playwright.stop()

        except PlaywrightError as e:
            logger.warning("Error during browser cleanup", error=str(e))
        finally:
            self._page = None
            self._context = None
            self._browser = None
            self._playwright = None
