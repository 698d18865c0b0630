"""
Browser automation capability.

The recorder only ever talks to the page through the small surface defined
by ``AutomationCapability`` / ``ElementHandle``. That keeps the join, capture,
presence and shutdown logic testable against a scripted fake.

``PlaywrightAutomation`` is the production implementation:
- Persistent Chrome profile (keeps the Google login between runs) or a
  throwaway context
- Tab-capture friendly Chrome flags for getDisplayMedia on the Meet tab
- Browser console piped to the Python logger
- Close notifications for both the page and the context
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from tool_modules.aa_meet_recorder.src.config import BrowserConfig

logger = logging.getLogger(__name__)

BROWSER_CLOSED_PATTERNS = (
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
)


class AutomationStartError(Exception):
    """Raised when the browser automation capability cannot be initialized."""


class BrowserClosedError(Exception):
    """Raised when the browser has been closed unexpectedly."""


def is_browser_closed_error(error: BaseException) -> bool:
    """Check whether an exception means the page/browser is gone."""
    message = str(error)
    return any(pattern in message for pattern in BROWSER_CLOSED_PATTERNS)


@runtime_checkable
class ElementHandle(Protocol):
    """A lazily-resolved reference to the first element matching a selector."""

    async def is_visible(self, timeout_ms: int = 0) -> bool:
        """Wait up to timeout_ms for the element to be visible. Never raises."""
        ...

    async def click(self, force: bool = False) -> None: ...

    async def fill(self, text: str) -> None: ...

    async def get_attribute(self, name: str, timeout_ms: int = 1000) -> Optional[str]: ...

    async def input_value(self) -> str: ...


@runtime_checkable
class AutomationCapability(Protocol):
    """Everything the recorder needs from a controlled browser page."""

    @property
    def url(self) -> str: ...

    async def start(self) -> None: ...

    async def navigate(self, url: str) -> None: ...

    def locate(self, selector: str) -> ElementHandle: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def register_host_callback(self, name: str, handler: Callable[..., Any]) -> None: ...

    async def grant_permissions(self, permissions: list[str], origin: str) -> None: ...

    async def wait_for_any(self, selectors: list[str], timeout_ms: int) -> Optional[str]:
        """Resolve with the first selector to become visible, or None."""
        ...

    async def wait_for_hidden(self, selector: str, timeout_ms: int) -> bool: ...

    async def wait_for_url(self, predicate: Callable[[str], bool], timeout_ms: Optional[int] = None) -> None:
        """Wait until the page URL satisfies predicate (timeout_ms None waits forever)."""
        ...

    def on_close(self, handler: Callable[[], None]) -> None: ...

    async def close(self) -> None: ...


def build_chrome_args(config: BrowserConfig) -> list[str]:
    """Chrome flags needed for unattended tab capture inside Meet."""
    return [
        "--use-fake-ui-for-media-stream",
        "--disable-blink-features=AutomationControlled",
        f'--auto-select-tab-capture-source-by-title="{config.tab_capture_title}"',
        "--enable-features=TabCapture,WebRTCPipeWireCapturer",
        "--allow-http-screen-capture",
        "--autoplay-policy=no-user-gesture-required",
    ]


class PlaywrightElement:
    """ElementHandle backed by a Playwright locator (first match)."""

    def __init__(self, locator):
        self._locator = locator.first

    async def is_visible(self, timeout_ms: int = 0) -> bool:
        from playwright.async_api import Error as PlaywrightError

        try:
            if timeout_ms <= 0:
                return await self._locator.is_visible()
            await self._locator.wait_for(state="visible", timeout=timeout_ms)
            return True
        except PlaywrightError:
            return False

    async def click(self, force: bool = False) -> None:
        await self._locator.click(force=force)

    async def fill(self, text: str) -> None:
        await self._locator.fill(text)

    async def get_attribute(self, name: str, timeout_ms: int = 1000) -> Optional[str]:
        return await self._locator.get_attribute(name, timeout=timeout_ms)

    async def input_value(self) -> str:
        return await self._locator.input_value()


class PlaywrightAutomation:
    """AutomationCapability implemented with Playwright's async API."""

    def __init__(self, config: BrowserConfig, keep_profile: bool = True):
        self.config = config
        self.keep_profile = keep_profile
        self._playwright = None
        self._browser = None
        self.context = None
        self.page = None
        self._close_handlers: list[Callable[[], None]] = []
        self._closed_notified = False
        self._closing = False

    @property
    def url(self) -> str:
        return self.page.url if self.page else ""

    async def start(self) -> None:
        """Launch Chromium and open the working page."""
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise AutomationStartError(
                f"Playwright not installed: {e}. Run: pip install playwright && playwright install chromium"
            ) from e

        launch_options = {
            "headless": self.config.headless,
            "args": build_chrome_args(self.config),
            "ignore_default_args": ["--enable-automation"],
        }
        context_options = {
            "permissions": ["microphone", "camera"],
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
        }

        try:
            self._playwright = await async_playwright().start()
            if self.keep_profile:
                logger.info(f"Using user data directory: {self.config.profile_dir}")
                self.context = await self._playwright.chromium.launch_persistent_context(
                    user_data_dir=str(self.config.profile_dir),
                    **launch_options,
                    **context_options,
                )
            else:
                self._browser = await self._playwright.chromium.launch(**launch_options)
                self.context = await self._browser.new_context(**context_options)

            self.page = self.context.pages[0] if self.context.pages else await self.context.new_page()
        except Exception as e:
            await self._stop_playwright()
            raise AutomationStartError(f"Failed to initialize browser: {e}") from e

        self.page.on("console", lambda msg: logger.debug(f"BROWSER LOG: {msg.text}"))
        self.page.on("close", lambda _page: self._notify_closed("page"))
        self.context.on("close", lambda _context: self._notify_closed("context"))

        mode = "headless" if self.config.headless else "headed"
        profile = "persistent profile" if self.keep_profile else "stateless context"
        logger.info(f"Browser initialized ({mode}, {profile})")

    def _notify_closed(self, source: str) -> None:
        if self._closing or self._closed_notified:
            return
        self._closed_notified = True
        logger.warning(f"Browser {source} closed externally")
        for handler in list(self._close_handlers):
            try:
                handler()
            except Exception as e:
                logger.warning(f"Close handler failed: {e}")

    def on_close(self, handler: Callable[[], None]) -> None:
        self._close_handlers.append(handler)

    def _require_page(self):
        if self.page is None:
            raise BrowserClosedError("Browser not initialized - page is None")
        return self.page

    async def navigate(self, url: str) -> None:
        page = self._require_page()
        await page.goto(url, wait_until=self.config.navigation_wait_until)

    def locate(self, selector: str) -> ElementHandle:
        return PlaywrightElement(self._require_page().locator(selector))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._require_page().evaluate(script, arg)

    async def register_host_callback(self, name: str, handler: Callable[..., Any]) -> None:
        if self.context is None:
            raise BrowserClosedError("Browser not initialized - context is None")
        await self.context.expose_function(name, handler)

    async def grant_permissions(self, permissions: list[str], origin: str) -> None:
        if self.context is None:
            raise BrowserClosedError("Browser not initialized - context is None")
        await self.context.grant_permissions(permissions, origin=origin)

    async def wait_for_any(self, selectors: list[str], timeout_ms: int) -> Optional[str]:
        page = self._require_page()

        async def probe(selector: str) -> str:
            await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
            return selector

        pending = {asyncio.create_task(probe(s)) for s in selectors}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.exception() is None:
                        return task.result()
                    logger.debug(f"wait_for_any probe failed: {task.exception()}")
            return None
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def wait_for_hidden(self, selector: str, timeout_ms: int) -> bool:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._require_page().locator(selector).first.wait_for(state="hidden", timeout=timeout_ms)
            return True
        except PlaywrightError as e:
            logger.debug(f"wait_for_hidden({selector}) failed: {e}")
            return False

    async def wait_for_url(self, predicate: Callable[[str], bool], timeout_ms: Optional[int] = None) -> None:
        await self._require_page().wait_for_url(predicate, timeout=timeout_ms or 0)

    async def close(self) -> None:
        """Close the browsing context and stop Playwright."""
        self._closing = True
        if self.context is not None:
            try:
                await asyncio.wait_for(self.context.close(), timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Timeout closing browser context")
            except Exception as e:
                logger.warning(f"Error closing browser context: {e}")
            self.context = None
            self.page = None

        if self._browser is not None:
            try:
                await asyncio.wait_for(self._browser.close(), timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Timeout closing browser")
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        await self._stop_playwright()
        logger.info("Browser closed")

    async def _stop_playwright(self) -> None:
        if self._playwright is None:
            return
        try:
            await asyncio.wait_for(self._playwright.stop(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Timeout stopping playwright")
        except Exception as e:
            logger.warning(f"Error stopping playwright: {e}")
        self._playwright = None
