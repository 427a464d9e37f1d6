"""
Betaflight Backup - Browser Bridge

This module handles communication with the Betaflight web configurator
running in a Chromium tab via Playwright. It provides the two primitives
the capture engine relies on:
- viewport capture (``capture_viewport``)
- script execution in the page (``evaluate``)

plus thin DOM helpers built on them. Helpers never hand out element
handles: every call re-resolves its target from the live DOM, because the
configurator's Vue components replace subtrees after state changes.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from utils import page_scripts

logger = logging.getLogger(__name__)


class BrowserBridge:
    """
    Playwright connection manager for the configurator tab.

    Either launches Chromium and opens the configurator URL, or attaches to
    an already-running Chrome over CDP and picks the configurator tab.
    """

    def __init__(
        self,
        url: str = "https://app.betaflight.com",
        headless: bool = False,
        cdp_url: Optional[str] = None,
        viewport: Optional[Dict[str, int]] = None,
    ):
        self.url = url
        self.headless = headless
        self.cdp_url = cdp_url
        self.viewport = viewport or {"width": 1400, "height": 900}

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._page: Optional[Page] = None
        self._owns_browser = False
        self._page_lock = asyncio.Lock()  # One evaluate/screenshot in flight at a time

        logger.info(f"[BrowserBridge] Initialized for {url} (headless={headless}, cdp={'yes' if cdp_url else 'no'})")

    # === Connection ===

    @property
    def is_connected(self) -> bool:
        return self._page is not None and not self._page.is_closed()

    async def connect(self) -> None:
        """Start Playwright and open (or attach to) the configurator page"""
        if self.is_connected:
            return

        self._playwright = await async_playwright().start()

        if self.cdp_url:
            logger.info(f"[BrowserBridge] Attaching to Chrome at {self.cdp_url}")
            self._browser = await self._playwright.chromium.connect_over_cdp(self.cdp_url)
            self._page = self._find_configurator_page()
            if self._page is None:
                context = self._browser.contexts[0] if self._browser.contexts else await self._browser.new_context()
                self._page = await context.new_page()
                await self._page.goto(self.url)
        else:
            logger.info(f"[BrowserBridge] Launching Chromium (headless={self.headless})")
            self._browser = await self._playwright.chromium.launch(headless=self.headless)
            self._owns_browser = True
            context = await self._browser.new_context(viewport=self.viewport)
            self._page = await context.new_page()
            await self._page.goto(self.url)

        logger.info(f"[BrowserBridge] Connected to page {self._page.url}")

    def _find_configurator_page(self) -> Optional[Page]:
        """Pick the open tab whose URL matches the configurator host"""
        host = self.url.split("://", 1)[-1].rstrip("/")
        for context in self._browser.contexts:
            for page in context.pages:
                if host in page.url:
                    return page
        return None

    async def close(self) -> None:
        """Close the browser (only if we launched it) and stop Playwright"""
        try:
            if self._browser and self._owns_browser:
                await self._browser.close()
        except Exception as e:
            logger.warning(f"[BrowserBridge] Error closing browser: {e}")
        finally:
            if self._playwright:
                await self._playwright.stop()
            self._playwright = None
            self._browser = None
            self._page = None
            logger.info("[BrowserBridge] Closed")

    @property
    def page(self) -> Page:
        if not self.is_connected:
            raise RuntimeError("Browser page not connected")
        return self._page

    # === Primitives ===

    async def capture_viewport(self, timeout: float = 10.0) -> bytes:
        """
        Capture the visible viewport as JPEG.

        Raises:
            TimeoutError: If the capture does not finish within ``timeout`` seconds
            RuntimeError: If the page is not connected
        """
        async with self._page_lock:
            try:
                return await self.page.screenshot(
                    type="jpeg",
                    quality=80,
                    full_page=False,
                    timeout=timeout * 1000,
                )
            except PlaywrightTimeoutError as e:
                raise TimeoutError(f"Viewport capture timed out after {timeout:.0f}s") from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a script in the page's main world and return its result"""
        async with self._page_lock:
            if arg is None:
                return await self.page.evaluate(script)
            return await self.page.evaluate(script, arg)

    async def ping(self) -> bool:
        """No-op round trip that keeps the page session busy during long runs"""
        try:
            return bool(await self.evaluate(page_scripts.PING))
        except Exception as e:
            logger.debug(f"[BrowserBridge] Ping failed: {e}")
            return False

    # === Viewport and scrolling ===

    async def get_viewport_width(self) -> int:
        return int(await self.evaluate(page_scripts.VIEWPORT_WIDTH))

    async def get_scroll_metrics(self) -> Dict[str, float]:
        """scroll_top / scroll_height / client_height of the content scroll container"""
        return await self.evaluate(page_scripts.SCROLL_METRICS)

    async def set_scroll_top(self, value: float) -> float:
        """Request a scroll position; returns the position the browser actually applied"""
        return await self.evaluate(page_scripts.SET_SCROLL_TOP, value)

    async def hide_bottom_overlays(self) -> int:
        return int(await self.evaluate(page_scripts.HIDE_BOTTOM_OVERLAYS))

    async def restore_bottom_overlays(self) -> int:
        return int(await self.evaluate(page_scripts.RESTORE_BOTTOM_OVERLAYS))

    # === Element helpers ===

    async def count_visible(self, selector: str) -> int:
        return int(await self.evaluate(page_scripts.COUNT_VISIBLE, selector))

    async def visible_texts(self, selector: str) -> List[str]:
        return await self.evaluate(page_scripts.VISIBLE_TEXTS, selector)

    async def click_nth_visible(self, selector: str, index: int) -> bool:
        return bool(await self.evaluate(page_scripts.CLICK_NTH_VISIBLE, [selector, index]))

    # === Configurator navigation ===

    async def discover_panels(self) -> List[Dict[str, str]]:
        """Visible navigation tabs as [{'cls': 'tab_setup', 'label': 'Setup'}, ...]"""
        return await self.evaluate(page_scripts.DISCOVER_PANELS)

    async def click_panel(self, structural_class: str) -> bool:
        return bool(await self.evaluate(page_scripts.CLICK_PANEL, structural_class))

    async def enable_expert_mode(self) -> bool:
        """Tick the expert mode checkbox. Returns True if it had to be changed."""
        return bool(await self.evaluate(page_scripts.ENABLE_EXPERT_MODE))

    async def get_connection_snapshot(self) -> Dict[str, Any]:
        return await self.evaluate(page_scripts.CONNECTION_SNAPSHOT)

    # === Select controls ===

    async def get_select_snapshot(self) -> List[Dict[str, Any]]:
        return await self.evaluate(page_scripts.SELECT_SNAPSHOT)

    async def set_select_value(self, selector: str, value: str) -> Dict[str, Any]:
        result = await self.evaluate(page_scripts.SET_SELECT_VALUE, [selector, str(value)])
        return result or {"ok": False}

    async def get_select_value(self, selector: str) -> Optional[str]:
        return await self.evaluate(page_scripts.GET_SELECT_VALUE, selector)

    # === CLI terminal ===

    async def terminal_send_direct(self, command: str) -> bool:
        """Submit a command through the xterm instance's own API"""
        result = await self.evaluate(page_scripts.TERMINAL_SEND, command)
        logger.debug(f"[BrowserBridge] Terminal send result: {result}")
        return bool(result and result.get("ok"))

    async def terminal_type(self, command: str, key_delay_ms: float = 5) -> bool:
        """Replay the command as keystrokes into xterm's helper textarea"""
        for selector in page_scripts.TERMINAL_KEYBOARD_SELECTORS:
            target = self.page.locator(selector).first
            if await target.count() == 0:
                continue
            async with self._page_lock:
                await target.focus()
                await target.press_sequentially(command, delay=key_delay_ms)
                await target.press("Enter")
            logger.debug(f"[BrowserBridge] Typed command into {selector}")
            return True
        return False

    async def terminal_fill(self, command: str) -> bool:
        """Set a plain text input's value and press Enter"""
        for selector in page_scripts.TERMINAL_INPUT_SELECTORS:
            target = self.page.locator(selector).first
            if await target.count() == 0 or not await target.is_visible():
                continue
            async with self._page_lock:
                await target.fill(command)
                await target.press("Enter")
            logger.debug(f"[BrowserBridge] Filled command into {selector}")
            return True
        return False

    async def terminal_read(self) -> str:
        return await self.evaluate(page_scripts.TERMINAL_READ) or ""

    async def terminal_read_dom(self) -> str:
        return await self.evaluate(page_scripts.TERMINAL_READ_DOM) or ""

    async def terminal_clear(self) -> str:
        """Clear the terminal. Returns how ('button', 'terminal') or '' if impossible."""
        return await self.evaluate(page_scripts.TERMINAL_CLEAR) or ""

    async def terminal_diagnostics(self) -> Dict[str, Any]:
        return await self.evaluate(page_scripts.TERMINAL_DIAGNOSTICS)
