"""Playwright browser session shared by every test in one file."""
from __future__ import annotations

import logging
from typing import Any, Literal, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
    TimeoutError as PlaywrightTimeout,
)

from exceptions import (
    BrowserLaunchError,
    BrowserNotStartedError,
    NavigationError,
    ScreenshotError,
)

BrowserType = Literal["chromium", "firefox", "webkit"]

# Normalized structural description of the element under a point. Only
# structural attributes and visible text are kept so that styling changes do
# not register as drift.
_COMPONENT_SIGNATURE_JS = """([vx, vy]) => {
    const hit = document.elementFromPoint(vx, vy);
    if (!hit) return "";
    const el = hit.closest('a, button, input, select, textarea, label, summary, [role]') || hit;
    const parts = [(el.tagName || '').toLowerCase()];
    for (const name of ['id', 'name', 'type', 'role', 'aria-label', 'placeholder', 'href']) {
        const value = el.getAttribute(name);
        if (value) parts.push(name + '=' + value.trim());
    }
    const text = (el.innerText || el.value || '').replace(/\\s+/g, ' ').trim().slice(0, 120);
    if (text) parts.push('text=' + text.toLowerCase());
    const parent = el.parentElement;
    if (parent) parts.push('parent=' + parent.tagName.toLowerCase());
    return parts.join('|');
}"""


class BrowserSession:
    """Browser manager using Playwright with pointer tracking."""

    def __init__(
        self,
        browser_type: BrowserType = "chromium",
        headless: bool = True,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        slow_mo: int = 0,
        logger: Optional[logging.Logger] = None,
    ):
        self.browser_type = browser_type
        self.headless = headless
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.slow_mo = slow_mo
        self.logger = logger or logging.getLogger("browser")

        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self._cursor: tuple[int, int] = (0, 0)

    @property
    def cursor_position(self) -> tuple[int, int]:
        return self._cursor

    def _ensure_started(self) -> None:
        """Raise if browser not started."""
        if self.page is None:
            raise BrowserNotStartedError()

    async def start(self) -> None:
        """Start the browser with the configured engine."""
        try:
            self._playwright = await async_playwright().start()
            browser_launcher = getattr(self._playwright, self.browser_type)
            launch_options: dict[str, Any] = {"headless": self.headless}
            if self.slow_mo > 0:
                launch_options["slow_mo"] = self.slow_mo

            self.browser = await browser_launcher.launch(**launch_options)
            self.context = await self.browser.new_context(
                viewport={"width": self.viewport_width, "height": self.viewport_height}
            )
            self.page = await self.context.new_page()
        except Exception as e:
            await self.close()
            raise BrowserLaunchError(f"Browser launch failed: {e}", browser_type=self.browser_type) from e

        self._cursor = (0, 0)
        self.logger.info(f"Browser started: {self.browser_type} (headless={self.headless})")

    async def close(self) -> None:
        """Close the browser and clean up resources."""
        if self.page:
            await self.page.close()
        if self.context:
            await self.context.close()
        if self.browser:
            await self.browser.close()
        if self._playwright:
            await self._playwright.stop()
        self.page = None
        self.context = None
        self.browser = None
        self._playwright = None
        self.logger.info("Browser closed")

    async def new_request_context(self, base_url: str = "", **kwargs: Any) -> Any:
        """Create a Playwright API request context for callbacks."""
        self._ensure_started()
        if base_url:
            kwargs["base_url"] = base_url
        return await self._playwright.request.new_context(**kwargs)

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def goto(
        self,
        url: str,
        wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = "load",
        timeout: float = 30000,
    ) -> None:
        """Navigate to a URL with configurable wait strategy."""
        self._ensure_started()
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeout as e:
            raise NavigationError(f"Navigation timed out: {url}", url=url, timeout=timeout) from e
        except Exception as e:
            raise NavigationError(f"Navigation failed: {e}", url=url) from e

    def get_url(self) -> str:
        """Get current URL."""
        self._ensure_started()
        return self.page.url

    async def get_title(self) -> str:
        """Get current page title."""
        self._ensure_started()
        try:
            return await self.page.title()
        except Exception:
            return ""

    # ─────────────────────────────────────────────────────────────────────────
    # Screenshots and inspection
    # ─────────────────────────────────────────────────────────────────────────

    async def screenshot(self, full_page: bool = False) -> bytes:
        """Take a PNG screenshot of the viewport."""
        self._ensure_started()
        try:
            return await self.page.screenshot(full_page=full_page)
        except Exception as e:
            raise ScreenshotError(f"Screenshot failed: {e}") from e

    async def get_component_signature(self, x: float, y: float) -> str:
        """Return the normalized structural signature of the element at (x, y)."""
        self._ensure_started()
        return await self.page.evaluate(_COMPONENT_SIGNATURE_JS, [x, y])

    # ─────────────────────────────────────────────────────────────────────────
    # Pointer input
    # ─────────────────────────────────────────────────────────────────────────

    async def move_mouse(self, x: int, y: int) -> None:
        """Move cursor without clicking."""
        self._ensure_started()
        await self.page.mouse.move(x, y)
        self._cursor = (x, y)

    async def click(
        self,
        x: int,
        y: int,
        button: Literal["left", "right", "middle"] = "left",
        click_count: int = 1,
    ) -> None:
        """Click at coordinates."""
        self._ensure_started()
        await self.page.mouse.click(x, y, button=button, click_count=click_count)
        self._cursor = (x, y)

    async def drag(self, end_x: int, end_y: int, steps: int = 10) -> None:
        """Drag from the current cursor position to the end coordinates."""
        self._ensure_started()
        start_x, start_y = self._cursor
        await self.page.mouse.move(start_x, start_y)
        await self.page.mouse.down()
        await self.page.mouse.move(end_x, end_y, steps=steps)
        await self.page.mouse.up()
        self._cursor = (end_x, end_y)

    # ─────────────────────────────────────────────────────────────────────────
    # Keyboard input
    # ─────────────────────────────────────────────────────────────────────────

    async def type_text(self, text: str, delay: int = 0) -> None:
        """Type text into the focused element."""
        self._ensure_started()
        await self.page.keyboard.type(text, delay=delay)

    async def press_key(self, key: str) -> None:
        """Press a keyboard key or chord."""
        self._ensure_started()
        await self.page.keyboard.press(key)
