"""Playwright browser manager hosting the block runtime pages."""

from __future__ import annotations

import atexit
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import MutableMapping

from playwright.sync_api import Browser, BrowserContext, Error as PlaywrightError, Page, Playwright, sync_playwright

LOGGER = logging.getLogger("blockpilot.browser")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    token = raw.strip().lower()
    return token in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, *, minimum: int | None = None, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _env_tuple(name: str, default: tuple[int, int]) -> tuple[int, int]:
    raw = os.getenv(name)
    if raw is None:
        return default
    parts = raw.replace(";", ",").split(",")
    if len(parts) != 2:
        return default
    try:
        width = int(parts[0].strip())
        height = int(parts[1].strip())
    except ValueError:
        return default
    return max(640, width), max(480, height)


@dataclass(slots=True)
class BrowserSettings:
    """Launch configuration for Playwright browser sessions."""

    headless: bool = field(default_factory=lambda: _env_bool("BP_BROWSER_HEADLESS", True))
    slow_mo_ms: int = field(default_factory=lambda: _env_int("BP_BROWSER_SLOWMO_MS", 0, minimum=0, maximum=2000))
    # Geometry depends on layout; keep the viewport fixed per session.
    viewport: tuple[int, int] = field(default_factory=lambda: _env_tuple("BP_BROWSER_VIEWPORT", (1600, 900)))
    context_timeout_ms: int = field(
        default_factory=lambda: _env_int("BP_BROWSER_CONTEXT_TIMEOUT_MS", 45000, minimum=5000, maximum=180000)
    )
    navigation_timeout_ms: int = field(
        default_factory=lambda: _env_int("BP_BROWSER_NAV_TIMEOUT_MS", 60000, minimum=5000, maximum=180000)
    )


class BrowserManager:
    """Lazy owner of one Playwright browser with safe shutdown semantics."""

    def __init__(self, settings: BrowserSettings | None = None) -> None:
        self._settings = settings or BrowserSettings()
        self._lock = threading.Lock()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        atexit.register(self.stop)

    @property
    def settings(self) -> BrowserSettings:
        return self._settings

    def start(self) -> Browser:
        with self._lock:
            if self._browser is None:
                self._playwright = sync_playwright().start()
                launch_kwargs: MutableMapping[str, object] = {
                    "headless": self._settings.headless,
                    "slow_mo": self._settings.slow_mo_ms,
                }
                self._browser = self._playwright.chromium.launch(**launch_kwargs)
                LOGGER.info("Chromium started (headless=%s)", self._settings.headless)
            return self._browser

    def stop(self) -> None:
        with self._lock:
            browser, playwright = self._browser, self._playwright
            self._browser = None
            self._playwright = None
        try:
            if browser is not None:
                browser.close()
        except PlaywrightError as exc:
            LOGGER.debug("Browser close failed: %s", exc)
        try:
            if playwright is not None:
                playwright.stop()
        except PlaywrightError as exc:
            LOGGER.debug("Playwright stop failed: %s", exc)

    def new_context(self) -> BrowserContext:
        browser = self.start()
        context = browser.new_context(
            viewport={"width": self._settings.viewport[0], "height": self._settings.viewport[1]},
            device_scale_factor=1,
        )
        context.set_default_timeout(self._settings.context_timeout_ms)
        context.set_default_navigation_timeout(self._settings.navigation_timeout_ms)
        return context

    def open_page(self, url: str) -> tuple[BrowserContext, Page]:
        """Open a fresh isolated context with one page navigated to ``url``."""
        context = self.new_context()
        page = context.new_page()
        page.goto(url, wait_until="networkidle")
        return context, page


_DEFAULT_MANAGER: BrowserManager | None = None


def get_browser_manager() -> BrowserManager:
    global _DEFAULT_MANAGER
    if _DEFAULT_MANAGER is None:
        _DEFAULT_MANAGER = BrowserManager()
    return _DEFAULT_MANAGER
