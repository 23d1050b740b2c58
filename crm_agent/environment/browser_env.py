from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
import logging
import time

from playwright.sync_api import sync_playwright, Page, Browser, Playwright, Error as PlaywrightError

from ..data.patterns import parse_coordinates
from .interfaces import ActionResult

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {'width': 1920, 'height': 1080}


class BrowserEnvironment:
    """Action executor backed by a Playwright sync page.

    Locators are Playwright selectors, except ``xy=<x>,<y>`` which clicks
    at page coordinates. Screenshots are written under ``screenshot_dir``
    and their path is returned as the reference.
    """

    def __init__(self, page: Page, screenshot_dir: Optional[str] = None,
                 browser_name: str = 'chromium'):
        self.page = page
        self.screenshot_dir = Path(screenshot_dir) if screenshot_dir else None
        self.browser_name = browser_name
        self.action_count = 0
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    @classmethod
    def launch(cls, url: Optional[str] = None, headless: bool = True,
               screenshot_dir: Optional[str] = None,
               viewport: Optional[Dict[str, int]] = None) -> 'BrowserEnvironment':
        """Start Chromium and open a page; call close() when done"""
        playwright = sync_playwright().start()
        browser = playwright.chromium.launch(headless=headless)
        page = browser.new_page(viewport=viewport or DEFAULT_VIEWPORT)
        env = cls(page, screenshot_dir=screenshot_dir)
        env._playwright = playwright
        env._browser = browser
        logger.info("Launched browser (headless=%s)", headless)
        if url:
            page.goto(url, wait_until='domcontentloaded')
        return env

    def close(self) -> None:
        if self._browser is not None:
            self._browser.close()
            self._browser = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None

    def __enter__(self) -> 'BrowserEnvironment':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def perform(self, action: str, locator: Optional[str], value: Optional[str] = None,
                timeout: int = 5000) -> ActionResult:
        """Run one primitive action; Playwright errors become a failed result"""
        start = time.time()
        try:
            self._dispatch(action, locator, value, timeout)
        except PlaywrightError as e:
            logger.debug("Action %s on %s failed: %s", action, locator, e)
            return ActionResult.failed(str(e), duration=time.time() - start)
        except ValueError as e:
            return ActionResult.failed(str(e), duration=time.time() - start)

        self.action_count += 1
        return ActionResult.ok(duration=time.time() - start)

    def _dispatch(self, action: str, locator: Optional[str], value: Optional[str], timeout: int) -> None:
        if action == 'navigate':
            target = value or locator
            if not target:
                raise ValueError("navigate needs a URL")
            self.page.goto(target, timeout=timeout, wait_until='domcontentloaded')
            return

        if action == 'wait':
            if locator:
                self.page.locator(locator).first.wait_for(state='visible', timeout=timeout)
            else:
                self.page.wait_for_timeout(int(value or 1000))
            return

        if not locator:
            raise ValueError(f"{action} needs a locator")

        point = parse_coordinates(locator)
        if point is not None:
            if action != 'click':
                raise ValueError(f"Coordinate locators only support click, not {action}")
            self.page.mouse.click(point['x'], point['y'])
            return

        element = self.page.locator(locator).first
        if action == 'click':
            element.click(timeout=timeout)
        elif action == 'fill':
            element.fill(value or '', timeout=timeout)
        elif action == 'select':
            element.select_option(value, timeout=timeout)
        elif action == 'verify':
            element.wait_for(state='visible', timeout=timeout)
            if value and value not in (element.text_content(timeout=timeout) or ''):
                raise ValueError(f"Expected text '{value}' not found in {locator}")
        else:
            raise ValueError(f"Unsupported action: {action}")

    def screenshot(self, label: str) -> Optional[str]:
        if self.screenshot_dir is None:
            return None
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d-%H%M%S-%f')
        path = self.screenshot_dir / f"{label}-{stamp}.png"
        try:
            self.page.screenshot(path=str(path), full_page=True)
        except PlaywrightError as e:
            logger.warning("Screenshot %s failed: %s", label, e)
            return None
        logger.debug("Saved screenshot %s", path)
        return str(path)

    def get_page_state(self) -> Dict[str, Any]:
        try:
            title = self.page.title()
        except PlaywrightError:
            title = ''
        return {
            'url': self.page.url,
            'title': title,
            'browser': self.browser_name,
            'viewport': self.page.viewport_size or DEFAULT_VIEWPORT,
            'action_count': self.action_count,
        }
