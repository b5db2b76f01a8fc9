"""Headless browser agent that tries to complete an unsubscribe page.

One browser is shared by the process (BrowserPool); every call gets its own page
and closes it when done. The agent never raises: failures end up as steps in a
``success: False`` result.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from playwright.async_api import async_playwright

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
NAV_TIMEOUT_MS = int(os.getenv('UNSUBSCRIBE_NAV_TIMEOUT_MS', '30000'))
LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-accelerated-2d-canvas',
    '--no-first-run',
    '--no-zygote',
    '--disable-gpu',
]

# pauses after each kind of action, seconds
CLICK_PAUSE_S = 1.0
FILL_PAUSE_S = 0.5
SELECT_PAUSE_S = 0.5
WAIT_PAUSE_S = 2.0
SETTLE_PAUSE_S = 2.0

UNSUBSCRIBE_SELECTORS = [
    'a[href*="unsubscribe"]',
    'button[onclick*="unsubscribe"]',
    'input[value*="unsubscribe"]',
    '.unsubscribe',
    '#unsubscribe',
    '[data-action="unsubscribe"]',
]
EMAIL_INPUT_SELECTORS = [
    'input[type="email"]',
    'input[name*="email"]',
    'input[id*="email"]',
    'input[placeholder*="email"]',
]
SUBMIT_SELECTORS = [
    'input[type="submit"]',
    'button[type="submit"]',
    'button:has-text("Submit")',
    'button:has-text("Confirm")',
]
SUCCESS_KEYWORDS = ['unsubscribed', 'successfully', 'confirmed', 'removed', 'cancelled', 'thank you']

_ADDRESS_RE = re.compile(r'[\w.-]+@[\w.-]+\.\w+')


@dataclass
class UnsubscribeAction:
    type: Literal['click', 'fill', 'select', 'wait']
    description: str
    selector: Optional[str] = None
    value: Optional[str] = None


@dataclass
class UnsubscribeResult:
    success: bool
    message: str
    steps: List[str] = field(default_factory=list)
    screenshots: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "steps": self.steps, "screenshots": self.screenshots}


class BrowserPool:
    """Lazily launched shared browser handing out one page per caller."""

    def __init__(self, headless: bool = True):
        self.headless = headless
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    async def _ensure_browser(self):
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS)
                log.info("browser_launched")
            return self._browser

    async def acquire(self):
        browser = await self._ensure_browser()
        context = await browser.new_context(user_agent=USER_AGENT)
        return await context.new_page()

    async def release(self, page) -> None:
        # closes the page's own context; the browser stays up for the next caller
        try:
            await page.context.close()
        except Exception as e:
            log.warning("browser_page_close_failed", extra={"error_type": type(e).__name__})

    async def shutdown(self) -> None:
        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                finally:
                    self._browser = None
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                finally:
                    self._playwright = None
        log.info("browser_shutdown")


browser_pool = BrowserPool()


async def _screenshot(page) -> str:
    raw = await page.screenshot(full_page=False)
    return base64.b64encode(raw).decode('ascii')


async def find_actionable_elements(page, email_content: str) -> List[UnsubscribeAction]:
    """Probe the page with each selector list in order and return the actions to run."""
    actions: List[UnsubscribeAction] = []
    for selector in UNSUBSCRIBE_SELECTORS:
        if await _present(page, selector):
            actions.append(UnsubscribeAction('click', 'Click unsubscribe button/link', selector=selector))

    address = _ADDRESS_RE.search(email_content or '')
    if address:
        for selector in EMAIL_INPUT_SELECTORS:
            if await _present(page, selector):
                actions.append(UnsubscribeAction('fill', f'Fill email address: {address.group(0)}', selector=selector, value=address.group(0)))

    for selector in SUBMIT_SELECTORS:
        if await _present(page, selector):
            actions.append(UnsubscribeAction('click', 'Click confirm/submit button', selector=selector))
    return actions


async def _present(page, selector: str) -> bool:
    try:
        return await page.query_selector(selector) is not None
    except Exception:  # unsupported selector on this page
        return False


async def execute_action(page, action: UnsubscribeAction) -> None:
    if action.type == 'click' and action.selector:
        await page.click(action.selector)
        await asyncio.sleep(CLICK_PAUSE_S)
    elif action.type == 'fill' and action.selector and action.value:
        await page.fill(action.selector, action.value)
        await asyncio.sleep(FILL_PAUSE_S)
    elif action.type == 'select' and action.selector and action.value:
        await page.select_option(action.selector, action.value)
        await asyncio.sleep(SELECT_PAUSE_S)
    elif action.type == 'wait':
        await asyncio.sleep(WAIT_PAUSE_S)


def looks_unsubscribed(page_text: str) -> bool:
    lowered = (page_text or '').lower()
    return any(k in lowered for k in SUCCESS_KEYWORDS)


async def execute_unsubscribe(url: str, email_content: str = '', pool: BrowserPool | None = None) -> Dict[str, Any]:
    """Navigate to an unsubscribe URL, act on the page, and report a heuristic verdict."""
    pool = pool or browser_pool
    steps: List[str] = []
    screenshots: List[str] = []
    page = None
    stage = 'launch'
    try:
        page = await pool.acquire()
        stage = 'navigate'
        steps.append(f'Navigating to unsubscribe URL: {url}')
        try:
            await page.goto(url, wait_until='networkidle', timeout=NAV_TIMEOUT_MS)
        except Exception as e:
            steps.append(f'Navigation failed: {type(e).__name__}: {e}')
            log.warning("unsubscribe_navigation_failed", extra={"url": url, "error_type": type(e).__name__})
            return UnsubscribeResult(False, f'Navigation failed: {e}', steps, screenshots).to_dict()
        screenshots.append(await _screenshot(page))
        steps.append('Loaded unsubscribe page')

        stage = 'analyze'
        actions = await find_actionable_elements(page, email_content)
        steps.append(f'Identified {len(actions)} actions to perform')

        stage = 'act'
        for action in actions:
            try:
                await execute_action(page, action)
                steps.append(f'OK: {action.description}')
            except Exception as e:
                steps.append(f'Failed to {action.description}: {e}')

        stage = 'verify'
        await asyncio.sleep(SETTLE_PAUSE_S)
        screenshots.append(await _screenshot(page))
        success = looks_unsubscribed(await page.inner_text('body'))
        log.info("unsubscribe_finished", extra={"url": url, "step": stage})
        message = 'Unsubscribe completed successfully' if success else 'Unsubscribe may not have completed successfully'
        return UnsubscribeResult(success, message, steps, screenshots).to_dict()
    except Exception as e:
        steps.append(f'Error during automation ({stage}): {e}')
        log.warning("unsubscribe_failed", extra={"url": url, "step": stage, "error_type": type(e).__name__})
        return UnsubscribeResult(False, f'Automation failed: {e}', steps, screenshots).to_dict()
    finally:
        if page is not None:
            await pool.release(page)
