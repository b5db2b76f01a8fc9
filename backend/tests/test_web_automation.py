import asyncio

import pytest

from backend.app.services import web_automation
from backend.app.services.web_automation import UnsubscribeAction


class FakePage:
    def __init__(self, present=(), text="", goto_error=None, click_error=None, bad_selectors=()):
        self.present = set(present)
        self.text = text
        self.goto_error = goto_error
        self.click_error = click_error
        self.bad_selectors = set(bad_selectors)
        self.visited = []
        self.clicked = []
        self.filled = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append((url, wait_until, timeout))
        if self.goto_error is not None:
            raise self.goto_error

    async def query_selector(self, selector):
        if selector in self.bad_selectors:
            raise ValueError(f"unsupported selector {selector}")
        return object() if selector in self.present else None

    async def click(self, selector):
        if self.click_error is not None:
            raise self.click_error
        self.clicked.append(selector)

    async def fill(self, selector, value):
        self.filled.append((selector, value))

    async def select_option(self, selector, value):
        self.filled.append((selector, value))

    async def screenshot(self, full_page=False):
        return b"\x89PNG fake"

    async def inner_text(self, selector):
        return self.text


class FakePool:
    def __init__(self, page=None, acquire_error=None):
        self.page = page
        self.acquire_error = acquire_error
        self.released = []

    async def acquire(self):
        if self.acquire_error is not None:
            raise self.acquire_error
        return self.page

    async def release(self, page):
        self.released.append(page)


@pytest.fixture(autouse=True)
def no_pauses(monkeypatch):
    for name in ('CLICK_PAUSE_S', 'FILL_PAUSE_S', 'SELECT_PAUSE_S', 'WAIT_PAUSE_S', 'SETTLE_PAUSE_S'):
        monkeypatch.setattr(web_automation, name, 0)


def test_navigation_timeout_is_reported_not_raised():
    page = FakePage(goto_error=TimeoutError("Timeout 30000ms exceeded"))
    pool = FakePool(page)
    result = asyncio.run(web_automation.execute_unsubscribe("https://slow.example/u", "", pool=pool))
    assert result["success"] is False
    assert result["steps"]
    assert result["steps"][-1].startswith("Navigation failed")
    assert pool.released == [page]
    assert page.visited == [("https://slow.example/u", "networkidle", web_automation.NAV_TIMEOUT_MS)]


def test_full_flow_clicks_fills_and_verifies():
    page = FakePage(
        present={'a[href*="unsubscribe"]', 'input[type="email"]', 'button[type="submit"]'},
        text="You have been unsubscribed. Thank you!",
    )
    pool = FakePool(page)
    result = asyncio.run(web_automation.execute_unsubscribe("https://news.example/u", "Sent to jane.doe@example.com", pool=pool))
    assert result["success"] is True
    assert result["message"] == "Unsubscribe completed successfully"
    assert len(result["screenshots"]) == 2
    assert page.clicked == ['a[href*="unsubscribe"]', 'button[type="submit"]']
    assert page.filled == [('input[type="email"]', "jane.doe@example.com")]
    assert pool.released == [page]


def test_failed_action_does_not_stop_the_rest():
    page = FakePage(present={'.unsubscribe'}, text="still subscribed", click_error=RuntimeError("element detached"))
    result = asyncio.run(web_automation.execute_unsubscribe("https://x.example", "", pool=FakePool(page)))
    assert result["success"] is False
    assert any(s.startswith("Failed to Click unsubscribe") for s in result["steps"])
    assert result["message"] == "Unsubscribe may not have completed successfully"


def test_launch_failure_is_absorbed():
    pool = FakePool(acquire_error=RuntimeError("no chromium"))
    result = asyncio.run(web_automation.execute_unsubscribe("https://x.example", "", pool=pool))
    assert result["success"] is False
    assert "no chromium" in result["steps"][-1]
    assert pool.released == []


def test_probe_skips_unsupported_selectors_and_needs_an_address():
    page = FakePage(present={'input[name*="email"]', 'button:has-text("Confirm")'}, bad_selectors={'button:has-text("Submit")'})
    actions = asyncio.run(web_automation.find_actionable_elements(page, "no address in here"))
    assert actions == [UnsubscribeAction('click', 'Click confirm/submit button', selector='button:has-text("Confirm")')]


def test_wait_and_select_actions():
    page = FakePage()
    asyncio.run(web_automation.execute_action(page, UnsubscribeAction('select', 'Pick reason', selector='select#why', value='too_many')))
    asyncio.run(web_automation.execute_action(page, UnsubscribeAction('wait', 'Let the page settle')))
    assert page.filled == [('select#why', 'too_many')]
