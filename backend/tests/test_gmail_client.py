import asyncio, time
from datetime import datetime, timezone
from types import SimpleNamespace

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from backend.app.services import gmail_client
from backend.app.core.errors import GmailTimeoutError, ReauthorizationRequired


def _http_error(status):
    return HttpError(resp=httplib2.Response({"status": status}), content=b'{"error": "x"}')


class _Request:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error

    def execute(self, num_retries=0):
        if self.error is not None:
            raise self.error
        return self.result


class FakeMessages:
    def __init__(self, pages, bodies, errors=None):
        self.pages = pages
        self.bodies = bodies
        self.errors = errors or {}
        self.list_kwargs = []
        self.modified = []
        self.deleted = []

    def list(self, **kwargs):
        self.list_kwargs.append(kwargs)
        return _Request(self.pages[kwargs.get("pageToken")])

    def get(self, userId, id, format):
        if id in self.errors:
            return _Request(error=self.errors[id])
        return _Request(self.bodies[id])

    def modify(self, userId, id, body):
        self.modified.append((id, body))
        return _Request({"id": id})

    def delete(self, userId, id):
        self.deleted.append(id)
        return _Request(error=self.errors.get(id))


class FakeService:
    def __init__(self, messages, profile=None):
        self._messages = messages
        self._profile = profile or {"emailAddress": "me@example.com"}

    def users(self):
        return SimpleNamespace(messages=lambda: self._messages, getProfile=lambda userId: _Request(self._profile))


@pytest.fixture
def service(monkeypatch):
    messages = FakeMessages(
        pages={
            None: {"messages": [{"id": "a"}, {"id": "b"}, {"id": "bad"}], "nextPageToken": "p2"},
            "p2": {"messages": [{"id": "c"}]},
        },
        bodies={k: {"id": k, "payload": {}} for k in "abc"},
        errors={"bad": _http_error(500)},
    )
    svc = FakeService(messages)
    monkeypatch.setattr(gmail_client, '_build_service', lambda token: svc)
    monkeypatch.setattr(gmail_client._execute.retry, 'wait', lambda retry_state: 0)
    return messages


def test_list_fetches_full_messages_and_skips_failures(service):
    page = asyncio.run(gmail_client.list_messages("tok", "in:inbox", 250))
    assert [m["id"] for m in page["messages"]] == ["a", "b"]
    assert page["next_page_token"] == "p2"
    assert service.list_kwargs[0] == {"userId": "me", "q": "in:inbox", "maxResults": 100}


def test_list_follows_page_token(service):
    page = asyncio.run(gmail_client.list_messages("tok", "is:unread", 10, page_token="p2"))
    assert [m["id"] for m in page["messages"]] == ["c"]
    assert page["next_page_token"] is None
    assert service.list_kwargs[0]["pageToken"] == "p2"


def test_get_message_returns_none_on_failure(service):
    assert asyncio.run(gmail_client.get_message("tok", "bad")) is None
    assert asyncio.run(gmail_client.get_message("tok", "a"))["id"] == "a"


def test_label_mutations(service):
    asyncio.run(gmail_client.archive_message("tok", "a"))
    asyncio.run(gmail_client.mark_as_read("tok", "a"))
    asyncio.run(gmail_client.mark_as_unread("tok", "a"))
    assert service.modified == [
        ("a", {"addLabelIds": [], "removeLabelIds": ["INBOX"]}),
        ("a", {"addLabelIds": [], "removeLabelIds": ["UNREAD"]}),
        ("a", {"addLabelIds": ["UNREAD"], "removeLabelIds": []}),
    ]


def test_delete_missing_message_is_noop(service):
    service.errors["gone"] = _http_error(404)
    asyncio.run(gmail_client.delete_message("tok", "gone"))
    assert service.deleted == ["gone"]


def test_unauthorized_maps_to_reauthorization(service):
    service.list = lambda **kw: _Request(error=_http_error(401))
    with pytest.raises(ReauthorizationRequired):
        asyncio.run(gmail_client.list_messages("tok"))


def test_profile(service):
    assert asyncio.run(gmail_client.get_profile("tok"))["emailAddress"] == "me@example.com"


def test_refresh_success_normalizes_expiry(monkeypatch):
    naive = datetime(2030, 1, 1, 12, 0, 0)
    monkeypatch.setattr(gmail_client, '_refresh', lambda rt: SimpleNamespace(token="new", refresh_token=rt, expiry=naive))
    tokens = asyncio.run(gmail_client.refresh_access_token("r1"))
    assert tokens["access_token"] == "new"
    assert tokens["refresh_token"] is None
    assert tokens["expiry"] == naive.replace(tzinfo=timezone.utc)


def test_refresh_rejected(monkeypatch):
    def reject(rt):
        raise RefreshError("invalid_grant")
    monkeypatch.setattr(gmail_client, '_refresh', reject)
    with pytest.raises(ReauthorizationRequired) as exc:
        asyncio.run(gmail_client.refresh_access_token("r1"))
    assert exc.value.code == "reauthorization_required"


class _SlowRequest:
    def execute(self, num_retries=0):
        time.sleep(0.3)
        return {}


def test_slow_listing_maps_to_gmail_timeout(service, monkeypatch):
    monkeypatch.setattr(gmail_client, 'GMAIL_TIMEOUT', 0.05)
    service.list = lambda **kw: _SlowRequest()
    with pytest.raises(GmailTimeoutError) as exc:
        asyncio.run(gmail_client.list_messages("tok"))
    assert exc.value.status_code == 504


def test_retry_backoff_fits_inside_timeout():
    # three waits between four attempts
    assert 3 * gmail_client.RETRY_WAIT_MAX < gmail_client.GMAIL_TIMEOUT
