import os, tempfile, base64, uuid
from datetime import datetime, timezone

# must be set before the app package is imported: the engine is built at import time
_TMP_DIR = tempfile.mkdtemp(prefix="email-sorter-tests-")
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ['AUTO_SYNC_ENABLED'] = '0'
os.environ['LLM_PROVIDER'] = 'openai'
os.environ.pop('OPENAI_API_KEY', None)
os.environ.setdefault('JWT_SECRET', 'test-secret')

import pytest

from backend.app.db.database import SessionLocal, ensure_schema
from backend.app.models.user_model import User
from backend.app.models.category_model import Category
from backend.app.models.email_model import Email
from backend.app.services import gmail_client, email_sync
from backend.app.security.auth import create_access_token

ensure_schema()


def b64(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode('utf-8')).decode('ascii').rstrip('=')


def build_message(gmail_id, subject="Weekly deals", sender="Shop <deals@shop.example>", plain=None, html=None,
                  to="me@example.com", cc=None, internal_date="1700000000000"):
    headers = [{"name": "From", "value": sender}, {"name": "To", "value": to}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    if cc:
        headers.append({"name": "Cc", "value": cc})
    parts = []
    if plain is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": b64(plain)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": b64(html)}})
    return {
        "id": gmail_id,
        "threadId": f"t-{gmail_id}",
        "labelIds": ["INBOX", "UNREAD"],
        "internalDate": internal_date,
        "payload": {"mimeType": "multipart/alternative", "headers": headers, "parts": parts},
    }


class FakeMailbox:
    """In-memory stand-in for the Gmail client; page tokens are list offsets."""

    def __init__(self, messages, page_size=None):
        self.messages = list(messages)
        self.page_size = page_size
        self.list_calls = []
        self.archived = []
        self.archive_errors = {}

    async def list_messages(self, access_token, query="is:unread", max_results=50, page_token=None):
        self.list_calls.append({"token": access_token, "query": query, "max_results": max_results, "page_token": page_token})
        start = int(page_token or 0)
        end = start + min(max_results, self.page_size or max_results)
        nxt = str(end) if end < len(self.messages) else None
        return {"messages": self.messages[start:end], "next_page_token": nxt}

    async def archive_message(self, access_token, message_id):
        if message_id in self.archive_errors:
            raise self.archive_errors[message_id]
        self.archived.append(message_id)


@pytest.fixture
def db():
    session = SessionLocal()
    session.query(Email).delete()
    session.query(Category).delete()
    session.query(User).delete()
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(access_token="access-token", refresh_token="refresh-token", token_expiry=None):
        key = uuid.uuid4().hex[:12]
        user = User(
            google_id=key,
            email=f"{key}@example.com",
            name="Test User",
            access_token=access_token,
            refresh_token=refresh_token,
            token_expiry=token_expiry,
        )
        db.add(user)
        db.commit(); db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_category(db):
    def _make(user, name="Promotion", description="Sales, discounts and marketing offers"):
        category = Category(user_id=user.id, name=name, description=description)
        db.add(category)
        db.commit(); db.refresh(category)
        return category
    return _make


@pytest.fixture
def make_email(db):
    def _make(user, gmail_id=None, category=None, subject="Hello", html_body=None, body="plain body", clean_text=None):
        email = Email(
            user_id=user.id,
            gmail_id=gmail_id or uuid.uuid4().hex[:16],
            subject=subject,
            sender="sender@example.com",
            recipients=["me@example.com"],
            body=body,
            html_body=html_body,
            clean_text=clean_text,
            summary="summary",
            category_id=category.id if category is not None else None,
            received_at=datetime.now(timezone.utc),
        )
        db.add(email)
        db.commit(); db.refresh(email)
        return email
    return _make


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers


@pytest.fixture
def gmail_message():
    return build_message


@pytest.fixture
def fake_mailbox(monkeypatch):
    def _install(messages, page_size=None):
        box = FakeMailbox(messages, page_size=page_size)
        monkeypatch.setattr(gmail_client, 'list_messages', box.list_messages)
        monkeypatch.setattr(gmail_client, 'archive_message', box.archive_message)
        return box
    monkeypatch.setattr(email_sync, 'BATCH_DELAY_SECONDS', 0)
    return _install
