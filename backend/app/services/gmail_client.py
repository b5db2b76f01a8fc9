"""Gmail API client used by the sync pipeline and the message endpoints.

Every call takes the account's OAuth access token. The google client library is
synchronous, so each request runs in a worker thread; that keeps the event loop
free while the batch of messages in a sync is fetched and mutated concurrently.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import retry, retry_if_exception, stop_after_attempt, stop_after_delay, wait_exponential

from ..core.errors import GmailTimeoutError, ReauthorizationRequired

log = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/gmail.modify"]
GMAIL_TIMEOUT = float(os.getenv('GMAIL_TIMEOUT', '30'))
MAX_PAGE_SIZE = 100
# retries have to finish inside one GMAIL_TIMEOUT window
RETRY_WAIT_MAX = max(1.0, GMAIL_TIMEOUT / 8)


def _status(exc: BaseException) -> Optional[int]:
    if isinstance(exc, HttpError):
        return getattr(exc.resp, "status", None)
    return None


def _is_retryable_http_error(exc: BaseException) -> bool:
    return _status(exc) in (429, 500, 503)


@retry(
    retry=retry_if_exception(_is_retryable_http_error),
    wait=wait_exponential(multiplier=1, min=1, max=RETRY_WAIT_MAX),
    stop=(stop_after_attempt(4) | stop_after_delay(GMAIL_TIMEOUT / 2)),
    reraise=True,
)
def _execute(request) -> Dict[str, Any]:
    return request.execute(num_retries=0) or {}


def _build_service(access_token: str):
    creds = Credentials(token=access_token)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


async def _run(fn, *args):
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=GMAIL_TIMEOUT)
    except asyncio.TimeoutError as e:
        log.warning("gmail_timeout", extra={"error_type": "TimeoutError"})
        raise GmailTimeoutError() from e


def _raise_if_auth(exc: HttpError):
    if _status(exc) == 401:
        raise ReauthorizationRequired() from exc


async def list_messages(
    access_token: str,
    query: str = "is:unread",
    max_results: int = 50,
    page_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Fetch one page of full messages.

    Returns {"messages": [...], "next_page_token": str | None}. Messages that
    fail to load individually are left out of the page.
    """
    service = _build_service(access_token)
    kwargs: Dict[str, Any] = {"userId": "me", "q": query, "maxResults": max(1, min(max_results, MAX_PAGE_SIZE))}
    if page_token:
        kwargs["pageToken"] = page_token
    try:
        resp = await _run(_execute, service.users().messages().list(**kwargs))
    except HttpError as e:
        _raise_if_auth(e)
        raise

    messages: List[Dict[str, Any]] = []
    for ref in resp.get("messages", []):
        if not ref.get("id"):
            continue
        full = await get_message(access_token, ref["id"], service=service)
        if full is not None:
            messages.append(full)
    return {"messages": messages, "next_page_token": resp.get("nextPageToken")}


async def get_message(access_token: str, message_id: str, service=None) -> Optional[Dict[str, Any]]:
    service = service or _build_service(access_token)
    try:
        return await _run(_execute, service.users().messages().get(userId="me", id=message_id, format="full"))
    except Exception as e:
        log.warning("gmail_get_message_failed", exc_info=e, extra={"gmail_id": message_id, "error_type": type(e).__name__})
        return None


async def _modify(access_token: str, message_id: str, add: List[str] | None = None, remove: List[str] | None = None) -> None:
    service = _build_service(access_token)
    body = {"addLabelIds": add or [], "removeLabelIds": remove or []}
    try:
        await _run(_execute, service.users().messages().modify(userId="me", id=message_id, body=body))
    except HttpError as e:
        _raise_if_auth(e)
        raise


async def archive_message(access_token: str, message_id: str) -> None:
    # removing INBOX is what Gmail calls archiving
    await _modify(access_token, message_id, remove=["INBOX"])


async def mark_as_read(access_token: str, message_id: str) -> None:
    await _modify(access_token, message_id, remove=["UNREAD"])


async def mark_as_unread(access_token: str, message_id: str) -> None:
    await _modify(access_token, message_id, add=["UNREAD"])


async def delete_message(access_token: str, message_id: str) -> None:
    service = _build_service(access_token)
    try:
        await _run(_execute, service.users().messages().delete(userId="me", id=message_id))
    except HttpError as e:
        if _status(e) == 404:  # already gone
            return
        _raise_if_auth(e)
        raise


async def get_profile(access_token: str) -> Dict[str, Any]:
    service = _build_service(access_token)
    try:
        return await _run(_execute, service.users().getProfile(userId="me"))
    except HttpError as e:
        _raise_if_auth(e)
        raise


def _refresh(refresh_token: str) -> Credentials:
    creds = Credentials(
        token=None,
        refresh_token=refresh_token,
        token_uri=TOKEN_URI,
        client_id=os.getenv('GOOGLE_CLIENT_ID'),
        client_secret=os.getenv('GOOGLE_CLIENT_SECRET'),
        scopes=SCOPES,
    )
    creds.refresh(GoogleRequest())
    return creds


async def refresh_access_token(refresh_token: str) -> Dict[str, Any]:
    """Exchange a refresh token for a new access token.

    Raises ReauthorizationRequired when Google rejects the refresh token; the
    caller should not retry, the user has to sign in again.
    """
    try:
        creds = await _run(_refresh, refresh_token)
    except RefreshError as e:
        log.warning("gmail_token_refresh_rejected", extra={"error_type": type(e).__name__})
        raise ReauthorizationRequired("Failed to refresh access token") from e
    expiry = creds.expiry
    if expiry is None:
        expiry = datetime.now(timezone.utc) + timedelta(hours=1)
    elif expiry.tzinfo is None:  # google-auth reports naive UTC
        expiry = expiry.replace(tzinfo=timezone.utc)
    return {
        "access_token": creds.token,
        "refresh_token": creds.refresh_token if creds.refresh_token != refresh_token else None,
        "expiry": expiry,
    }
