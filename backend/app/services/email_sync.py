"""Ingestion pipeline: page through the mailbox, classify new messages, store and archive them.

Batches run one after another; the messages inside a batch are handled
concurrently. A failure on one message is recorded against its Gmail id and the
rest of the sync carries on. Only the preconditions (categories configured,
mailbox connected, no other sync running for the account) and a Gmail auth
rejection abort the call. An expired access token is refreshed first.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from . import classifier, gmail_client
from . import email_service, category_service, user_service
from .content_extractor import extract_email_content, build_classifier_input
from ..core.errors import MailboxNotConnectedError, NoCategoriesError, ReauthorizationRequired, SyncInProgressError
from ..models.user_model import User

log = logging.getLogger(__name__)

BATCH_SIZE = int(os.getenv('SYNC_BATCH_SIZE', '5'))
BATCH_DELAY_SECONDS = float(os.getenv('SYNC_BATCH_DELAY_SECONDS', '1'))
PAGE_SIZE_CAP = gmail_client.MAX_PAGE_SIZE

_active_syncs: set[int] = set()


@dataclass
class SyncResult:
    processed: int = 0
    errors: int = 0
    skipped: int = 0
    total_found: int = 0
    max_processed: int = 0
    error_details: List[Dict[str, str]] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.total_found == 0:
            return 'No new emails found to process.'
        if self.processed == 0:
            return 'No new emails were processed.'
        suffix = f' ({self.errors} errors)' if self.errors else ''
        return f'Successfully processed {self.processed} emails!{suffix}'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "skipped": self.skipped,
            "total_found": self.total_found,
            "max_processed": self.max_processed,
            "message": self.message,
            "error_details": list(self.error_details),
        }


def is_syncing(user_id: int) -> bool:
    return user_id in _active_syncs


async def fetch_messages(access_token: str, query: str, max_messages: int) -> List[dict]:
    """Collect up to max_messages full messages, following page tokens."""
    messages: List[dict] = []
    page_token = None
    while len(messages) < max_messages:
        page = await gmail_client.list_messages(
            access_token,
            query,
            min(PAGE_SIZE_CAP, max_messages - len(messages)),
            page_token,
        )
        messages.extend(page.get("messages") or [])
        page_token = page.get("next_page_token")
        if not page_token:
            break
    return messages[:max_messages]


async def _process_message(db: Session, user_id: int, access_token: str, message: dict, categories) -> str:
    """Handle one message; returns 'processed' or 'skipped'. Raises on failure."""
    gmail_id = message.get("id")
    if not gmail_id:
        return 'skipped'
    if email_service.find_by_gmail_id(db, user_id, gmail_id) is not None:
        return 'skipped'
    content = extract_email_content(message)
    if not content.subject:
        return 'skipped'

    result = await classifier.categorize_email(build_classifier_input(content), categories)
    email = email_service.create_email(
        db,
        user_id,
        message,
        content,
        category_id=result.category_id,
        confidence=result.confidence,
        summary=result.summary,
    )
    if email is None:  # stored by an overlapping run in the meantime
        return 'skipped'
    await gmail_client.archive_message(access_token, gmail_id)
    email_service.mark_archived(db, email)
    return 'processed'


async def sync_emails(
    db: Session,
    user: User,
    query: str = 'in:inbox',
    max_messages: int = 50,
    batch_size: int | None = None,
    batch_delay: float | None = None,
) -> SyncResult:
    categories = category_service.list_categories(db, user.id)
    if not categories:
        raise NoCategoriesError()
    if not user.access_token:
        raise MailboxNotConnectedError()
    if user.id in _active_syncs:
        raise SyncInProgressError()

    user_id = user.id
    batch_size = max(1, batch_size or BATCH_SIZE)
    batch_delay = BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
    result = SyncResult(max_processed=max_messages)
    started = time.time()
    _active_syncs.add(user_id)
    try:
        await user_service.refresh_if_expired(db, user)
        access_token = user.access_token
        messages = await fetch_messages(access_token, query, max_messages)
        result.total_found = len(messages)
        log.info("sync_fetched", extra={"account_id": user_id, "query": query, "total_found": len(messages)})

        batches = [messages[i:i + batch_size] for i in range(0, len(messages), batch_size)]
        for n, batch in enumerate(batches, start=1):
            outcomes = await asyncio.gather(
                *[_process_message(db, user_id, access_token, m, categories) for m in batch],
                return_exceptions=True,
            )
            for message, outcome in zip(batch, outcomes):
                if isinstance(outcome, ReauthorizationRequired):
                    raise outcome
                if isinstance(outcome, BaseException):
                    db.rollback()
                    result.errors += 1
                    result.error_details.append({"id": str(message.get("id")), "error": str(outcome) or type(outcome).__name__})
                    log.warning("sync_message_failed", extra={"account_id": user_id, "gmail_id": message.get("id"), "error_type": type(outcome).__name__})
                elif outcome == 'processed':
                    result.processed += 1
                else:
                    result.skipped += 1
            log.debug("sync_batch_done", extra={"account_id": user_id, "batch": n, "batches": len(batches)})
            if n < len(batches) and batch_delay > 0:
                await asyncio.sleep(batch_delay)
    finally:
        _active_syncs.discard(user_id)

    log.info("sync_done", extra={
        "account_id": user_id,
        "processed": result.processed,
        "errors": result.errors,
        "skipped": result.skipped,
        "duration_ms": round((time.time() - started) * 1000, 2),
    })
    return result
