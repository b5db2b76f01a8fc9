import asyncio
import os
import logging
from datetime import datetime, timezone
from sqlalchemy.orm import Session
from . import email_sync
from .user_service import list_users_with_tokens
from ..db.database import SessionLocal
from ..core.errors import ReauthorizationRequired, SyncInProgressError

log = logging.getLogger(__name__)

_running = False
_task: asyncio.Task | None = None
last_sync_summary = {"ts": None, "accounts": 0, "processed": 0, "errors": 0, "skipped_accounts": 0}

SYNC_INTERVAL = int(os.getenv('AUTO_SYNC_INTERVAL_MINUTES', '15')) * 60  # seconds
SYNC_MAX_MESSAGES = int(os.getenv('AUTO_SYNC_MAX_MESSAGES', '20'))
SYNC_QUERY = os.getenv('AUTO_SYNC_QUERY', 'is:unread')


async def run_sync_cycle() -> dict:
    """One pass over every connected account. Never raises for a single account."""
    db: Session = SessionLocal()
    summary = {"accounts": 0, "processed": 0, "errors": 0, "skipped_accounts": 0}
    try:
        users = list_users_with_tokens(db)
        for user in users:
            user_id = user.id
            try:
                result = await email_sync.sync_emails(db, user, query=SYNC_QUERY, max_messages=SYNC_MAX_MESSAGES)
                summary["accounts"] += 1
                summary["processed"] += result.processed
                summary["errors"] += result.errors
            except SyncInProgressError:
                summary["skipped_accounts"] += 1
                log.info("auto_sync_account_busy", extra={"account_id": user_id})
            except ReauthorizationRequired:
                db.rollback()
                summary["skipped_accounts"] += 1
                log.warning("auto_sync_reauthorization_required", extra={"account_id": user_id})
            except Exception:
                db.rollback()
                summary["skipped_accounts"] += 1
                log.exception("auto_sync_account_error", extra={"account_id": user_id})
    finally:
        db.close()
    last_sync_summary.update(summary, ts=datetime.now(timezone.utc).isoformat())
    log.info("auto_sync_cycle", extra={"processed": summary["processed"], "errors": summary["errors"]})
    return summary


async def _loop():
    while _running:
        try:
            await run_sync_cycle()
        except Exception:
            log.exception("auto_sync_cycle_error")
        await asyncio.sleep(SYNC_INTERVAL)


def start_auto_sync():
    global _running, _task
    if _running:
        return
    _running = True
    _task = asyncio.get_running_loop().create_task(_loop())
    log.info("auto_sync_started", extra={"query": SYNC_QUERY})


async def stop_auto_sync():
    global _running, _task
    _running = False
    task, _task = _task, None
    if task is not None and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    log.info("auto_sync_stopped")


def get_sync_status():
    return {
        "running": _running,
        "interval_seconds": SYNC_INTERVAL,
        "max_messages": SYNC_MAX_MESSAGES,
        "query": SYNC_QUERY,
        "last_cycle": dict(last_sync_summary),
    }
