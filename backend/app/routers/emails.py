from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Any, Dict, Optional
from sqlalchemy.orm import Session
import logging
from ..schemas.email import (
    EmailOut,
    EmailSummaryOut,
    EmailList,
    CategoryUpdate,
    BulkActionRequest,
    UnsubscribeRequest,
    SyncResponse,
)
from ..services import email_service, email_sync, gmail_client, user_service, web_automation
from ..services.category_service import get_category
from ..services.background_sync import get_sync_status
from ..services.classifier import oracle_diagnostics
from ..services.unsubscribe import extract_unsubscribe_info
from ..db.database import get_db
from ..models.user_model import User
from ..models.email_model import Email
from ..security.auth import get_current_user

router = APIRouter()
log = logging.getLogger(__name__)


def _owned_email(db: Session, email_id: int, user: User) -> Email:
    email = email_service.get_email(db, email_id)
    if email is None:
        raise HTTPException(status_code=404, detail="Email not found")
    if email.user_id != user.id:
        raise HTTPException(status_code=403, detail="Access denied")
    return email


async def _mirror_to_gmail(db: Session, action, user: User, email: Email):
    # local state is authoritative; Gmail is updated when it can be
    if not user.access_token or not email.gmail_id:
        return
    try:
        await user_service.refresh_if_expired(db, user)
        await action(user.access_token, email.gmail_id)
    except Exception as e:
        log.warning("gmail_mirror_failed", extra={"account_id": user.id, "gmail_id": email.gmail_id, "error_type": type(e).__name__})


@router.post("/sync", response_model=SyncResponse)
async def sync(
    max_emails: int = Query(50, ge=1, le=500),
    query: str = Query('in:inbox'),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    result = await email_sync.sync_emails(db, user, query=query, max_messages=max_emails)
    return result.to_dict()


@router.get("/sync/status")
def sync_status(user: User = Depends(get_current_user)):
    status = get_sync_status()
    status["in_progress"] = email_sync.is_syncing(user.id)
    return status


@router.get("/ai/diag", dependencies=[Depends(get_current_user)])
def ai_diag():
    return oracle_diagnostics()


@router.get("/test-connection")
async def test_connection(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if not user.access_token:
        raise HTTPException(status_code=400, detail="User not connected to Gmail")
    await user_service.refresh_if_expired(db, user)
    profile = await gmail_client.get_profile(user.access_token)
    return {"connected": True, "email": profile.get("emailAddress"), "messages_total": profile.get("messagesTotal")}


@router.get("/", response_model=EmailList)
def list_emails(
    category_id: Optional[int] = Query(None),
    uncategorized: bool = Query(False, description="Only emails without a category"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    records, total = email_service.list_emails(
        db,
        user.id,
        category_id=category_id,
        uncategorized=uncategorized,
        limit=limit,
        offset=offset,
    )
    items = [EmailSummaryOut.model_validate(r) for r in records]
    return {"total": total, "count": len(items), "items": items, "limit": limit, "offset": offset}


@router.post("/bulk")
async def bulk_action(payload: BulkActionRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ids = list(dict.fromkeys(payload.email_ids))
    owned = {e.id: e for e in email_service.get_owned(db, user.id, ids)}
    for email_id in ids:
        if email_id not in owned:
            raise HTTPException(status_code=403, detail=f"Access denied to email {email_id}")

    if payload.action == 'delete':
        n = email_service.bulk_delete(db, user.id, ids)
        return {"message": "Bulk action 'delete' completed successfully", "affected": n}
    if payload.action in ('mark_read', 'mark_unread'):
        n = email_service.bulk_set_read(db, user.id, ids, payload.action == 'mark_read')
        return {"message": f"Bulk action '{payload.action}' completed successfully", "affected": n}

    results: List[Dict[str, Any]] = []
    for email_id in ids:
        email = owned[email_id]
        content = email.html_body or email.body or ''
        info = await extract_unsubscribe_info(content)
        if not info.get("url"):
            results.append({
                "email_id": email_id,
                "subject": email.subject,
                "success": False,
                "message": "No unsubscribe link found in email",
                "unsubscribe_email": info.get("email"),
            })
            continue
        outcome = await web_automation.execute_unsubscribe(info["url"], content)
        log.info("bulk_unsubscribe_item", extra={"account_id": user.id, "url": info["url"]})
        results.append({"email_id": email_id, "subject": email.subject, "url": info["url"], **outcome})
    return {
        "message": "Unsubscribe processing completed",
        "results": results,
        "total": len(results),
        "successful": sum(1 for r in results if r.get("success")),
    }


@router.post("/advanced-unsubscribe")
async def advanced_unsubscribe(payload: UnsubscribeRequest, user: User = Depends(get_current_user)):
    if not payload.url.lower().startswith(('http://', 'https://')):
        raise HTTPException(status_code=400, detail="url must be an http(s) URL")
    return await web_automation.execute_unsubscribe(payload.url, payload.email_content)


@router.post("/clean")
def clean_existing(force: bool = Query(False), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = email_service.backfill_clean_text(db, user_id=user.id, force=force)
    return {"message": f"Cleaned {n} emails", "processed": n}


@router.delete("/clear-all")
def clear_all(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = email_service.delete_all_for_user(db, user.id)
    return {"message": f"Deleted {n} emails", "deleted": n}


@router.get("/{email_id}", response_model=EmailOut)
def get_single_email(email_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    email = _owned_email(db, email_id, user)
    return email_service.ensure_clean_text(db, email)


@router.patch("/{email_id}/read", response_model=EmailOut)
async def mark_read(email_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    email = _owned_email(db, email_id, user)
    await _mirror_to_gmail(db, gmail_client.mark_as_read, user, email)
    return email_service.set_read(db, email, True)


@router.patch("/{email_id}/unread", response_model=EmailOut)
async def mark_unread(email_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    email = _owned_email(db, email_id, user)
    await _mirror_to_gmail(db, gmail_client.mark_as_unread, user, email)
    return email_service.set_read(db, email, False)


@router.patch("/{email_id}/category", response_model=EmailOut)
def reassign_category(email_id: int, payload: CategoryUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    email = _owned_email(db, email_id, user)
    if payload.category_id is not None:
        category = get_category(db, payload.category_id)
        if category is None:
            raise HTTPException(status_code=404, detail="Category not found")
        if category.user_id != user.id:
            raise HTTPException(status_code=403, detail="Access denied")
    return email_service.update_category(db, email, payload.category_id)


@router.delete("/{email_id}")
async def delete_email(email_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    email = _owned_email(db, email_id, user)
    await _mirror_to_gmail(db, gmail_client.delete_message, user, email)
    email_service.delete_email(db, email)
    return {"message": "Email deleted successfully"}
