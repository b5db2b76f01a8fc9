from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import List, Optional, Tuple
from ..models.email_model import Email
from .content_extractor import ExtractedContent
from .html_cleaner import clean_html_content
from datetime import datetime, timezone


def _received_at(internal_date) -> datetime:
    # provider timestamp is epoch millis as a string
    try:
        return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


def find_by_gmail_id(db: Session, user_id: int, gmail_id: str) -> Optional[Email]:
    return db.query(Email).filter(Email.user_id == user_id, Email.gmail_id == gmail_id).first()


def create_email(
    db: Session,
    user_id: int,
    message: dict,
    content: ExtractedContent,
    category_id: Optional[int],
    confidence: float,
    summary: str,
) -> Optional[Email]:
    """Insert a classified message. Returns None if the row already exists."""
    email = Email(
        user_id=user_id,
        gmail_id=message['id'],
        thread_id=message.get('threadId'),
        subject=content.subject,
        sender=content.sender,
        recipients=content.recipients,
        body=content.body,
        html_body=content.html_body,
        clean_text=content.clean_text,
        summary=summary,
        category_id=category_id,
        category_confidence=confidence,
        is_read=False,
        received_at=_received_at(message.get('internalDate')),
    )
    db.add(email)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    except Exception:
        db.rollback()
        raise
    db.refresh(email)
    return email


def mark_archived(db: Session, email: Email) -> Email:
    email.is_archived = True
    db.commit(); db.refresh(email)
    return email


def list_emails(
    db: Session,
    user_id: int,
    category_id: Optional[int] = None,
    uncategorized: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> Tuple[List[Email], int]:
    """List an account's emails, newest first.

    category_id and uncategorized are mutually exclusive; uncategorized wins.
    """
    q = db.query(Email).filter(Email.user_id == user_id)
    if uncategorized:
        q = q.filter(Email.category_id.is_(None))
    elif category_id is not None:
        q = q.filter(Email.category_id == category_id)
    total = q.count()
    items = q.order_by(Email.received_at.desc(), Email.id.desc()).offset(offset).limit(limit).all()
    return items, total


def get_email(db: Session, email_id: int) -> Optional[Email]:
    return db.query(Email).filter(Email.id == email_id).first()


def ensure_clean_text(db: Session, email: Email) -> Email:
    if not email.clean_text and email.html_body:
        email.clean_text = clean_html_content(email.html_body)
        db.commit(); db.refresh(email)
    return email


def set_read(db: Session, email: Email, is_read: bool) -> Email:
    email.is_read = is_read
    db.commit(); db.refresh(email)
    return email


def update_category(db: Session, email: Email, category_id: Optional[int]) -> Email:
    email.category_id = category_id
    db.commit(); db.refresh(email)
    return email


def delete_email(db: Session, email: Email) -> None:
    db.delete(email)
    db.commit()


def get_owned(db: Session, user_id: int, email_ids: List[int]) -> List[Email]:
    if not email_ids:
        return []
    return db.query(Email).filter(Email.user_id == user_id, Email.id.in_(email_ids)).all()


def bulk_delete(db: Session, user_id: int, email_ids: List[int]) -> int:
    n = (
        db.query(Email)
        .filter(Email.user_id == user_id, Email.id.in_(email_ids))
        .delete(synchronize_session=False)
    )
    db.commit()
    return n


def bulk_set_read(db: Session, user_id: int, email_ids: List[int], is_read: bool) -> int:
    n = (
        db.query(Email)
        .filter(Email.user_id == user_id, Email.id.in_(email_ids))
        .update({Email.is_read: is_read}, synchronize_session=False)
    )
    db.commit()
    return n


def delete_all_for_user(db: Session, user_id: int) -> int:
    n = db.query(Email).filter(Email.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    return n


def backfill_clean_text(db: Session, user_id: Optional[int] = None, force: bool = False) -> int:
    """Recompute clean_text from html_body; returns the number of rows changed."""
    q = db.query(Email).filter(Email.html_body.isnot(None), Email.html_body != '')
    if user_id is not None:
        q = q.filter(Email.user_id == user_id)
    if not force:
        q = q.filter((Email.clean_text.is_(None)) | (Email.clean_text == ''))
    updated = 0
    for email in q.all():
        cleaned = clean_html_content(email.html_body)
        if cleaned != email.clean_text:
            email.clean_text = cleaned
            updated += 1
    db.commit()
    return updated
