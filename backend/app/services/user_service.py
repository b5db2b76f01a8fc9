import logging
from sqlalchemy.orm import Session
from typing import List, Optional
from . import gmail_client
from ..models.user_model import User
from datetime import datetime, timezone

log = logging.getLogger(__name__)


def get_user(db: Session, user_id: int) -> Optional[User]:
    return db.query(User).filter(User.id == user_id).first()


def list_users_with_tokens(db: Session) -> List[User]:
    return (
        db.query(User)
        .filter(User.access_token.isnot(None), User.refresh_token.isnot(None))
        .order_by(User.id.asc())
        .all()
    )


def token_expired(user: User, now: Optional[datetime] = None) -> bool:
    if user.token_expiry is None:
        return False
    now = now or datetime.now(timezone.utc)
    expiry = user.token_expiry
    if expiry.tzinfo is None:  # sqlite drops tzinfo; stored values are UTC
        expiry = expiry.replace(tzinfo=timezone.utc)
    return expiry <= now


def update_tokens(db: Session, user: User, access_token: str, expiry: Optional[datetime], refresh_token: Optional[str] = None) -> User:
    user.access_token = access_token
    user.token_expiry = expiry
    if refresh_token:
        user.refresh_token = refresh_token
    db.commit(); db.refresh(user)
    return user


async def refresh_if_expired(db: Session, user: User) -> User:
    """Swap an expired access token for a new one before talking to Gmail.

    Raises ReauthorizationRequired when Google rejects the refresh token. An
    account without a refresh token keeps its stored access token.
    """
    if not token_expired(user) or not user.refresh_token:
        return user
    tokens = await gmail_client.refresh_access_token(user.refresh_token)
    log.info("gmail_token_refreshed", extra={"account_id": user.id})
    return update_tokens(db, user, tokens["access_token"], tokens["expiry"], tokens.get("refresh_token"))
