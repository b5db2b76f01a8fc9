import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ..db.database import get_db
from ..models.user_model import User
from ..services.user_service import get_user

bearer_scheme = HTTPBearer(auto_error=False)

JWT_SECRET = os.getenv('JWT_SECRET', 'dev-secret-change-me')
JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
JWT_TTL_HOURS = int(os.getenv('JWT_TTL_HOURS', '168'))


def create_access_token(user_id: int, ttl: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": str(user_id), "iat": now, "exp": now + (ttl or timedelta(hours=JWT_TTL_HOURS))}
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a stored account or reject with 401."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="User not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        user_id = int(payload.get("sub"))
    except (jwt.PyJWTError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = get_user(db, user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return user
