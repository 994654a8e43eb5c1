import logging
from typing import Iterator

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import Settings
from errors import AuthenticationFailure, PermissionDenied
from models import User, Role
from realtime import Broadcaster
from security import verify_access_token

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a user that still exists."""
    if credentials is None:
        raise AuthenticationFailure("Authorization header required")

    payload = verify_access_token(settings, credentials.credentials)
    if payload is None:
        logger.warning("Token verification failed - invalid or expired token")
        raise AuthenticationFailure("Invalid or expired token")

    user = db.scalar(select(User).where(User.id == payload["sub"]))
    if user is None:
        raise AuthenticationFailure("User not found")
    return user


def require_role(*roles: Role):
    allowed = [r.value for r in roles]

    def checker(user: User = Depends(get_current_user)) -> User:
        if user.role.value not in allowed:
            raise PermissionDenied(required=allowed, current=user.role.value)
        return user

    return checker
