import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from config import Settings
from deps import get_db, get_settings, get_current_user
from errors import AuthenticationFailure, Conflict
from models import User, Session as UserSession
from schemas import RegisterRequest, LoginRequest, RefreshRequest, user_out
from security import (
    get_password_hash, verify_password, create_access_token,
    generate_refresh_token, refresh_token_expiry,
)
from utils import utcnow
from validation import validate, unwrap_or_fail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _issue_tokens(db: Session, settings: Settings, user: User) -> dict:
    access_token = create_access_token(settings, user.id, user.email, user.role.value)
    refresh_token = generate_refresh_token()
    db.add(UserSession(user_id=user.id, refresh_token=refresh_token,
                       expires_at=refresh_token_expiry(settings)))
    db.commit()
    return {"accessToken": access_token, "refreshToken": refresh_token}


@router.post("/register", status_code=201)
def register(body: dict = Body(...), db: Session = Depends(get_db),
             settings: Settings = Depends(get_settings)):
    data = unwrap_or_fail(validate(RegisterRequest, body))
    if db.scalar(select(User).where(User.email == data.email)):
        raise Conflict("User already exists")
    user = User(email=data.email, name=data.name,
                password=get_password_hash(data.password), role=data.role)
    db.add(user); db.commit(); db.refresh(user)
    logger.info("Registered user %s as %s", user.email, user.role.value)
    return {"user": user_out(user), **_issue_tokens(db, settings, user)}


@router.post("/login")
def login(body: dict = Body(...), db: Session = Depends(get_db),
          settings: Settings = Depends(get_settings)):
    data = unwrap_or_fail(validate(LoginRequest, body))
    user = db.scalar(select(User).where(User.email == data.email))
    if not user or not verify_password(data.password, user.password):
        raise AuthenticationFailure("Invalid credentials")
    return {"user": user_out(user), **_issue_tokens(db, settings, user)}


@router.post("/refresh")
def refresh(body: dict = Body(...), db: Session = Depends(get_db),
            settings: Settings = Depends(get_settings)):
    data = unwrap_or_fail(validate(RefreshRequest, body))
    session = db.scalar(select(UserSession).where(UserSession.refresh_token == data.refresh_token))
    if not session:
        raise AuthenticationFailure("Invalid refresh token")
    if session.expires_at < utcnow():
        db.delete(session); db.commit()
        raise AuthenticationFailure("Refresh token expired")

    user = session.user
    access_token = create_access_token(settings, user.id, user.email, user.role.value)
    # rotate
    session.refresh_token = generate_refresh_token()
    session.expires_at = refresh_token_expiry(settings)
    db.commit()
    return {"accessToken": access_token, "refreshToken": session.refresh_token}


@router.post("/logout")
def logout(body: dict = Body(...), db: Session = Depends(get_db)):
    data = unwrap_or_fail(validate(RefreshRequest, body))
    db.execute(delete(UserSession).where(UserSession.refresh_token == data.refresh_token))
    db.commit()
    return {"message": "Logged out successfully"}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"user": {"id": user.id, "email": user.email, "name": user.name, "role": user.role.value}}
