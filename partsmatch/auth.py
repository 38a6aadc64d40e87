"""
Account directory: sign-up, sign-in, sign-out and session lookup.

Callers authenticate with ``Authorization: Bearer <token>``. The token is
opaque; only its SHA-256 is stored. Route handlers receive the caller's
user id explicitly through the get_current_user dependency instead of
reading an ambient "current user".
"""

import logging
from typing import Callable, List, Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from partsmatch.storage import (
    create_session,
    create_user,
    delete_session,
    get_db,
    get_session_user,
    get_user_by_email,
)
from partsmatch.utils import hash_password, hash_session_token, new_session_token, verify_password

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

SessionListener = Callable[[str, Optional[dict]], None]

_session_listeners: List[SessionListener] = []


class AuthError(Exception):
    """Sign-up or sign-in was refused; message is safe to show."""


def on_session_change(callback: SessionListener) -> Callable[[], None]:
    """
    Register callback(event, session) for SIGNED_IN / SIGNED_OUT.

    Returns:
        A function that unregisters the callback
    """
    _session_listeners.append(callback)

    def unsubscribe() -> None:
        if callback in _session_listeners:
            _session_listeners.remove(callback)

    return unsubscribe


def _emit(event: str, session: Optional[dict]) -> None:
    for listener in list(_session_listeners):
        try:
            listener(event, session)
        except Exception as e:
            logger.error(f"Session listener failed on {event}: {e}")


def _issue_session(db: Session, user) -> dict:
    token = new_session_token()
    create_session(db, user.id, hash_session_token(token))
    session = {"user_id": user.id, "email": user.email}
    _emit(SIGNED_IN, session)
    return {"access_token": token, **session}


def sign_up(
    db: Session,
    email: str,
    password: str,
    full_name: Optional[str] = None,
    trade_type: Optional[str] = None,
) -> dict:
    email = email.strip().lower()
    user = create_user(db, email, hash_password(password), full_name, trade_type)
    if user is None:
        raise AuthError("An account with this email already exists")
    logger.info(f"User signed up: {user.id}")
    return _issue_session(db, user)


def sign_in(db: Session, email: str, password: str) -> dict:
    user = get_user_by_email(db, email.strip().lower())
    if user is None or not verify_password(password, user.password_hash):
        raise AuthError("Invalid email or password")
    logger.info(f"User signed in: {user.id}")
    return _issue_session(db, user)


def sign_out(db: Session, token: str) -> bool:
    session = get_current_session(db, token)
    removed = delete_session(db, hash_session_token(token))
    if removed:
        _emit(SIGNED_OUT, session)
    return removed


def get_current_session(db: Session, token: Optional[str]) -> Optional[dict]:
    """Return {user_id, email} for a valid token, else None."""
    if not token:
        return None
    user = get_session_user(db, hash_session_token(token))
    if user is None:
        return None
    return {"user_id": user.id, "email": user.email}


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> str:
    """
    FastAPI dependency resolving the caller's user id.

    Raises:
        HTTPException(401): no valid session, the client should sign in
    """
    session = get_current_session(db, bearer_token(authorization))
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    request.state.user_id = session["user_id"]
    return session["user_id"]
