"""
Session credentials and the project ownership guard.
"""

import logging
from datetime import timedelta
from typing import Optional

import jwt

from devpulse.exceptions import AccessDeniedError, AuthenticationError
from devpulse.schemas import Identity, Project, User, utcnow
from devpulse.store import RecordStore

logger = logging.getLogger(__name__)

SESSION_COOKIE = "token"
SESSION_TTL = timedelta(days=7)
ALGORITHM = "HS256"


def create_session_token(user: User, secret: str) -> str:
    """Sign a session token carrying the user's id and login."""
    if not secret:
        raise ValueError("JWT_SECRET environment variable is required.")
    payload = {
        "sub": user.id,
        "username": user.username,
        "exp": utcnow() + SESSION_TTL,
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def decode_session_token(token: Optional[str], secret: str) -> Identity:
    """
    Resolve a session token to the requester's identity.

    Raises:
        AuthenticationError: If no token was sent
        AccessDeniedError: If the token is malformed, forged or expired
    """
    if not token:
        raise AuthenticationError()
    try:
        payload = jwt.decode(token, secret or "", algorithms=[ALGORITHM])
    except jwt.PyJWTError as exc:
        logger.info("Rejected session token: %s", exc)
        raise AccessDeniedError("Invalid or expired token") from exc
    return Identity(id=payload["sub"], username=payload.get("username", ""))


def is_owner(project: Optional[Project], identity: Identity) -> bool:
    """True only when the project exists and belongs to identity."""
    return project is not None and project.owner_id == identity.id


def require_ownership(store: RecordStore, project_id: str, identity: Identity) -> Project:
    """
    Load a project the requester owns.

    A missing project is denied the same way as someone else's project.

    Raises:
        AccessDeniedError: If the project is missing or owned by someone else
    """
    project = store.get_project(project_id)
    if not is_owner(project, identity):
        raise AccessDeniedError()
    return project
