from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from casedesk.auth import AgentSession
from casedesk.errors import ConstraintViolation, NotFound, Unauthenticated
from casedesk.models import User, UserRole
from casedesk.security.passwords import check_password, hash_password
from casedesk.services.time_utils import utcnow


def create_user(
    db: Session,
    *,
    username: str,
    email: str,
    password: str,
    role: UserRole = UserRole.AGENT,
    team: str | None = None,
    user_id: int | None = None,
) -> User:
    """Provision a local user.

    Local user ids mirror the server's, so callers bootstrapping from the
    server pass the server id as ``user_id``.
    """
    username = username.strip()
    email = email.strip().lower()
    if not username or not email:
        raise ValueError('Username and email are required')

    clash = db.execute(select(User.id).where(or_(User.username == username, User.email == email))).first()
    if clash:
        raise ConstraintViolation('Username or email already exists')
    if user_id is not None and db.get(User, user_id) is not None:
        raise ConstraintViolation(f'User id {user_id} already exists')

    user = User(
        id=user_id,
        username=username,
        email=email,
        password_hash=hash_password(password),
        role=role,
        team=team,
        server_id=user_id,
        synced=user_id is not None,
    )
    db.add(user)
    db.flush()
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound(f'User {user_id} not found')
    return user


def open_session(db: Session, *, username: str, password: str, token: str | None) -> AgentSession:
    user = db.execute(select(User).where(User.username == username.strip())).scalar_one_or_none()
    if not user:
        raise Unauthenticated('Invalid username or password')

    valid, updated_hash = check_password(password, user.password_hash)
    if not valid:
        raise Unauthenticated('Invalid username or password')
    if updated_hash:
        user.password_hash = updated_hash
        user.updated_at = utcnow()

    return AgentSession(user_id=user.id, username=user.username, role=user.role, token=token or None)
