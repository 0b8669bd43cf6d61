from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from casedesk.models import UserRole


@dataclass(frozen=True)
class AgentSession:
    user_id: int
    username: str
    role: UserRole
    # Bearer token for the remote store; None while working fully offline.
    token: str | None = None

    @property
    def is_privileged(self) -> bool:
        return is_privileged(self.role)


def is_privileged(role: UserRole) -> bool:
    return role in {UserRole.MANAGER, UserRole.ADMIN}


def get_current_session(request: Request) -> AgentSession:
    session = getattr(request.app.state, 'agent_session', None)
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Not signed in')
    return session
