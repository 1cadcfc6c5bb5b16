"""FastAPI dependencies: per-app state, per-request services, and the guard."""

from typing import Annotated

from fastapi import Depends, Header
from fastapi.requests import HTTPConnection
from sqlmodel.ext.asyncio.session import AsyncSession

from app.cache.layer import MembershipCache
from app.core.config import Settings, get_settings
from app.core.guard import AuthorizationGuard
from app.database import get_db
from app.realtime.broadcaster import Broadcaster
from app.services.task_service import TaskService
from app.services.team_service import TeamService
from app.services.user_service import UserService


def get_cache(conn: HTTPConnection) -> MembershipCache:
    return conn.app.state.membership_cache


def get_broadcaster(conn: HTTPConnection) -> Broadcaster:
    return conn.app.state.broadcaster


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def get_team_service(
    db: AsyncSession = Depends(get_db),
    cache: MembershipCache = Depends(get_cache),
) -> TeamService:
    return TeamService(db, cache)


def get_task_service(db: AsyncSession = Depends(get_db)) -> TaskService:
    return TaskService(db)


def get_guard(
    teams: TeamService = Depends(get_team_service),
    settings: Settings = Depends(get_settings),
) -> AuthorizationGuard:
    return AuthorizationGuard(teams, settings)


# Read without raising: request validation (400) must win over a missing
# token (401), so handlers call guard.authenticate() themselves.
def get_authorization_header(authorization: str | None = Header(default=None)) -> str | None:
    return authorization


Users = Annotated[UserService, Depends(get_user_service)]
Teams = Annotated[TeamService, Depends(get_team_service)]
Tasks = Annotated[TaskService, Depends(get_task_service)]
Guard = Annotated[AuthorizationGuard, Depends(get_guard)]
BroadcasterDep = Annotated[Broadcaster, Depends(get_broadcaster)]
AuthHeader = Annotated[str | None, Depends(get_authorization_header)]
