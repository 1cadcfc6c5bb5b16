"""
Authorization guard.

Identity comes from the bearer token; permissions come from team membership
(any member) or ownership (owner only). Every check here runs before a
write is attempted.
"""
import logging

from app.core.config import Settings
from app.core.errors import AuthenticationError, AuthorizationError
from app.core.security import extract_bearer, verify_token
from app.models import Task
from app.services.team_service import TeamService

logger = logging.getLogger(__name__)

MISSING_TOKEN = "Authentication required. Please provide a valid token."
MALFORMED_HEADER = "Invalid authorization header format. Use: Bearer <token>"
INVALID_TOKEN = "Invalid or expired token. Please login again."


class AuthorizationGuard:
    def __init__(self, teams: TeamService, settings: Settings):
        self.teams = teams
        self.settings = settings

    def authenticate(self, authorization: str | None) -> int:
        """Resolve the caller's user id from an ``Authorization`` header value."""
        if not authorization:
            raise AuthenticationError(MISSING_TOKEN)

        token = extract_bearer(authorization)
        if token is None:
            raise AuthenticationError(MALFORMED_HEADER)

        user_id = verify_token(token, self.settings)
        if user_id is None:
            raise AuthenticationError(INVALID_TOKEN)
        return user_id

    async def require_member(
        self,
        user_id: int,
        team_id: int,
        message: str = "You do not have access to this team",
    ) -> None:
        if not await self.teams.is_member(team_id, user_id):
            logger.info(f"Access denied: user {user_id} is not a member of team {team_id}")
            raise AuthorizationError(message)

    async def require_owner(
        self,
        user_id: int,
        team_id: int,
        message: str = "Only the team owner can perform this action",
    ) -> None:
        if not await self.teams.is_owner(team_id, user_id):
            logger.info(f"Access denied: user {user_id} does not own team {team_id}")
            raise AuthorizationError(message)

    async def require_task_access(self, user_id: int, task: Task) -> None:
        """Team tasks need membership; personal tasks need their creator."""
        if task.team_id is not None:
            await self.require_member(
                user_id, task.team_id, "You do not have access to this team's tasks"
            )
            return

        if task.creator_id is not None and task.creator_id != user_id:
            logger.info(f"Access denied: user {user_id} on personal task {task.id}")
            raise AuthorizationError("You do not have access to this task")
