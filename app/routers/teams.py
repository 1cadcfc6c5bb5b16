import logging

from fastapi import APIRouter, Depends, status

from app.core.deps import AuthHeader, BroadcasterDep, Guard, Teams, Users
from app.core.errors import NotFoundError, ValidationError
from app.core.responses import ApiResponse, PageParams, PaginatedResponse, ok, paginated
from app.models import MemberAdd, TeamCreate, TeamDetail, TeamMemberRead, TeamRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/teams", tags=["teams"])


@router.post("", response_model=ApiResponse[TeamRead], status_code=status.HTTP_201_CREATED)
async def create_team(body: TeamCreate, authorization: AuthHeader, guard: Guard, teams: Teams):
    """Create a team owned (and joined) by the caller"""
    user_id = guard.authenticate(authorization)

    team = await teams.create(body.name, user_id)
    return ok(TeamRead.model_validate(team), "Team created successfully")


@router.get("", response_model=PaginatedResponse[TeamRead])
async def get_teams(
    authorization: AuthHeader,
    guard: Guard,
    teams: Teams,
    page: PageParams = Depends(),
):
    """Teams the caller belongs to"""
    user_id = guard.authenticate(authorization)

    rows, total = await teams.find_for_user(user_id, page.limit, page.offset)
    items = [TeamRead.model_validate(team) for team in rows]
    return paginated(items, page, total, "Teams retrieved successfully")


@router.get("/{team_id}", response_model=ApiResponse[TeamDetail])
async def get_team(team_id: int, authorization: AuthHeader, guard: Guard, teams: Teams):
    user_id = guard.authenticate(authorization)

    # Membership is checked before existence
    await guard.require_member(user_id, team_id)

    found = await teams.find_by_id_with_members(team_id)
    if found is None:
        raise NotFoundError("Team")
    team, members = found

    detail = TeamDetail(
        **TeamRead.model_validate(team).model_dump(),
        members=[TeamMemberRead.model_validate(m) for m in members],
    )
    return ok(detail, "Team retrieved successfully")


@router.post(
    "/{team_id}/members",
    response_model=ApiResponse[TeamMemberRead],
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    team_id: int,
    body: MemberAdd,
    authorization: AuthHeader,
    guard: Guard,
    teams: Teams,
    users: Users,
):
    """Add a user to the team (owner only)"""
    user_id = guard.authenticate(authorization)
    await guard.require_owner(user_id, team_id, "Only team owner can add members")

    if await teams.is_member(team_id, body.user_id):
        raise ValidationError("User is already a member of this team")

    if await users.find_by_id(body.user_id) is None:
        raise NotFoundError("User")

    member = await teams.add_member(team_id, body.user_id)
    return ok(TeamMemberRead.model_validate(member), "Member added successfully")


@router.delete("/{team_id}/members/{member_id}", response_model=ApiResponse[None])
async def remove_member(
    team_id: int,
    member_id: int,
    authorization: AuthHeader,
    guard: Guard,
    teams: Teams,
    broadcaster: BroadcasterDep,
):
    """Remove a user from the team (owner only, never the owner)"""
    user_id = guard.authenticate(authorization)
    await guard.require_owner(user_id, team_id, "Only team owner can remove members")

    if member_id == user_id:
        raise ValidationError("Team owner cannot remove themselves. Delete the team instead.")

    if not await teams.remove_member(team_id, member_id):
        raise NotFoundError("Member")

    await broadcaster.evict(team_id, member_id)
    return ok(None, "Member removed successfully")


@router.delete("/{team_id}", response_model=ApiResponse[None])
async def delete_team(
    team_id: int,
    authorization: AuthHeader,
    guard: Guard,
    teams: Teams,
    broadcaster: BroadcasterDep,
):
    """Delete the team; its tasks become unassigned"""
    user_id = guard.authenticate(authorization)
    await guard.require_owner(user_id, team_id, "Only team owner can delete the team")

    if not await teams.delete(team_id):
        raise NotFoundError("Team")

    await broadcaster.evict(team_id)
    return ok(None, "Team deleted successfully")
