import logging

from sqlmodel import func, select
from sqlmodel.ext.asyncio.session import AsyncSession

from app.cache.decorators import cached_check, expires_after
from app.cache.layer import CacheKeys, MembershipCache
from app.models import Team, TeamMember, TeamRole
from app.services.base import BaseService, translate_errors

logger = logging.getLogger(__name__)


def _membership_keys(team_id: int, user_id: int) -> list[str]:
    return [
        CacheKeys.team_member(team_id, user_id),
        CacheKeys.team_members(team_id),
        CacheKeys.user_teams(user_id),
    ]


class TeamService(BaseService):
    """
    Teams and their memberships.

    Membership and ownership checks are memoized in the application's
    MembershipCache; every mutation here invalidates the keys it affects
    once the commit has returned.
    """

    def __init__(self, db: AsyncSession, cache: MembershipCache):
        super().__init__(db)
        self.cache = cache

    @translate_errors
    async def create(self, name: str, owner_id: int) -> Team:
        """Insert the team and its owner membership in one transaction."""
        team = Team(name=name, owner_id=owner_id)
        self.db.add(team)
        await self.db.flush()

        self.db.add(TeamMember(team_id=team.id, user_id=owner_id, role=TeamRole.OWNER.value))
        await self.db.commit()
        await self.db.refresh(team)

        # Drop entries left under a reused id
        self.cache.invalidate_pattern(CacheKeys.team_namespace(team.id))
        self.cache.invalidate(CacheKeys.user_teams(owner_id))
        logger.info(f"Created team {team.id} owned by user {owner_id}")
        return team

    @translate_errors
    async def find_by_id(self, team_id: int) -> Team | None:
        return await self.db.get(Team, team_id)

    async def find_by_id_with_members(
        self, team_id: int
    ) -> tuple[Team, list[TeamMember]] | None:
        team = await self.find_by_id(team_id)
        if team is None:
            return None
        return team, await self.get_members(team_id)

    @translate_errors
    async def find_for_user(
        self, user_id: int, limit: int, offset: int
    ) -> tuple[list[Team], int]:
        """Teams the user belongs to, newest first, with the total count."""
        membership = TeamMember.team_id == Team.id

        count_query = (
            select(func.count(func.distinct(Team.id)))
            .select_from(Team)
            .join(TeamMember, membership)
            .where(TeamMember.user_id == user_id)
        )
        total = (await self.db.exec(count_query)).one()

        query = (
            select(Team)
            .join(TeamMember, membership)
            .where(TeamMember.user_id == user_id)
            .order_by(Team.created_at.desc(), Team.id.desc())
            .offset(offset)
            .limit(limit)
        )
        teams = (await self.db.exec(query)).all()
        return list(teams), total

    @translate_errors
    async def get_members(self, team_id: int) -> list[TeamMember]:
        query = (
            select(TeamMember)
            .where(TeamMember.team_id == team_id)
            .order_by(TeamMember.joined_at.asc(), TeamMember.id.asc())
        )
        return list((await self.db.exec(query)).all())

    @translate_errors
    @expires_after(keys=_membership_keys)
    async def add_member(self, team_id: int, user_id: int) -> TeamMember:
        member = TeamMember(team_id=team_id, user_id=user_id, role=TeamRole.MEMBER.value)
        self.db.add(member)
        await self.db.commit()
        await self.db.refresh(member)
        logger.info(f"Added user {user_id} to team {team_id}")
        return member

    @translate_errors
    @expires_after(keys=_membership_keys)
    async def remove_member(self, team_id: int, user_id: int) -> bool:
        result = await self.db.exec(
            select(TeamMember).where(
                TeamMember.team_id == team_id, TeamMember.user_id == user_id
            )
        )
        member = result.first()
        if member is None:
            return False

        await self.db.delete(member)
        await self.db.commit()
        logger.info(f"Removed user {user_id} from team {team_id}")
        return True

    @translate_errors
    @cached_check(CacheKeys.team_member)
    async def is_member(self, team_id: int, user_id: int) -> bool:
        result = await self.db.exec(
            select(TeamMember.id)
            .where(TeamMember.team_id == team_id, TeamMember.user_id == user_id)
            .limit(1)
        )
        return result.first() is not None

    @translate_errors
    @cached_check(CacheKeys.team_owner)
    async def is_owner(self, team_id: int, user_id: int) -> bool:
        # teams.owner_id is authoritative; the 'owner' membership row mirrors it
        result = await self.db.exec(
            select(Team.id).where(Team.id == team_id, Team.owner_id == user_id).limit(1)
        )
        return result.first() is not None

    @translate_errors
    @expires_after(patterns=lambda team_id: [CacheKeys.team_namespace(team_id)])
    async def delete(self, team_id: int) -> bool:
        """Delete a team; memberships cascade and its tasks become team-less."""
        team = await self.db.get(Team, team_id)
        if team is None:
            return False

        await self.db.delete(team)
        await self.db.commit()
        logger.info(f"Deleted team {team_id}")
        return True

    @translate_errors
    async def batch_check_members(
        self, team_id: int, user_ids: list[int]
    ) -> dict[int, bool]:
        """Membership of many users in one query (uncached)."""
        if not user_ids:
            return {}
        result = await self.db.exec(
            select(TeamMember.user_id).where(
                TeamMember.team_id == team_id, TeamMember.user_id.in_(user_ids)
            )
        )
        members = set(result.all())
        return {user_id: user_id in members for user_id in user_ids}

    @translate_errors
    async def check_owner_consistency(self, team_id: int) -> bool:
        """True when teams.owner_id and the 'owner' membership row agree."""
        team = await self.db.get(Team, team_id)
        if team is None:
            return False

        result = await self.db.exec(
            select(TeamMember.user_id).where(
                TeamMember.team_id == team_id,
                TeamMember.role == TeamRole.OWNER.value,
            )
        )
        owner_rows = list(result.all())
        consistent = owner_rows == [team.owner_id]
        if not consistent:
            logger.warning(
                f"Team {team_id} ownership diverged: owner_id={team.owner_id}, "
                f"owner memberships={owner_rows}"
            )
        return consistent
