import logging

from sqlmodel import func, or_, select

from app.models import Task, TaskCreate, TaskPriority, TaskStatus, TaskUpdate, get_utc_now
from app.services.base import BaseService, translate_errors

logger = logging.getLogger(__name__)


class TaskService(BaseService):
    @translate_errors
    async def create(self, task_data: TaskCreate, creator_id: int | None) -> Task:
        task = Task.model_validate(
            task_data.model_dump(mode="json"), update={"creator_id": creator_id}
        )
        self.db.add(task)
        await self.db.commit()
        await self.db.refresh(task)
        logger.info(f"Created task {task.id} (team={task.team_id})")
        return task

    @translate_errors
    async def find_by_id(self, task_id: int) -> Task | None:
        return await self.db.get(Task, task_id)

    async def _page(self, *conditions, limit: int, offset: int) -> tuple[list[Task], int]:
        count_query = select(func.count()).select_from(Task).where(*conditions)
        total = (await self.db.exec(count_query)).one()

        query = (
            select(Task)
            .where(*conditions)
            .order_by(Task.created_at.desc(), Task.id.desc())
            .offset(offset)
            .limit(limit)
        )
        tasks = (await self.db.exec(query)).all()
        return list(tasks), total

    @translate_errors
    async def find_all(self, limit: int, offset: int) -> tuple[list[Task], int]:
        return await self._page(limit=limit, offset=offset)

    @translate_errors
    async def find_by_status(
        self, status: TaskStatus, limit: int, offset: int
    ) -> tuple[list[Task], int]:
        return await self._page(Task.status == status.value, limit=limit, offset=offset)

    @translate_errors
    async def find_by_priority(
        self, priority: TaskPriority, limit: int, offset: int
    ) -> tuple[list[Task], int]:
        return await self._page(Task.priority == priority.value, limit=limit, offset=offset)

    @translate_errors
    async def find_by_team(
        self, team_id: int, limit: int, offset: int
    ) -> tuple[list[Task], int]:
        return await self._page(Task.team_id == team_id, limit=limit, offset=offset)

    @translate_errors
    async def find_unassigned(
        self, user_id: int, limit: int, offset: int
    ) -> tuple[list[Task], int]:
        """Team-less tasks the user created, plus legacy rows with no creator."""
        return await self._page(
            Task.team_id.is_(None),
            or_(Task.creator_id == user_id, Task.creator_id.is_(None)),
            limit=limit,
            offset=offset,
        )

    @translate_errors
    async def update(self, task_id: int, task_data: TaskUpdate) -> Task | None:
        """
        Apply only the fields present in the patch.

        An empty patch leaves the row (including updated_at) untouched.
        """
        task = await self.db.get(Task, task_id)
        if not task:
            return None

        update_data = task_data.model_dump(exclude_unset=True, mode="json")
        if not update_data:
            return task

        task.sqlmodel_update(update_data)
        task.updated_at = get_utc_now()
        await self.db.commit()
        await self.db.refresh(task)
        logger.info(f"Updated task {task_id}: {sorted(update_data)}")
        return task

    @translate_errors
    async def delete(self, task_id: int) -> bool:
        task = await self.db.get(Task, task_id)
        if not task:
            return False
        await self.db.delete(task)
        await self.db.commit()
        logger.info(f"Deleted task {task_id}")
        return True
