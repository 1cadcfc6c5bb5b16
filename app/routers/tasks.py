import logging

from fastapi import APIRouter, Depends, Query, status

from app.core.deps import AuthHeader, BroadcasterDep, Guard, Tasks
from app.core.errors import NotFoundError, ValidationError
from app.core.responses import ApiResponse, PageParams, PaginatedResponse, ok, paginated
from app.models import TaskCreate, TaskPriority, TaskRead, TaskStatus, TaskUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tasks", tags=["tasks"])

UNASSIGNED = "unassigned"


def _parse_team_filter(team_id: str | None) -> int | str | None:
    # An empty value means no filter
    if not team_id:
        return None
    if team_id == UNASSIGNED:
        return team_id
    try:
        parsed = int(team_id)
    except ValueError:
        parsed = 0
    if parsed < 1:
        raise ValidationError(
            "Invalid team_id",
            {"team_id": f"team_id must be a positive integer or '{UNASSIGNED}'"},
        )
    return parsed


@router.get("", response_model=PaginatedResponse[TaskRead])
async def get_tasks(
    authorization: AuthHeader,
    guard: Guard,
    tasks: Tasks,
    page: PageParams = Depends(),
    status: TaskStatus | None = None,
    priority: TaskPriority | None = None,
    team_id: str | None = Query(default=None, description="Team id or 'unassigned'"),
):
    """
    List tasks, newest first.

    Only one filter applies: team_id, then status, then priority.
    """
    team_filter = _parse_team_filter(team_id)
    user_id = guard.authenticate(authorization)

    if team_filter == UNASSIGNED:
        rows, total = await tasks.find_unassigned(user_id, page.limit, page.offset)
    elif team_filter is not None:
        await guard.require_member(
            user_id, team_filter, "You do not have access to this team's tasks"
        )
        rows, total = await tasks.find_by_team(team_filter, page.limit, page.offset)
    elif status is not None:
        rows, total = await tasks.find_by_status(status, page.limit, page.offset)
    elif priority is not None:
        rows, total = await tasks.find_by_priority(priority, page.limit, page.offset)
    else:
        rows, total = await tasks.find_all(page.limit, page.offset)

    logger.debug(f"Listed {len(rows)} of {total} tasks (page={page.page}, limit={page.limit})")
    items = [TaskRead.model_validate(task) for task in rows]
    return paginated(items, page, total, "Tasks retrieved successfully")


@router.get("/{task_id}", response_model=ApiResponse[TaskRead])
async def get_task(task_id: int, authorization: AuthHeader, guard: Guard, tasks: Tasks):
    """Get a specific task by ID"""
    user_id = guard.authenticate(authorization)

    task = await tasks.find_by_id(task_id)
    if not task:
        raise NotFoundError("Task")
    await guard.require_task_access(user_id, task)
    return ok(TaskRead.model_validate(task), "Task retrieved successfully")


@router.post("", response_model=ApiResponse[TaskRead], status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    authorization: AuthHeader,
    guard: Guard,
    tasks: Tasks,
    broadcaster: BroadcasterDep,
):
    """Create a new task"""
    user_id = guard.authenticate(authorization)

    if task_data.team_id is not None:
        await guard.require_member(
            user_id, task_data.team_id, "You must be a member of the team to create tasks"
        )

    task = await tasks.create(task_data, creator_id=user_id)
    await broadcaster.emit_task_created(task)
    return ok(TaskRead.model_validate(task), "Task created successfully")


@router.put("/{task_id}", response_model=ApiResponse[TaskRead])
async def update_task(
    task_id: int,
    task_data: TaskUpdate,
    authorization: AuthHeader,
    guard: Guard,
    tasks: Tasks,
    broadcaster: BroadcasterDep,
):
    """Partially update a task; omitted fields keep their values"""
    user_id = guard.authenticate(authorization)

    task = await tasks.find_by_id(task_id)
    if not task:
        raise NotFoundError("Task")
    await guard.require_task_access(user_id, task)

    previous_team_id = task.team_id
    target_team_id = task_data.team_id
    if (
        "team_id" in task_data.model_fields_set
        and target_team_id is not None
        and target_team_id != previous_team_id
    ):
        await guard.require_member(
            user_id, target_team_id, "You must be a member of the team to move tasks into it"
        )

    updated = await tasks.update(task_id, task_data)
    if not updated:
        raise NotFoundError("Task")

    await broadcaster.emit_task_updated(updated, previous_team_id=previous_team_id)
    return ok(TaskRead.model_validate(updated), "Task updated successfully")


@router.delete("/{task_id}", response_model=ApiResponse[None])
async def delete_task(
    task_id: int,
    authorization: AuthHeader,
    guard: Guard,
    tasks: Tasks,
    broadcaster: BroadcasterDep,
):
    """Delete a task"""
    user_id = guard.authenticate(authorization)

    task = await tasks.find_by_id(task_id)
    if not task:
        raise NotFoundError("Task")
    await guard.require_task_access(user_id, task)

    # Captured before the row is gone
    team_id = task.team_id
    if not await tasks.delete(task_id):
        raise NotFoundError("Task")

    await broadcaster.emit_task_deleted(task_id, team_id)
    return ok(None, "Task deleted successfully")
