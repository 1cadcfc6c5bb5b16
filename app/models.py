import re
from datetime import datetime, timezone
from enum import Enum

from pydantic import field_validator, model_validator
from sqlalchemy import CheckConstraint, DateTime, Index, Text, UniqueConstraint, text
from sqlmodel import Column, Field, SQLModel

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


def _timestamp_column(nullable: bool = False) -> Column:
    return Column(DateTime(timezone=True), nullable=nullable)


class TaskStatus(str, Enum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TeamRole(str, Enum):
    OWNER = "owner"
    MEMBER = "member"


def _values(enum_cls) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


def _required_text(value: str | None, label: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{label} is required")
    return value.strip()


# =============================================================================
# Tables
# =============================================================================


class User(SQLModel, table=True):
    """Database model. password_hash never leaves the service layer."""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(max_length=255, unique=True, index=True)
    password_hash: str = Field(max_length=255)
    name: str = Field(max_length=255)
    created_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())
    updated_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())


class Team(SQLModel, table=True):
    __tablename__ = "teams"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    owner_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    created_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())
    updated_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())


class TeamMember(SQLModel, table=True):
    """Junction row. Exactly one 'owner' row per team, matching teams.owner_id."""

    __tablename__ = "team_members"
    __table_args__ = (
        UniqueConstraint("team_id", "user_id", name="uq_team_members_team_user"),
        CheckConstraint(f"role IN ({_values(TeamRole)})", name="ck_team_members_role"),
    )

    id: int | None = Field(default=None, primary_key=True)
    team_id: int = Field(foreign_key="teams.id", ondelete="CASCADE", index=True)
    user_id: int = Field(foreign_key="users.id", ondelete="CASCADE", index=True)
    role: str = Field(default=TeamRole.MEMBER.value, max_length=50)
    joined_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint(f"status IN ({_values(TaskStatus)})", name="ck_tasks_status"),
        CheckConstraint(f"priority IN ({_values(TaskPriority)})", name="ck_tasks_priority"),
        Index("ix_tasks_created_at", "created_at"),
        Index(
            "ix_tasks_team_status",
            "team_id",
            "status",
            postgresql_where=text("team_id IS NOT NULL"),
        ),
        Index(
            "ix_tasks_team_priority",
            "team_id",
            "priority",
            postgresql_where=text("team_id IS NOT NULL"),
        ),
        Index(
            "ix_tasks_unassigned",
            "creator_id",
            "created_at",
            postgresql_where=text("team_id IS NULL"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(max_length=255)
    description: str | None = Field(default=None, sa_type=Text)
    status: str = Field(default=TaskStatus.TODO.value, max_length=50, index=True)
    priority: str = Field(default=TaskPriority.MEDIUM.value, max_length=50, index=True)
    assignee_id: int | None = Field(
        default=None, foreign_key="users.id", ondelete="SET NULL", index=True
    )
    # NULL creator marks legacy rows that predate accounts
    creator_id: int | None = Field(
        default=None, foreign_key="users.id", ondelete="CASCADE", index=True
    )
    # NULL team means a personal ("unassigned") task
    team_id: int | None = Field(
        default=None, foreign_key="teams.id", ondelete="SET NULL", index=True
    )
    created_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())
    updated_at: datetime = Field(default_factory=get_utc_now, sa_column=_timestamp_column())


# =============================================================================
# Auth schemas
# =============================================================================


class RegisterRequest(SQLModel):
    email: str
    password: str
    name: str

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        value = _required_text(value, "Email").lower()
        if not EMAIL_RE.match(value):
            raise ValueError("Invalid email format")
        return value

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Password is required")
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        return value

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _required_text(value, "Name")


class LoginRequest(SQLModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str) -> str:
        return _required_text(value, "Email").lower()

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Password is required")
        return value


class UserRead(SQLModel):
    """Safe user shape: no password_hash"""

    id: int
    email: str
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthPayload(SQLModel):
    token: str
    user: UserRead


class MePayload(SQLModel):
    user: UserRead


# =============================================================================
# Task schemas
# =============================================================================


class TaskCreate(SQLModel):
    """Schema for creating a task"""

    title: str = Field(max_length=255)
    description: str | None = None
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    assignee_id: int | None = Field(default=None, gt=0)
    team_id: int | None = Field(default=None, gt=0)

    @field_validator("title")
    @classmethod
    def check_title(cls, value: str) -> str:
        return _required_text(value, "title")


class TaskUpdate(SQLModel):
    """Partial update: only fields present in the request body are applied"""

    title: str | None = Field(default=None, max_length=255)
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: int | None = Field(default=None, gt=0)
    team_id: int | None = Field(default=None, gt=0)

    @field_validator("title")
    @classmethod
    def check_title(cls, value: str | None) -> str | None:
        return value if value is None else _required_text(value, "title")

    @model_validator(mode="after")
    def reject_null_required_fields(self):
        for name in ("title", "status", "priority"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self


class TaskRead(SQLModel):
    """Schema for task responses"""

    id: int
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    assignee_id: int | None = None
    creator_id: int | None = None
    team_id: int | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# =============================================================================
# Team schemas
# =============================================================================


class TeamCreate(SQLModel):
    name: str = Field(max_length=255)

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return _required_text(value, "Team name")


class MemberAdd(SQLModel):
    user_id: int = Field(gt=0)


class TeamRead(SQLModel):
    id: int
    name: str
    owner_id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TeamMemberRead(SQLModel):
    id: int
    team_id: int
    user_id: int
    role: TeamRole
    joined_at: datetime

    model_config = {"from_attributes": True}


class TeamDetail(TeamRead):
    members: list[TeamMemberRead] = []
