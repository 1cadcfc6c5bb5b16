import logging

from fastapi import APIRouter, status

from app.core.config import SettingsDep
from app.core.deps import AuthHeader, Guard, Users
from app.core.errors import AuthenticationError, NotFoundError
from app.core.responses import ApiResponse, ok
from app.core.security import issue_token
from app.models import AuthPayload, LoginRequest, MePayload, RegisterRequest, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_CREDENTIALS = "Invalid email or password"


@router.post(
    "/register",
    response_model=ApiResponse[AuthPayload],
    status_code=status.HTTP_201_CREATED,
)
async def register(body: RegisterRequest, users: Users, settings: SettingsDep):
    """Create an account and return a token for it"""
    user = await users.create(body.email, body.password, body.name)
    payload = AuthPayload(token=issue_token(user.id, settings), user=UserRead.model_validate(user))
    return ok(payload, "User registered successfully")


@router.post("/login", response_model=ApiResponse[AuthPayload])
async def login(body: LoginRequest, users: Users, settings: SettingsDep):
    user = await users.authenticate(body.email, body.password)
    if user is None:
        logger.info("Login failed")
        raise AuthenticationError(INVALID_CREDENTIALS)

    payload = AuthPayload(token=issue_token(user.id, settings), user=UserRead.model_validate(user))
    return ok(payload, "Login successful")


@router.get("/me", response_model=ApiResponse[MePayload])
async def me(authorization: AuthHeader, guard: Guard, users: Users):
    """Current user, resolved from the bearer token"""
    user_id = guard.authenticate(authorization)

    user = await users.find_by_id(user_id)
    if user is None:
        raise NotFoundError("User")
    return ok(MePayload(user=UserRead.model_validate(user)), "User retrieved successfully")
