import logging

from fastapi.concurrency import run_in_threadpool
from sqlmodel import func, select

from app.core.errors import ConflictError
from app.core.security import dummy_verify, hash_password, verify_password
from app.models import User
from app.services.base import BaseService, translate_errors

logger = logging.getLogger(__name__)


class UserService(BaseService):
    @translate_errors
    async def create(self, email: str, password: str, name: str) -> User:
        """Insert a user. Raises ConflictError when the email is taken."""
        if await self.email_exists(email):
            raise ConflictError(
                "Email already exists", {"email": "This email is already registered"}
            )

        password_hash = await run_in_threadpool(hash_password, password)
        user = User(email=email, password_hash=password_hash, name=name)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info(f"Created user {user.id}")
        return user

    @translate_errors
    async def find_by_id(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    @translate_errors
    async def find_by_email(self, email: str) -> User | None:
        result = await self.db.exec(select(User).where(User.email == email))
        return result.first()

    @translate_errors
    async def email_exists(self, email: str) -> bool:
        result = await self.db.exec(
            select(func.count()).select_from(User).where(User.email == email)
        )
        return result.one() > 0

    async def authenticate(self, email: str, password: str) -> User | None:
        """
        Return the user when the credentials match, else None.

        An unknown email still costs one hash verification so the two
        failure paths take comparable time.
        """
        user = await self.find_by_email(email)
        if user is None:
            await run_in_threadpool(dummy_verify)
            return None

        if not await run_in_threadpool(verify_password, password, user.password_hash):
            return None
        return user
