import logging
from functools import wraps
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from app.core.errors import translate_db_error

logger = logging.getLogger(__name__)


def translate_errors(fn: Callable):
    """Roll back and re-raise store failures as application errors."""

    @wraps(fn)
    async def wrapper(self: "BaseService", *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except (SQLAlchemyError, OSError) as exc:
            logger.error(f"{type(self).__name__}.{fn.__name__} failed")
            await self.rollback()
            raise translate_db_error(exc) from exc

    return wrapper


class BaseService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def rollback(self) -> None:
        try:
            await self.db.rollback()
        except (SQLAlchemyError, OSError) as exc:
            logger.warning(f"Rollback failed: {exc}")
