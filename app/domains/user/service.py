# app/domains/user/service.py
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import User


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_username(self, username: str) -> User | None:
        """Get a user by username."""
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    async def create_user(self, username: str, email: str | None = None) -> User:
        """Create a new user."""
        user = User(username=username, email=email)

        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise e

    async def get_or_create_user(self, username: str, payload: dict) -> User:
        """Get existing user or create one from the token payload."""
        user = await self.get_user_by_username(username)
        if user:
            return user
        try:
            return await self.create_user(username=username, email=payload.get("email"))
        except IntegrityError:
            # Created by a concurrent request in the meantime
            return await self.get_user_by_username(username)
