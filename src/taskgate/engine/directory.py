"""Identity directory - users and the manager -> employee hierarchy."""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskgate.db.repositories import UserRepository
from taskgate.engine.errors import NotFound, ValidationFailed
from taskgate.models import Role, User


class IdentityDirectory:
    """Read side of user records and the two-level hierarchy."""

    def __init__(self, session: AsyncSession):
        self.users = UserRepository(session)

    async def get(self, user_id: UUID) -> Optional[User]:
        return await self.users.get(user_id)

    async def require(self, user_id: UUID) -> User:
        user = await self.users.get(user_id)
        if not user:
            raise NotFound("user", str(user_id))
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        return await self.users.get_by_email(email)

    async def email_taken(self, email: str, exclude_id: Optional[UUID] = None) -> bool:
        return await self.users.email_taken(email, exclude_id)

    async def team_ids(self, manager_id: UUID) -> list[UUID]:
        """Users whose manager_id references the given manager."""
        return await self.users.team_ids(manager_id)

    async def active_ids(self, role: Optional[Role] = None) -> list[UUID]:
        return await self.users.active_ids(role)

    async def manager_of(self, user: User) -> Optional[User]:
        if not user.manager_id:
            return None
        return await self.users.get(user.manager_id)

    async def validate_manager(self, manager_id: UUID) -> User:
        """An employee's manager_id must reference an existing Manager."""
        manager = await self.users.get(manager_id)
        if not manager or manager.role != Role.MANAGER:
            raise ValidationFailed({"manager_id": "Manager not found or is not a manager"})
        return manager
