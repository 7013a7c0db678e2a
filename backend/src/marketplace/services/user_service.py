"""User service for registration and authentication."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.security import get_password_hash, verify_password
from marketplace.models.user import User
from marketplace.schemas.user import UserRegister
from marketplace.services.errors import InvalidInput
from marketplace.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


class UserService:
    """Service class for user operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_email(self, email: str) -> User | None:
        """Get user by email."""
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Get user by ID."""
        result = await self.db.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    async def create_user(self, user_data: UserRegister) -> User:
        """Create a new user together with an empty wallet.

        Raises:
            InvalidInput: If email already exists
        """
        existing = await self.get_by_email(user_data.email)
        if existing:
            raise InvalidInput("Email already registered")

        user = User(
            email=user_data.email,
            password_hash=get_password_hash(user_data.password),
            username=user_data.username,
            status="active",
        )

        try:
            self.db.add(user)
            await self.db.flush()
            await LedgerService(self.db).open_wallet(user.user_id)
            await self.db.commit()
            await self.db.refresh(user)
        except IntegrityError:
            await self.db.rollback()
            raise InvalidInput("Email already registered")

        logger.info(f"Registered user {user.user_id}")
        return user

    async def authenticate(self, email: str, password: str) -> User | None:
        """Authenticate user by email and password.

        Returns:
            User if authentication successful, None otherwise
        """
        user = await self.get_by_email(email)
        if not user:
            return None
        if not verify_password(password, user.password_hash):
            return None
        if user.status != "active":
            return None
        return user
