"""Repository handling persistence for user records."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from passlib.context import CryptContext
from sqlalchemy import Select, inspect, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from backend.app.users.enums import Gender, IDType, Role
from backend.app.users.models import HIDDEN_FIELDS, User, UserValidationError
from backend.app.users.security import MIN_PASSWORD_LENGTH, PASSWORD_CONTEXT, utc_now

LOGGER = logging.getLogger(__name__)

UNIQUE_FIELDS = ("phone_number", "email")


class DuplicateUserError(RuntimeError):
    """Raised when a unique user field collides with an existing record."""

    def __init__(self, field: str) -> None:
        label = field.replace("_", " ")
        super().__init__(f"A user with this {label} already exists")
        self.field = field


class UserRepository:
    """Provide database access helpers for user records.

    Every read excludes soft-deleted and suspended users unless the caller
    passes ``include_inactive=True``. Hidden columns are only loaded when named
    in ``include``.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        pwd_context: Optional[CryptContext] = None,
    ) -> None:
        self._session = session
        self._clock = clock
        self._pwd_context = pwd_context or PASSWORD_CONTEXT

    @property
    def session(self) -> AsyncSession:
        """Return the underlying SQLAlchemy session."""

        return self._session

    def hash_password(self, password: str) -> str:
        """Hash the provided password using bcrypt."""

        if password is None or len(password) < MIN_PASSWORD_LENGTH:
            raise UserValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long",
                field="password",
            )
        return self._pwd_context.hash(password)

    async def create_user(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        phone_number: str,
        password: str,
        gender: Gender,
        photo: Optional[str] = None,
        role: Role = Role.USER,
        verification_method: Optional[IDType] = None,
        ip_address: Optional[str] = None,
        providers: Optional[Sequence[str]] = None,
    ) -> User:
        """Persist a new user with the provided profile and credentials."""

        now = self._clock()
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            phone_number=phone_number.strip(),
            password=self.hash_password(password),
            gender=gender,
            photo=photo,
            role=role,
            verification_method=verification_method,
            ip_address=ip_address,
            providers=list(providers or []),
            refresh_token=None,
            password_reset_token=None,
            password_reset_expires=None,
            password_reset_retries=0,
            password_changed_at=None,
            login_retries=0,
            verification_token=None,
            is_profile_complete=False,
            is_id_verified=False,
            is_email_verified=False,
            is_mobile_verified=False,
            is_suspended=False,
            is_deleted=False,
            last_login=now,
            created_at=now,
        )
        await self.save(user)
        LOGGER.info("Created user", extra={"user_id": user.id})
        return user

    async def save(self, user: User) -> User:
        """Validate and flush pending changes for ``user``.

        New users are added to the session and get their creation and
        last-login timestamps from the clock. A rejected new user is removed
        from the session; the surrounding transaction is left untouched and
        rolling it back is up to the caller.

        Raises:
            UserValidationError: If a required field is missing.
            DuplicateUserError: If the email or phone number is taken.
        """

        state = inspect(user)
        is_new = state.transient or state.pending
        if is_new:
            now = self._clock()
            if user.created_at is None:
                user.created_at = now
            if user.last_login is None:
                user.last_login = now
            if state.transient:
                self._session.add(user)
        try:
            user.validate()
            await self._ensure_unique(user)
        except (UserValidationError, DuplicateUserError):
            if is_new:
                self._session.expunge(user)
            raise
        user.updated_at = self._clock()
        try:
            await self._session.flush()
        except IntegrityError as exc:
            message = str(exc.orig)
            for field in UNIQUE_FIELDS:
                if field in message:
                    raise DuplicateUserError(field) from exc
            raise
        return user

    async def _ensure_unique(self, user: User) -> None:
        unloaded = inspect(user).unloaded
        if "is_deleted" not in unloaded and user.is_deleted:
            return
        fields = [field for field in UNIQUE_FIELDS if field not in unloaded]
        if not fields:
            return
        statement = select(User.email, User.phone_number).where(
            or_(*(getattr(User, field) == getattr(user, field) for field in fields)),
            User.is_deleted.is_not(True),
        )
        if user.id is not None:
            statement = statement.where(User.id != user.id)
        with self._session.no_autoflush:
            result = await self._session.execute(statement.limit(1))
        conflict = result.first()
        if conflict is None:
            return
        for field in fields:
            if getattr(conflict, field) == getattr(user, field):
                raise DuplicateUserError(field)

    def _select(self, include_inactive: bool, include: Iterable[str]) -> Select:
        statement = select(User)
        fields = list(include)
        unknown = [field for field in fields if field not in HIDDEN_FIELDS]
        if unknown:
            raise ValueError(f"Unknown hidden fields requested: {', '.join(unknown)}")
        if fields:
            statement = statement.options(*(undefer(getattr(User, field)) for field in fields))
        if not include_inactive:
            statement = statement.where(
                User.is_deleted.is_not(True), User.is_suspended.is_not(True)
            )
        return statement

    async def get_user_by_id(
        self,
        user_id: str,
        *,
        include_inactive: bool = False,
        include: Sequence[str] = (),
    ) -> Optional[User]:
        """Retrieve a user record by identifier."""

        statement = self._select(include_inactive, include).where(User.id == user_id)
        result = await self._session.execute(statement)
        return result.scalar_one_or_none()

    async def get_user_by_email(
        self,
        email: str,
        *,
        include_inactive: bool = False,
        include: Sequence[str] = (),
    ) -> Optional[User]:
        """Retrieve a user record by email address."""

        normalized_email = email.strip().lower()
        statement = self._select(include_inactive, include).where(User.email == normalized_email)
        result = await self._session.execute(statement)
        return result.scalars().first()

    async def get_user_by_phone(
        self,
        phone_number: str,
        *,
        include_inactive: bool = False,
        include: Sequence[str] = (),
    ) -> Optional[User]:
        """Retrieve a user record by phone number."""

        statement = self._select(include_inactive, include).where(
            User.phone_number == phone_number.strip()
        )
        result = await self._session.execute(statement)
        return result.scalars().first()

    async def list_users(
        self,
        *,
        include_inactive: bool = False,
        include: Sequence[str] = (),
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[User]:
        """Return users ordered by creation time."""

        statement = self._select(include_inactive, include).order_by(User.created_at, User.id)
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        result = await self._session.execute(statement)
        return list(result.scalars().all())

    async def record_login(self, user: User, ip_address: Optional[str] = None) -> User:
        """Stamp a successful login and reset the retry counter."""

        user.last_login = self._clock()
        user.login_retries = 0
        if ip_address:
            user.ip_address = ip_address
        return await self.save(user)

    async def soft_delete(self, user: User) -> User:
        """Mark the user deleted without removing the row."""

        user.is_deleted = True
        user.refresh_token = None
        LOGGER.info("Soft deleted user", extra={"user_id": user.id})
        return await self.save(user)

    async def suspend(self, user: User) -> User:
        """Suspend the user so default reads no longer return it."""

        user.is_suspended = True
        LOGGER.info("Suspended user", extra={"user_id": user.id})
        return await self.save(user)

    async def commit(self) -> None:
        """Commit the current transaction."""

        await self._session.commit()

    async def rollback(self) -> None:
        """Rollback the current transaction."""

        await self._session.rollback()


__all__ = ["DuplicateUserError", "UserRepository"]
