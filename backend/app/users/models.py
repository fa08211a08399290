"""SQLAlchemy ORM model for application users."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from passlib.context import CryptContext
from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, event, inspect, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates

from backend.app.users.enums import Gender, IDType, Role
from backend.app.users.security import PASSWORD_CONTEXT, JWTManager

if TYPE_CHECKING:  # pragma: no cover
    from backend.app.users.repository import UserRepository

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50

PUBLIC_FIELDS = ("id", "first_name", "last_name", "email", "photo")
REQUIRED_FIELDS = ("first_name", "last_name", "email", "password", "phone_number", "gender")
PROFILE_COMPLETENESS_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone_number",
    "photo",
    "gender",
    "is_id_verified",
    "is_mobile_verified",
    "is_email_verified",
)

# Columns that must be requested explicitly via ``include=`` when querying.
HIDDEN_FIELDS = (
    "password",
    "refresh_token",
    "providers",
    "password_reset_token",
    "password_reset_expires",
    "password_reset_retries",
    "password_changed_at",
    "ip_address",
    "login_retries",
    "is_deleted",
    "last_login",
    "verification_token",
)


class UserValidationError(ValueError):
    """Raised when a user record violates a schema constraint."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


def _hidden(column_type: Any, **kwargs: Any) -> Any:
    return mapped_column(column_type, deferred=True, deferred_raiseload=True, **kwargs)


class UserBase(DeclarativeBase):
    """Base declarative class for user models."""


class User(UserBase):
    """Persisted AbegHelp account."""

    __tablename__ = "users"
    __table_args__ = (
        Index(
            "ix_users_email_active",
            "email",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("NOT is_deleted"),
        ),
        Index(
            "ix_users_phone_number_active",
            "phone_number",
            unique=True,
            sqlite_where=text("is_deleted = 0"),
            postgresql_where=text("NOT is_deleted"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    first_name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH))
    last_name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH))
    email: Mapped[str] = mapped_column(String(320))
    phone_number: Mapped[str] = mapped_column(String(32))
    photo: Mapped[Optional[str]] = mapped_column(String(2048))
    role: Mapped[Role] = mapped_column(
        SAEnum(Role, name="user_role", native_enum=False, length=16),
        default=Role.USER,
        nullable=False,
    )
    gender: Mapped[Gender] = mapped_column(
        SAEnum(Gender, name="user_gender", native_enum=False, length=16)
    )
    is_profile_complete: Mapped[bool] = mapped_column(Boolean, default=False)

    password: Mapped[Optional[str]] = _hidden(String(255))
    refresh_token: Mapped[Optional[str]] = _hidden(String(1024))
    providers: Mapped[List[str]] = _hidden(JSON, default=list)
    password_reset_token: Mapped[Optional[str]] = _hidden(String(255))
    password_reset_expires: Mapped[Optional[datetime]] = _hidden(DateTime(timezone=True))
    password_reset_retries: Mapped[int] = _hidden(Integer, default=0)
    password_changed_at: Mapped[Optional[datetime]] = _hidden(DateTime(timezone=True))
    ip_address: Mapped[Optional[str]] = _hidden(String(45))
    login_retries: Mapped[int] = _hidden(Integer, default=0)

    verification_method: Mapped[Optional[IDType]] = mapped_column(
        SAEnum(IDType, name="user_id_type", native_enum=False, length=32)
    )
    is_id_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_mobile_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_suspended: Mapped[bool] = mapped_column(Boolean, default=False)
    is_deleted: Mapped[bool] = _hidden(Boolean, default=False)
    last_login: Mapped[Optional[datetime]] = _hidden(DateTime(timezone=True))
    verification_token: Mapped[Optional[str]] = _hidden(String(255))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    @validates("first_name", "last_name")
    def _validate_name(self, key: str, value: Optional[str]) -> str:
        label = key.replace("_", " ").capitalize()
        if value is None or not value.strip():
            raise UserValidationError(f"{label} is required", field=key)
        value = value.strip()
        if len(value) < NAME_MIN_LENGTH:
            raise UserValidationError(
                f"{label} must be at least {NAME_MIN_LENGTH} characters long", field=key
            )
        if len(value) > NAME_MAX_LENGTH:
            raise UserValidationError(
                f"{label} must not be more than {NAME_MAX_LENGTH} characters long", field=key
            )
        return value

    @validates("email")
    def _validate_email(self, key: str, value: Optional[str]) -> str:
        if value is None or not value.strip():
            raise UserValidationError("Email field is required", field=key)
        return value.strip().lower()

    def loaded_fields(self) -> List[str]:
        """Return column names whose values are present on this instance."""

        unloaded = inspect(self).unloaded
        return [attr.key for attr in self.__mapper__.column_attrs if attr.key not in unloaded]

    def validate(self) -> None:
        """Ensure required fields are populated before persisting.

        Hidden fields that were not loaded are assumed to be stored already.
        """

        loaded = set(self.loaded_fields())
        for field in REQUIRED_FIELDS:
            if field not in loaded:
                continue
            value = getattr(self, field)
            if value is None or value == "":
                label = field.replace("_", " ").capitalize()
                raise UserValidationError(f"{label} is required", field=field)

    def update_profile_completeness(self) -> bool:
        """Recompute ``is_profile_complete`` unless it is already set."""

        if not self.is_profile_complete:
            self.is_profile_complete = all(
                bool(getattr(self, field)) for field in PROFILE_COMPLETENESS_FIELDS
            )
        return self.is_profile_complete

    def verify_password(
        self, candidate: str, pwd_context: CryptContext = PASSWORD_CONTEXT
    ) -> bool:
        """Return whether ``candidate`` matches the stored password hash.

        Returns ``False`` when no hash is set or it was not loaded.
        """

        if "password" in inspect(self).unloaded or not self.password:
            return False
        return pwd_context.verify(candidate, self.password)

    def to_json(self, omit: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Serialize the user.

        ``omit=None`` returns the public projection only. An empty sequence
        returns every loaded field, and a non-empty one returns every loaded
        field except those named.
        """

        if omit is None:
            return {field: getattr(self, field) for field in PUBLIC_FIELDS}
        excluded = set(omit)
        data: Dict[str, Any] = {}
        for field in self.loaded_fields():
            if field in excluded:
                continue
            value = getattr(self, field)
            data[field] = list(value) if isinstance(value, list) else value
        return data

    def generate_access_token(
        self,
        jwt_manager: JWTManager,
        *,
        additional_claims: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, Any]] = None,
        algorithm: Optional[str] = None,
    ) -> str:
        """Sign an access token embedding this user's id."""

        return jwt_manager.create_access_token(
            self.id,
            additional_claims=additional_claims,
            headers=headers,
            algorithm=algorithm,
        )

    async def generate_refresh_token(
        self,
        jwt_manager: JWTManager,
        repository: "UserRepository",
        *,
        additional_claims: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, Any]] = None,
        algorithm: Optional[str] = None,
    ) -> str:
        """Sign a refresh token and persist it on the user record."""

        refresh_token = jwt_manager.create_refresh_token(
            self.id,
            additional_claims=additional_claims,
            headers=headers,
            algorithm=algorithm,
        )
        self.refresh_token = refresh_token
        await repository.save(self)
        return refresh_token


@event.listens_for(User, "before_insert")
@event.listens_for(User, "before_update")
def _refresh_profile_completeness(mapper, connection, target: User) -> None:
    target.update_profile_completeness()


__all__ = [
    "HIDDEN_FIELDS",
    "PUBLIC_FIELDS",
    "PROFILE_COMPLETENESS_FIELDS",
    "User",
    "UserBase",
    "UserValidationError",
]
