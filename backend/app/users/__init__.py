"""User entity package providing persistence, password and JWT helpers."""

from backend.app.users.models import User, UserValidationError
from backend.app.users.repository import DuplicateUserError, UserRepository
from backend.app.users.security import JWTManager, TokenSigningError

__all__ = [
    "DuplicateUserError",
    "JWTManager",
    "TokenSigningError",
    "User",
    "UserRepository",
    "UserValidationError",
]
