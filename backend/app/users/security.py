"""Password hashing and JWT helpers used by the user entity."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from jose import JWTError, jwt
from jose.exceptions import JOSEError
from passlib.context import CryptContext

from backend.app.config import JWTConfig, JWTExpiryConfig

LOGGER = logging.getLogger(__name__)

PASSWORD_CONTEXT = CryptContext(schemes=["bcrypt"], deprecated="auto")
MIN_PASSWORD_LENGTH = 8


class TokenSigningError(RuntimeError):
    """Raised when a token cannot be signed with the configured secret."""


def utc_now() -> datetime:
    """Return the current UTC timestamp."""

    return datetime.now(timezone.utc)


class JWTManager:
    """Encode and decode access and refresh tokens.

    Access and refresh tokens use independent secrets and lifetimes. Both embed
    the user identifier under the ``id`` claim.
    """

    def __init__(
        self,
        config: JWTConfig,
        expires_in: JWTExpiryConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._expires_in = expires_in
        self._clock = clock

    def create_access_token(
        self,
        user_id: str,
        additional_claims: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, Any]] = None,
        algorithm: Optional[str] = None,
    ) -> str:
        """Create a signed access token for ``user_id``.

        ``algorithm`` overrides the configured signing algorithm for this token.
        """

        return self._sign(
            user_id,
            self._config.access_key,
            self._expires_in.access,
            additional_claims,
            headers,
            algorithm,
        )

    def create_refresh_token(
        self,
        user_id: str,
        additional_claims: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, Any]] = None,
        algorithm: Optional[str] = None,
    ) -> str:
        """Create a signed refresh token for ``user_id``."""

        return self._sign(
            user_id,
            self._config.refresh_key,
            self._expires_in.refresh,
            additional_claims,
            headers,
            algorithm,
        )

    def decode_access_token(
        self, token: str, algorithms: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """Decode and validate an access token."""

        return jwt.decode(token, self._config.access_key, algorithms=self._algorithms(algorithms))

    def decode_refresh_token(
        self, token: str, algorithms: Optional[Sequence[str]] = None
    ) -> Dict[str, Any]:
        """Decode and validate a refresh token."""

        return jwt.decode(token, self._config.refresh_key, algorithms=self._algorithms(algorithms))

    def _algorithms(self, algorithms: Optional[Sequence[str]]) -> List[str]:
        return list(algorithms) if algorithms else [self._config.algorithm]

    def _sign(
        self,
        user_id: str,
        secret: str,
        ttl: timedelta,
        additional_claims: Optional[Mapping[str, Any]],
        headers: Optional[Mapping[str, Any]],
        algorithm: Optional[str] = None,
    ) -> str:
        if not secret or not secret.strip():
            raise TokenSigningError("JWT signing secret is not configured")
        now = self._clock()
        payload: Dict[str, Any] = dict(additional_claims or {})
        # id, iat and exp always come from the entity and configuration
        payload.update(
            {
                "id": user_id,
                "iat": int(now.timestamp()),
                "exp": int((now + ttl).timestamp()),
            }
        )
        algorithm = algorithm or self._config.algorithm
        try:
            return jwt.encode(
                payload,
                secret,
                algorithm=algorithm,
                headers=dict(headers) if headers else None,
            )
        except (JOSEError, TypeError, ValueError) as exc:
            LOGGER.error("Failed to sign token", extra={"algorithm": algorithm})
            raise TokenSigningError("Unable to sign token") from exc


__all__ = [
    "JWTError",
    "JWTManager",
    "MIN_PASSWORD_LENGTH",
    "PASSWORD_CONTEXT",
    "TokenSigningError",
    "utc_now",
]
