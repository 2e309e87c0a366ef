# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learner identity resolution.

Every learner-scoped operation needs a user id. It is resolved by an
IdentityProvider from whatever credentials the caller carries; there is no
fallback user, so a call without a resolvable identity fails with
IdentityError.

Example:
    >>> provider = JWTIdentityProvider(get_settings().jwt)
    >>> identity = provider.resolve("eyJhbGciOiJIUzI1NiIs...")
    >>> identity.user_id
    'user-123'
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel, Field, field_validator

from src.core.config.settings import JWTSettings, get_settings
from src.core.learning.exceptions import IdentityError

logger = logging.getLogger(__name__)


class UserIdentity(BaseModel):
    """Resolved learner identity.

    Attributes:
        user_id: Stable learner id; scopes every stored record.
        display_name: Optional human readable name.
        roles: Role codes carried by the credentials.
    """

    user_id: str = Field(min_length=1)
    display_name: Optional[str] = None
    roles: list[str] = Field(default_factory=list)

    @field_validator("user_id")
    @classmethod
    def strip_user_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("user_id must not be blank")
        return value

    def has_role(self, role: str) -> bool:
        return role in self.roles


class IdentityProvider(ABC):
    """Resolves the caller's credentials to a UserIdentity."""

    @abstractmethod
    def resolve(self, credentials: Any) -> UserIdentity:
        """Resolve credentials.

        Raises:
            IdentityError: If no identity can be resolved.
        """


class JWTIdentityProvider(IdentityProvider):
    """Resolves identity from a signed JWT (python-jose).

    The learner id is read from the configured claim (``sub`` by default).
    A leading "Bearer " on the token is accepted.
    """

    def __init__(self, settings: Optional[JWTSettings] = None):
        self._settings = settings or get_settings().jwt

    def resolve(self, credentials: Any) -> UserIdentity:
        if not isinstance(credentials, str) or not credentials.strip():
            raise IdentityError("Missing bearer token")
        if self._settings.secret_key is None:
            raise IdentityError("JWT identity is not configured (JWT_SECRET_KEY unset)")

        token = credentials.strip()
        if token.lower().startswith("bearer "):
            token = token[7:].strip()

        try:
            claims = jwt.decode(
                token,
                self._settings.secret_key.get_secret_value(),
                algorithms=[self._settings.algorithm],
            )
        except ExpiredSignatureError as e:
            raise IdentityError("Token has expired", e) from e
        except JWTError as e:
            logger.warning("Token decode failed: %s", str(e))
            raise IdentityError(f"Invalid token: {e}", e) from e

        user_id = claims.get(self._settings.user_claim)
        if not isinstance(user_id, str) or not user_id.strip():
            raise IdentityError(f"Token has no '{self._settings.user_claim}' claim")

        return UserIdentity(
            user_id=user_id,
            display_name=claims.get("name"),
            roles=list(claims.get("roles") or []),
        )


class MappingIdentityProvider(IdentityProvider):
    """Resolves identity from an already-authenticated mapping.

    For callers sitting behind a gateway that has verified the learner and
    forwards the id, e.g. ``{"user_id": "u-1"}`` or request headers with
    ``X-User-Id``.
    """

    def __init__(self, key: str = "user_id"):
        self._key = key

    def resolve(self, credentials: Any) -> UserIdentity:
        if not isinstance(credentials, Mapping):
            raise IdentityError("Credentials must be a mapping")
        user_id = credentials.get(self._key)
        if not isinstance(user_id, str) or not user_id.strip():
            raise IdentityError(f"No learner id under '{self._key}'")
        roles = credentials.get("roles") or []
        return UserIdentity(
            user_id=user_id,
            display_name=credentials.get("display_name"),
            roles=[roles] if isinstance(roles, str) else list(roles),
        )
