# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Learner identity."""

from src.core.auth.identity import (
    IdentityProvider,
    JWTIdentityProvider,
    MappingIdentityProvider,
    UserIdentity,
)

__all__ = [
    "IdentityProvider",
    "JWTIdentityProvider",
    "MappingIdentityProvider",
    "UserIdentity",
]
