"""Shared user enums."""
from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Enumerated application role."""

    USER = "User"
    ADMIN = "Admin"
    SUPER_ADMIN = "Super Admin"


class Gender(str, Enum):
    """Gender declared on a user profile."""

    MALE = "Male"
    FEMALE = "Female"
    OTHER = "Other"


class IDType(str, Enum):
    """Identity document used for ID verification."""

    NIN = "NIN"
    BVN = "BVN"
    INTERNATIONAL_PASSPORT = "International Passport"
    DRIVERS_LICENSE = "Drivers License"


__all__ = ["Gender", "IDType", "Role"]
