"""
License module for the Gobex sync engine.

Turns credentials into a tenant id and an access decision, and keeps the
owner-side registry of user lots and licenses.

Invariants:
    - The owner is never subject to a license check
    - Expiry is computed at check time from dates
"""

from .gate import LicenseGate, LoginFailure, LoginResult
from .models import (
    LICENSE_CATALOGUE,
    Credentials,
    License,
    LicenseType,
    LotStatus,
    Role,
    UserLot,
)
from .registry import (
    DuplicateUsernameError,
    LicenseError,
    LicenseRegistry,
    UnknownLicenseTypeError,
    UserLotNotFoundError,
)

__all__ = [
    "LicenseGate",
    "LoginResult",
    "LoginFailure",
    "LicenseRegistry",
    "License",
    "LicenseType",
    "LICENSE_CATALOGUE",
    "UserLot",
    "Credentials",
    "LotStatus",
    "Role",
    "LicenseError",
    "DuplicateUsernameError",
    "UserLotNotFoundError",
    "UnknownLicenseTypeError",
]
