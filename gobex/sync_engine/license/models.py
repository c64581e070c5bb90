"""
License and tenant membership models.

A UserLot pairs one manager and one employee credential set sharing a
tenant identity (the lot id). A License is a time-bounded grant of access
for that tenant, independent of the lot's administrative status.

Invariants:
    - UserLot.id is the canonical tenant id
    - Passwords are only held as salted PBKDF2 hashes
    - License validity is computed from dates at check time, never cached
"""

from __future__ import annotations

import calendar
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

PBKDF2_ITERATIONS = 120_000


class LotStatus(str, Enum):
    """Administrative status of a UserLot."""

    ACTIVE = "active"
    SUSPENDED = "suspended"


class Role(str, Enum):
    """Login roles."""

    OWNER = "owner"
    MANAGER = "manager"
    EMPLOYEE = "employee"

    @classmethod
    def parse(cls, value: str | Role | None) -> Role | None:
        """Parse a role, accepting the labels shown in the French UI.

        Raises:
            ValueError: If the role is unknown
        """
        if value is None or isinstance(value, Role):
            return value
        key = value.strip().lower()
        aliases = {
            "propriétaire": cls.OWNER,
            "proprietaire": cls.OWNER,
            "gestionnaire": cls.MANAGER,
            "employé": cls.EMPLOYEE,
            "employe": cls.EMPLOYEE,
        }
        if key in aliases:
            return aliases[key]
        return cls(key)


@dataclass(frozen=True)
class LicenseType:
    """Entry of the license catalogue."""

    name: str
    duration_months: int
    price: int


LICENSE_CATALOGUE: dict[str, LicenseType] = {
    "Kpêvi": LicenseType("Kpêvi", 1, 15000),
    "Kléoun": LicenseType("Kléoun", 3, 40000),
    "Agbon": LicenseType("Agbon", 6, 70000),
    "Baba": LicenseType("Baba", 12, 120000),
}


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def hash_password(password: str, salt: str | None = None) -> str:
    """Hash a password as pbkdf2_sha256$<iterations>$<salt>$<hex digest>."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS
    )
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against an encoded hash in constant time."""
    try:
        algorithm, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), expected)


@dataclass
class Credentials:
    """Username and password hash of one lot member."""

    username: str
    password_hash: str

    @classmethod
    def create(cls, username: str, password: str) -> Credentials:
        return cls(username=username, password_hash=hash_password(password))

    def matches(self, username: str, password: str) -> bool:
        return self.username == username and verify_password(password, self.password_hash)


@dataclass
class UserLot:
    """Tenant membership: one manager and one employee.

    Attributes:
        id: Tenant identifier
        manager: Manager credentials
        employee: Employee credentials
        created_at: Creation instant (UTC)
        status: Administrative status
    """

    id: str
    manager: Credentials
    employee: Credentials
    created_at: datetime
    status: LotStatus = LotStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == LotStatus.ACTIVE

    def usernames(self) -> set[str]:
        return {self.manager.username, self.employee.username}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "manager": {
                "username": self.manager.username,
                "passwordHash": self.manager.password_hash,
            },
            "employee": {
                "username": self.employee.username,
                "passwordHash": self.employee.password_hash,
            },
            "createdAt": self.created_at.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserLot:
        created_at = datetime.fromisoformat(data["createdAt"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=data["id"],
            manager=Credentials(data["manager"]["username"], data["manager"]["passwordHash"]),
            employee=Credentials(data["employee"]["username"], data["employee"]["passwordHash"]),
            created_at=created_at,
            status=LotStatus(data.get("status", LotStatus.ACTIVE.value)),
        )


@dataclass
class License:
    """Time-bounded grant of access for a tenant.

    Attributes:
        id: License identifier
        type: Catalogue name
        duration_months: Duration in months
        price: Price paid
        start_date: First valid day
        end_date: Last valid day (inclusive)
        key: License key
        active: Administrative flag; expiry is computed separately
        tenant_id: Tenant the license belongs to
    """

    id: str
    type: str
    duration_months: int
    price: int
    start_date: date
    end_date: date
    key: str
    active: bool
    tenant_id: str

    def is_expired(self, today: date) -> bool:
        return self.end_date < today

    def grants_access(self, today: date) -> bool:
        """Active and not past its end date (the end date itself is valid)."""
        return self.active and not self.is_expired(today)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "durationMonths": self.duration_months,
            "price": self.price,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "key": self.key,
            "active": self.active,
            "tenantId": self.tenant_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> License:
        return cls(
            id=data["id"],
            type=data["type"],
            duration_months=int(data["durationMonths"]),
            price=int(data["price"]),
            start_date=_to_date(data["startDate"]),
            end_date=_to_date(data["endDate"]),
            key=data["key"],
            active=bool(data["active"]),
            tenant_id=data["tenantId"],
        )


def _to_date(value: str) -> date:
    # Older records stored full ISO datetimes
    if "T" in value:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    return date.fromisoformat(value)
