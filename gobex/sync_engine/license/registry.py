"""
License registry for the Gobex sync engine.

The registry is owner-side administration of tenants: user lots and their
licenses. It lives in the owner partition of the local store (collections
"user_lots" and "licenses"), which is never synchronized.

Invariants:
    - Usernames are unique across all lots and the owner account
    - Renewing a license deactivates the tenant's previous licenses, so at
      most one active license exists per tenant
    - Tenant ids are generated as UL-XXXXXX and always pass tenant validation
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from datetime import date

from ..backend import utcnow
from ..store import LocalStore
from .models import (
    LICENSE_CATALOGUE,
    Credentials,
    License,
    LotStatus,
    UserLot,
    add_months,
)

logger = logging.getLogger(__name__)

USER_LOTS = "user_lots"
LICENSES = "licenses"

_KEY_ALPHABET = string.ascii_uppercase + string.digits


class LicenseError(Exception):
    """Base exception for license administration."""

    pass


class DuplicateUsernameError(LicenseError):
    """Username already belongs to another account."""

    def __init__(self, username: str) -> None:
        super().__init__(f"Username '{username}' already exists")
        self.username = username


class UserLotNotFoundError(LicenseError):
    """No user lot with this id."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"User lot not found: {tenant_id}")
        self.tenant_id = tenant_id


class UnknownLicenseTypeError(LicenseError):
    """License type is not in the catalogue."""

    def __init__(self, license_type: str) -> None:
        super().__init__(
            f"Unknown license type '{license_type}'. "
            f"Must be one of: {', '.join(LICENSE_CATALOGUE)}"
        )
        self.license_type = license_type


def generate_license_key(license_type: str) -> str:
    """Build a key like KLÉ-1730000000000-X7K2Q."""
    suffix = "".join(secrets.choice(_KEY_ALPHABET) for _ in range(5))
    return f"{license_type[:3].upper()}-{int(time.time() * 1000)}-{suffix}"


class LicenseRegistry:
    """Owner-side store of user lots and licenses.

    Example:
        >>> registry = LicenseRegistry(store, reserved_usernames={"owner"})
        >>> lot, lic = await registry.create_user_lot_with_license(
        ...     "gerant", "s3cret", "serveur", "s3cret", "Kléoun"
        ... )
        >>> lic.end_date  # three months from today
    """

    def __init__(self, store: LocalStore, reserved_usernames: set[str] | None = None) -> None:
        self.store = store
        self.reserved_usernames = set(reserved_usernames or ())

    async def list_user_lots(self) -> list[UserLot]:
        return [UserLot.from_dict(r) for r in await self.store.get(None, USER_LOTS)]

    async def get_user_lot(self, tenant_id: str) -> UserLot | None:
        record = await self.store.get_record(None, USER_LOTS, tenant_id)
        return UserLot.from_dict(record) if record else None

    async def list_licenses(self, tenant_id: str | None = None) -> list[License]:
        licenses = [License.from_dict(r) for r in await self.store.get(None, LICENSES)]
        if tenant_id is not None:
            licenses = [lic for lic in licenses if lic.tenant_id == tenant_id]
        return licenses

    async def save_user_lot(self, lot: UserLot) -> None:
        await self.store.put(None, USER_LOTS, lot.to_dict())

    async def save_license(self, lic: License) -> None:
        await self.store.put(None, LICENSES, lic.to_dict())

    async def _new_tenant_id(self) -> str:
        while True:
            tenant_id = f"UL-{secrets.token_hex(3).upper()}"
            if await self.get_user_lot(tenant_id) is None:
                return tenant_id

    async def create_user_lot_with_license(
        self,
        manager_username: str,
        manager_password: str,
        employee_username: str,
        employee_password: str,
        license_type: str,
        start_date: date | None = None,
    ) -> tuple[UserLot, License]:
        """Create a tenant with its first license.

        Args:
            manager_username: Manager login
            manager_password: Manager password
            employee_username: Employee login
            employee_password: Employee password
            license_type: Catalogue name (Kpêvi, Kléoun, Agbon, Baba)
            start_date: First valid day (default: today)

        Returns:
            The new UserLot and License

        Raises:
            UnknownLicenseTypeError: If the type is not in the catalogue
            DuplicateUsernameError: If a username is already taken
        """
        catalogue_entry = LICENSE_CATALOGUE.get(license_type)
        if catalogue_entry is None:
            raise UnknownLicenseTypeError(license_type)

        if manager_username == employee_username:
            raise DuplicateUsernameError(employee_username)
        taken = set(self.reserved_usernames)
        for lot in await self.list_user_lots():
            taken |= lot.usernames()
        for username in (manager_username, employee_username):
            if username in taken:
                raise DuplicateUsernameError(username)

        tenant_id = await self._new_tenant_id()
        lot = UserLot(
            id=tenant_id,
            manager=Credentials.create(manager_username, manager_password),
            employee=Credentials.create(employee_username, employee_password),
            created_at=utcnow(),
        )
        lic = self._build_license(tenant_id, license_type, start_date or date.today())

        await self.save_user_lot(lot)
        await self.save_license(lic)

        logger.info(
            "Created user lot with license",
            extra={"tenant_id": tenant_id, "license_type": license_type, "end_date": str(lic.end_date)},
        )
        return lot, lic

    def _build_license(self, tenant_id: str, license_type: str, start_date: date) -> License:
        entry = LICENSE_CATALOGUE[license_type]
        return License(
            id=f"LIC-{tenant_id}-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}",
            type=entry.name,
            duration_months=entry.duration_months,
            price=entry.price,
            start_date=start_date,
            end_date=add_months(start_date, entry.duration_months),
            key=generate_license_key(entry.name),
            active=True,
            tenant_id=tenant_id,
        )

    async def _set_status(self, tenant_id: str, status: LotStatus) -> UserLot:
        lot = await self.get_user_lot(tenant_id)
        if lot is None:
            raise UserLotNotFoundError(tenant_id)
        lot.status = status
        await self.save_user_lot(lot)
        logger.info("User lot status changed", extra={"tenant_id": tenant_id, "status": status.value})
        return lot

    async def suspend_user_lot(self, tenant_id: str) -> UserLot:
        return await self._set_status(tenant_id, LotStatus.SUSPENDED)

    async def reactivate_user_lot(self, tenant_id: str) -> UserLot:
        return await self._set_status(tenant_id, LotStatus.ACTIVE)

    async def renew_license(
        self, tenant_id: str, license_type: str, start_date: date | None = None
    ) -> License:
        """Issue a new license and deactivate the tenant's previous ones.

        Raises:
            UserLotNotFoundError: If the tenant does not exist
            UnknownLicenseTypeError: If the type is not in the catalogue
        """
        if license_type not in LICENSE_CATALOGUE:
            raise UnknownLicenseTypeError(license_type)
        if await self.get_user_lot(tenant_id) is None:
            raise UserLotNotFoundError(tenant_id)

        for previous in await self.list_licenses(tenant_id):
            if previous.active:
                previous.active = False
                await self.save_license(previous)

        lic = self._build_license(tenant_id, license_type, start_date or date.today())
        await self.save_license(lic)
        logger.info(
            "Renewed license",
            extra={"tenant_id": tenant_id, "license_type": license_type, "end_date": str(lic.end_date)},
        )
        return lic

    async def deactivate_license(self, license_id: str) -> bool:
        """Clear a license's active flag.

        Returns:
            True if the license existed
        """
        record = await self.store.get_record(None, LICENSES, license_id)
        if record is None:
            return False
        lic = License.from_dict(record)
        lic.active = False
        await self.save_license(lic)
        return True

    async def delete_user_lot(self, tenant_id: str) -> bool:
        """Remove a lot and its licenses from the registry."""
        for lic in await self.list_licenses(tenant_id):
            await self.store.delete(None, LICENSES, lic.id)
        return await self.store.delete(None, USER_LOTS, tenant_id)
