"""
License gate: credentials to tenant id and access decision.

Algorithm:
    1. Owner credentials grant access with tenant_id=None, no license check
    2. Otherwise find the UserLot whose manager or employee credentials
       match (restricted to the requested role's slot when one is given)
    3. A suspended lot is refused
    4. A license with tenant_id == lot.id, active and end_date >= today
       must exist
    5. The lot id is returned as the canonical tenant id with the license

Invariants:
    - Failure reasons stay distinguishable (invalid credentials, suspended,
      no active license, license expired)
    - Expiry is computed from dates at every login, never cached
    - A license whose end date is today still grants access
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import Enum

from .models import License, Role, UserLot
from .registry import LicenseRegistry

logger = logging.getLogger(__name__)


class LoginFailure(str, Enum):
    """Why a login was refused."""

    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_SUSPENDED = "account_suspended"
    NO_ACTIVE_LICENSE = "no_active_license"
    LICENSE_EXPIRED = "license_expired"


_MESSAGES = {
    LoginFailure.INVALID_CREDENTIALS: "Invalid username or password",
    LoginFailure.ACCOUNT_SUSPENDED: "Account suspended. Contact the owner.",
    LoginFailure.NO_ACTIVE_LICENSE: "No active license found for this account",
    LoginFailure.LICENSE_EXPIRED: "License expired. Contact the owner.",
}


@dataclass
class LoginResult:
    """Outcome of a login.

    Attributes:
        success: Whether access is granted
        tenant_id: Tenant to activate (None for the owner)
        role: Role the user logged in as
        license: License conferring access (None for the owner)
        message: Human-readable outcome
        failure: Reason code when success is False
    """

    success: bool
    tenant_id: str | None = None
    role: Role | None = None
    license: License | None = None
    message: str = ""
    failure: LoginFailure | None = None

    @property
    def is_owner(self) -> bool:
        return self.success and self.role == Role.OWNER

    @classmethod
    def refused(cls, failure: LoginFailure, license: License | None = None) -> LoginResult:
        return cls(success=False, failure=failure, message=_MESSAGES[failure], license=license)


class LicenseGate:
    """Resolves (username, password, role) into a tenant and a license.

    Attributes:
        registry: Source of user lots and licenses
        owner_username: Distinguished owner login
        today: Clock returning the current local date

    Example:
        >>> gate = LicenseGate(registry, "owner", "pw")
        >>> result = await gate.login("gerant", "s3cret", "manager")
        >>> if result.success:
        ...     ctx.set_tenant(result.tenant_id)
    """

    def __init__(
        self,
        registry: LicenseRegistry,
        owner_username: str,
        owner_password: str | None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.registry = registry
        self.owner_username = owner_username
        self._owner_password = owner_password
        self.today = today

    def _is_owner(self, username: str, password: str) -> bool:
        if not self._owner_password:
            return False
        return username == self.owner_username and hmac.compare_digest(
            password.encode("utf-8"), self._owner_password.encode("utf-8")
        )

    async def _find_lot(self, username: str, password: str, role: Role | None) -> tuple[UserLot, Role] | None:
        for lot in await self.registry.list_user_lots():
            if role in (None, Role.MANAGER) and lot.manager.matches(username, password):
                return lot, Role.MANAGER
            if role in (None, Role.EMPLOYEE) and lot.employee.matches(username, password):
                return lot, Role.EMPLOYEE
        return None

    def _pick_license(self, licenses: list[License], today: date) -> tuple[License | None, bool]:
        """Return (granting license, whether an active but expired one exists)."""
        active = [lic for lic in licenses if lic.active]
        granting = [lic for lic in active if lic.grants_access(today)]
        if granting:
            return max(granting, key=lambda lic: lic.end_date), False
        return None, bool(active)

    async def login(self, username: str, password: str, role: str | Role | None = None) -> LoginResult:
        """Authenticate and check the license.

        Args:
            username: Login name
            password: Password
            role: owner, manager or employee (French labels accepted);
                None matches any slot

        Returns:
            LoginResult; never raises for a refused login
        """
        try:
            requested = Role.parse(role)
        except ValueError:
            logger.warning("Login with unknown role", extra={"role": str(role)})
            return LoginResult.refused(LoginFailure.INVALID_CREDENTIALS)

        if requested in (None, Role.OWNER) and self._is_owner(username, password):
            logger.info("Owner login, unrestricted access")
            return LoginResult(success=True, tenant_id=None, role=Role.OWNER, message="Owner access")

        if requested == Role.OWNER:
            return LoginResult.refused(LoginFailure.INVALID_CREDENTIALS)

        found = await self._find_lot(username, password, requested)
        if found is None:
            logger.warning("Login refused: invalid credentials")
            return LoginResult.refused(LoginFailure.INVALID_CREDENTIALS)
        lot, matched_role = found

        if not lot.is_active:
            logger.warning("Login refused: lot suspended", extra={"tenant_id": lot.id})
            return LoginResult.refused(LoginFailure.ACCOUNT_SUSPENDED)

        today = self.today()
        lic, has_expired = self._pick_license(await self.registry.list_licenses(lot.id), today)
        if lic is None:
            failure = LoginFailure.LICENSE_EXPIRED if has_expired else LoginFailure.NO_ACTIVE_LICENSE
            logger.warning(
                "Login refused: no valid license",
                extra={"tenant_id": lot.id, "reason": failure.value},
            )
            return LoginResult.refused(failure)

        logger.info(
            "Login granted",
            extra={"tenant_id": lot.id, "role": matched_role.value, "license_end": str(lic.end_date)},
        )
        return LoginResult(
            success=True,
            tenant_id=lot.id,
            role=matched_role,
            license=lic,
            message="Login successful",
        )
