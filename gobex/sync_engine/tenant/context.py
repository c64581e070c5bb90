"""
Tenant context for the Gobex sync engine.

The TenantContext answers one question: which data partition is active.
Every Local Store and Sync Orchestrator call is parameterized by it.

Tenant ids are opaque strings derived from a license (the UserLot id).
None denotes the privileged owner partition, which is exempt from
licensing and synchronization. A context that nobody has logged into
is unset: it points at no partition at all, not even the owner's.

Invariants:
    - A tenant id is never the empty string
    - Tenant ids only contain [A-Za-z0-9_-]
    - namespace_for() output is lowercase and injective, so ids that
      differ only by case never share a file on a case-insensitive
      filesystem
    - The owner namespace cannot collide with any tenant namespace
    - Only an explicit set_tenant(None) selects the owner partition

How to change safely:
    - Widening the allowed alphabet requires extending the escaping in
      namespace_for() and tenant_from_namespace() together
    - Never change namespace_for() output for existing ids; it names the
      files holding local data
    - MAX_TENANT_ID_LENGTH bounds the file name length (worst case two
      characters per id character)
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

OWNER_NAMESPACE = "owner"
TENANT_NAMESPACE_PREFIX = "tenant_"
MAX_TENANT_ID_LENGTH = 100

_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_ESCAPE = "_"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()


class InvalidTenantError(ValueError):
    """Tenant id is malformed.

    This is a programming error: it is never retried and must not be
    confused with a transport failure.
    """

    def __init__(self, tenant_id: object, reason: str) -> None:
        super().__init__(f"Invalid tenant id {tenant_id!r}: {reason}")
        self.tenant_id = tenant_id
        self.reason = reason


class NoActiveTenantError(RuntimeError):
    """No partition is active because nobody is logged in."""


def validate_tenant_id(tenant_id: str | None) -> str | None:
    """Validate a tenant id.

    Args:
        tenant_id: Tenant identifier, or None for the owner partition

    Returns:
        The tenant id unchanged

    Raises:
        InvalidTenantError: If the id is empty, not a string, too long or
            contains characters outside [A-Za-z0-9_-]
    """
    if tenant_id is None:
        return None
    if not isinstance(tenant_id, str):
        raise InvalidTenantError(tenant_id, "must be a string")
    if tenant_id == "":
        raise InvalidTenantError(tenant_id, "empty string is not a tenant; use None for owner")
    if len(tenant_id) > MAX_TENANT_ID_LENGTH:
        raise InvalidTenantError(tenant_id, f"longer than {MAX_TENANT_ID_LENGTH} characters")
    if not _TENANT_ID_RE.match(tenant_id):
        raise InvalidTenantError(tenant_id, "only letters, digits, '-' and '_' are allowed")
    return tenant_id


def is_owner(tenant_id: str | None) -> bool:
    """Whether the id denotes the owner partition."""
    return tenant_id is None


def namespace_for(tenant_id: str | None) -> str:
    """Derive the storage namespace of a partition.

    Uppercase letters are written as "_" plus the lowercase letter and
    "_" itself is doubled, so "UL-4F2A9C" becomes "tenant__u_l-4_f2_a9_c"
    and "T1" and "t1" stay apart.

    Args:
        tenant_id: Tenant identifier, or None for the owner partition

    Returns:
        "owner" for the owner partition, "tenant_<escaped id>" otherwise

    Raises:
        InvalidTenantError: If the id is malformed
    """
    validate_tenant_id(tenant_id)
    if tenant_id is None:
        return OWNER_NAMESPACE
    escaped = []
    for char in tenant_id:
        if char == _ESCAPE:
            escaped.append(_ESCAPE * 2)
        elif char.isupper():
            escaped.append(_ESCAPE + char.lower())
        else:
            escaped.append(char)
    return TENANT_NAMESPACE_PREFIX + "".join(escaped)


def tenant_from_namespace(namespace: str) -> str | None:
    """Recover the tenant id from a namespace built by namespace_for().

    Returns:
        The tenant id, or None when the name is not a valid tenant
        namespace (including the owner namespace)
    """
    if not namespace.startswith(TENANT_NAMESPACE_PREFIX):
        return None
    encoded = namespace[len(TENANT_NAMESPACE_PREFIX):]
    chars = []
    i = 0
    while i < len(encoded):
        char = encoded[i]
        if char != _ESCAPE:
            if char.isupper():
                return None
            chars.append(char)
            i += 1
            continue
        if i + 1 >= len(encoded):
            return None
        nxt = encoded[i + 1]
        if nxt == _ESCAPE:
            chars.append(_ESCAPE)
        elif nxt.isalpha() and nxt.islower():
            chars.append(nxt.upper())
        else:
            return None
        i += 2
    tenant_id = "".join(chars)
    try:
        validate_tenant_id(tenant_id)
    except InvalidTenantError:
        return None
    return tenant_id


class TenantContext:
    """Holds the active tenant partition.

    Changing the tenant is idempotent and has no side effects; callers
    stop/start sync and drop caches themselves. The application runs one
    session per process, so one context is shared by the session, but
    tests may create as many as they need.

    A new context is unset until set_tenant() is called. set_tenant(None)
    selects the owner partition; clear() returns to the unset state.

    Example:
        >>> ctx = TenantContext()
        >>> ctx.is_set
        False
        >>> ctx.set_tenant("UL-4F2A9C")
        >>> ctx.get_tenant()
        'UL-4F2A9C'
        >>> ctx.set_tenant(None)  # owner partition
        >>> ctx.clear()  # no partition
    """

    def __init__(self, tenant_id: str | None | _Unset = UNSET) -> None:
        if tenant_id is not UNSET:
            validate_tenant_id(tenant_id)
        self._tenant_id = tenant_id

    def set_tenant(self, tenant_id: str | None) -> None:
        """Set the active tenant (None for the owner partition).

        Raises:
            InvalidTenantError: If the id is malformed
        """
        validate_tenant_id(tenant_id)
        if tenant_id != self._tenant_id:
            logger.info(
                "Tenant context switched",
                extra={"tenant_id": tenant_id or OWNER_NAMESPACE},
            )
        self._tenant_id = tenant_id

    def get_tenant(self) -> str | None:
        """Get the active tenant (None for the owner partition).

        Raises:
            NoActiveTenantError: If the context is unset
        """
        if self._tenant_id is UNSET:
            raise NoActiveTenantError("No tenant is active; log in first")
        return self._tenant_id

    def clear(self) -> None:
        """Leave every partition, including the owner's."""
        if self._tenant_id is not UNSET:
            logger.info("Tenant context cleared")
        self._tenant_id = UNSET

    @property
    def is_set(self) -> bool:
        """Whether a partition (tenant or owner) is active."""
        return self._tenant_id is not UNSET

    @property
    def is_owner(self) -> bool:
        """Whether the owner partition is active."""
        return self._tenant_id is None

    @property
    def namespace(self) -> str:
        """Storage namespace of the active partition."""
        return namespace_for(self.get_tenant())

    def __repr__(self) -> str:
        return f"TenantContext(tenant_id={self._tenant_id!r})"
