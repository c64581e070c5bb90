"""
Tenant module for the Gobex sync engine.

Holds the active tenant partition and the rules for well-formed tenant ids.

Invariants:
    - None is the owner partition, never the empty string
    - Only one tenant is active per context at a time
    - An unset context resolves to no partition
"""

from .context import (
    OWNER_NAMESPACE,
    UNSET,
    InvalidTenantError,
    NoActiveTenantError,
    TenantContext,
    is_owner,
    namespace_for,
    tenant_from_namespace,
    validate_tenant_id,
)

__all__ = [
    "TenantContext",
    "InvalidTenantError",
    "NoActiveTenantError",
    "OWNER_NAMESPACE",
    "UNSET",
    "is_owner",
    "namespace_for",
    "tenant_from_namespace",
    "validate_tenant_id",
]
