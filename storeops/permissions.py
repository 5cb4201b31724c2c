"""Two-level access checks for tenant features.

Level 1 asks whether the tenant's effective tier includes a feature. Level 2 asks
whether the user's role on the tenant allows the kind of action. Platform staff
bypass both. A tier failure is reported before the role is even consulted so the
user sees an upgrade message rather than a role message.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from .constants import (
    DEFAULT_BADGE,
    FEATURE_BADGES,
    PERMISSION_LABELS,
    PLATFORM_BYPASS_ROLES,
    ROLE_PERMISSIONS,
    normalize_feature_id,
)
from .tiers import (
    ResolvedTier,
    UsageSnapshot,
    get_usage_percentage,
    has_feature,
    is_limit_reached,
    limit_key_for_usage,
)


@dataclass(frozen=True)
class UserSnapshot:
    """Read-only view of the signed-in user, injected by the caller."""

    id: str | int
    email: str = ""
    role: str | None = None
    # tenant id -> tenant role
    tenants: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class TierBadge:
    text: str
    tooltip: str
    color_class: str


def can_bypass_tier_restrictions(user: UserSnapshot | None) -> bool:
    if user is None:
        return False
    return user.role in PLATFORM_BYPASS_ROLES


def resolve_tenant_role(user: UserSnapshot | None, tenant_id: str | None) -> str | None:
    if user is None:
        return None
    if can_bypass_tier_restrictions(user):
        return "OWNER"
    if tenant_id is not None:
        role = user.tenants.get(str(tenant_id))
        if role:
            return role
    if user.role == "PLATFORM_VIEWER":
        return "VIEWER"
    return None


def role_permissions(role: str | None) -> frozenset[str]:
    if not role:
        return frozenset()
    return ROLE_PERMISSIONS.get(role, frozenset())


class TenantAccess:
    """Feature, limit and permission queries for one user on one tenant."""

    def __init__(
        self,
        tier: ResolvedTier | None,
        usage: UsageSnapshot | None = None,
        user: UserSnapshot | None = None,
        tenant_id: str | None = None,
    ) -> None:
        self.tier = tier
        self.usage = usage
        self.user = user
        self.tenant_id = tenant_id
        self.can_support = can_bypass_tier_restrictions(user)
        self.role = resolve_tenant_role(user, tenant_id)

    def has_feature(self, feature_id: str) -> bool:
        if self.can_support:
            return True
        return has_feature(self.tier, feature_id)

    def is_limit_reached(self, usage_key: str) -> bool:
        if self.can_support:
            return False
        if self.tier is None or self.usage is None:
            return False
        return is_limit_reached(
            self.tier,
            limit_key_for_usage(usage_key),
            self.usage.get(usage_key),
        )

    def get_usage_percentage(self, usage_key: str) -> float:
        if self.tier is None or self.usage is None:
            return 0
        return get_usage_percentage(
            self.tier,
            limit_key_for_usage(usage_key),
            self.usage.get(usage_key),
        )

    def has_permission(self, permission_type: str) -> bool:
        """Role check alone, for actions no tier feature governs."""
        if self.can_support:
            return True
        return permission_type in role_permissions(self.role)

    def get_feature_badge(self, feature_id: str) -> TierBadge | None:
        if self.can_support or self.has_feature(feature_id):
            return None
        text, tooltip, color_class = FEATURE_BADGES.get(
            normalize_feature_id(feature_id),
            DEFAULT_BADGE,
        )
        return TierBadge(text=text, tooltip=tooltip, color_class=color_class)

    def can_access(self, feature_id: str, permission_type: str) -> bool:
        if self.can_support:
            return True
        if not self.has_feature(feature_id):
            return False
        return permission_type in role_permissions(self.role)

    def get_access_denied_reason(
        self,
        feature_id: str,
        permission_type: str,
        action_label: str | None = None,
    ) -> str | None:
        if self.can_support:
            return None

        if not self.has_feature(feature_id):
            badge = self.get_feature_badge(feature_id)
            if badge and badge.tooltip:
                return badge.tooltip
            return "This feature is not included in your subscription tier"

        if permission_type not in role_permissions(self.role):
            action = action_label or PERMISSION_LABELS.get(permission_type, "access")
            role_name = self.role or "your role"
            return f"Your role ({role_name}) does not have permission to {action}"

        return None

    def get_feature_badge_with_permission(
        self,
        feature_id: str,
        permission_type: str,
        action_label: str | None = None,
    ) -> TierBadge | None:
        if self.can_support or self.can_access(feature_id, permission_type):
            return None

        reason = self.get_access_denied_reason(feature_id, permission_type, action_label)
        if not reason:
            return None

        tier_badge = self.get_feature_badge(feature_id)
        if tier_badge is None:
            return TierBadge(text="RESTRICTED", tooltip=reason, color_class="bg-amber-600")
        return TierBadge(text=tier_badge.text, tooltip=reason, color_class=tier_badge.color_class)
