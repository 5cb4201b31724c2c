"""Bridges stored tenants, users and hours into the pure tier and hours engines."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .constants import TIER_LIMITS, get_tier_display_name, tier_feature_set
from .hours import SpecialHourOverride, WeeklyPeriod
from .models import BusinessHours, InventoryItem, Organization, Tenant, TenantMembership, User
from .permissions import UserSnapshot
from .tiers import ResolvedTier, UsageSnapshot, resolve_from_api, tier_to_api


def tier_payload(tier_key: str) -> dict:
    """Catalogue entry for a tier key, in the backend's snake_case JSON shape."""
    return {
        "tier_key": tier_key,
        "display_name": get_tier_display_name(tier_key),
        "tier_features_list": sorted(tier_feature_set(tier_key)),
        "limits": dict(TIER_LIMITS.get(tier_key, {})),
    }


def tenant_tier_response(tenant: Tenant) -> dict:
    organization: Organization | None = tenant.organization
    body = {
        "tenantTier": tier_payload(tenant.subscription_tier),
        "organizationTier": tier_payload(organization.subscription_tier) if organization else None,
        "isChain": organization is not None,
    }
    body["effectiveTier"] = tier_to_api(resolve_from_api(body).effective)
    return body


def resolve_tenant_tier(tenant: Tenant) -> ResolvedTier:
    return resolve_from_api(tenant_tier_response(tenant))


def tenant_usage(db: Session, tenant: Tenant) -> UsageSnapshot:
    products = db.scalar(
        select(func.count(InventoryItem.id)).where(InventoryItem.tenant_id == tenant.id)
    ) or 0
    users = db.scalar(
        select(func.count(TenantMembership.id)).where(TenantMembership.tenant_id == tenant.id)
    ) or 0
    if tenant.organization_id is not None:
        locations = db.scalar(
            select(func.count(Tenant.id)).where(Tenant.organization_id == tenant.organization_id)
        ) or 0
    else:
        locations = 1
    return UsageSnapshot(products=products, locations=locations, users=users)


def user_snapshot(user: User | None) -> UserSnapshot | None:
    if user is None:
        return None
    return UserSnapshot(
        id=user.id,
        email=user.email,
        role=user.role,
        tenants={str(membership.tenant_id): membership.role for membership in user.memberships},
    )


def stored_periods(hours: BusinessHours | None) -> list[WeeklyPeriod]:
    if hours is None:
        return []
    periods: list[WeeklyPeriod] = []
    for raw in hours.periods or []:
        if not isinstance(raw, dict):
            continue
        periods.append(
            WeeklyPeriod(
                day=str(raw.get("day", "")).upper(),
                open=str(raw.get("open", "")),
                close=str(raw.get("close", "")),
            )
        )
    return periods


def stored_overrides(tenant: Tenant) -> list[SpecialHourOverride]:
    return [
        SpecialHourOverride(
            date=row.date,
            is_closed=row.is_closed,
            open=row.open,
            close=row.close,
            note=row.note,
        )
        for row in tenant.special_hours
    ]


def override_to_api(override: SpecialHourOverride) -> dict:
    return {
        "date": override.date.isoformat(),
        "isClosed": override.is_closed,
        "open": override.open,
        "close": override.close,
        "note": override.note,
    }
