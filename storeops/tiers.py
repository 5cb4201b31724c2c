"""Effective tier resolution and tier-level feature/limit queries.

A tenant that belongs to a chain can be covered by both its own subscription and
its organization's. The helpers here pick the tier that actually applies and
answer feature and limit questions against it. Every query is total: missing or
malformed data answers "no access" instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .constants import LEVEL_ORDER, level_for_tier_key, normalize_feature_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierInfo:
    id: str
    name: str
    level: str = "starter"
    source: str = "tenant"
    features: frozenset[str] = field(default_factory=frozenset)
    # None means unlimited.
    limits: Mapping[str, int | None] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedTier:
    effective: TierInfo
    tenant_tier: TierInfo | None
    organization_tier: TierInfo | None
    is_chain: bool


@dataclass(frozen=True)
class UsageSnapshot:
    products: int = 0
    locations: int = 0
    users: int = 0
    api_calls: int = 0
    storage_gb: float = 0.0

    def get(self, usage_key: str) -> float:
        attribute = {
            "products": "products",
            "locations": "locations",
            "users": "users",
            "apiCalls": "api_calls",
            "storageGB": "storage_gb",
        }.get(usage_key)
        if attribute is None:
            return 0
        return getattr(self, attribute)

    def to_api(self) -> dict[str, float]:
        return {
            "products": self.products,
            "locations": self.locations,
            "users": self.users,
            "apiCalls": self.api_calls,
            "storageGB": self.storage_gb,
        }


DEFAULT_TIER = TierInfo(
    id="starter",
    name="Starter",
    level="starter",
    source="tenant",
    features=frozenset(),
    limits={"maxProducts": 0, "maxLocations": 1, "maxUsers": 1},
)


def limit_key_for_usage(usage_key: str) -> str:
    """Map a usage counter name to its limit name, e.g. ``products`` -> ``maxProducts``."""
    if not usage_key:
        return usage_key
    return f"max{usage_key[0].upper()}{usage_key[1:]}"


def _level_rank(tier: TierInfo) -> int:
    return LEVEL_ORDER.get(tier.level, 0)


def resolve_tier(
    organization_tier: TierInfo | None,
    tenant_tier: TierInfo | None,
    is_chain: bool,
) -> ResolvedTier:
    if not is_chain or organization_tier is None:
        effective = tenant_tier or DEFAULT_TIER
    elif tenant_tier is None:
        effective = organization_tier
    elif _level_rank(organization_tier) > _level_rank(tenant_tier):
        effective = organization_tier
    else:
        effective = tenant_tier

    logger.debug(
        "Resolved effective tier %s (chain=%s, tenant=%s, organization=%s)",
        effective.id,
        is_chain,
        tenant_tier.id if tenant_tier else None,
        organization_tier.id if organization_tier else None,
    )
    return ResolvedTier(
        effective=effective,
        tenant_tier=tenant_tier,
        organization_tier=organization_tier,
        is_chain=is_chain,
    )


def has_feature(tier: ResolvedTier | None, feature_id: str) -> bool:
    if tier is None or not feature_id:
        return False
    return normalize_feature_id(feature_id) in tier.effective.features


def _limit_for(tier: ResolvedTier, limit_key: str) -> int | None:
    value = tier.effective.limits.get(limit_key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_limit_reached(tier: ResolvedTier | None, limit_key: str, current_usage: float) -> bool:
    if tier is None:
        return False
    limit = _limit_for(tier, limit_key)
    if limit is None:
        return False
    return current_usage >= limit


def get_usage_percentage(tier: ResolvedTier | None, limit_key: str, current_usage: float) -> float:
    if tier is None:
        return 0
    limit = _limit_for(tier, limit_key)
    if limit is None:
        return 100
    if limit <= 0:
        return 100
    return max(0.0, min(100.0, current_usage / limit * 100))


def _coerce_limits(raw: Any) -> dict[str, int | None]:
    if not isinstance(raw, Mapping):
        return {}
    limits: dict[str, int | None] = {}
    for key, value in raw.items():
        if value is None or value == -1:
            limits[str(key)] = None
            continue
        try:
            limits[str(key)] = int(value)
        except (TypeError, ValueError):
            limits[str(key)] = None
    return limits


def tier_from_api(payload: Mapping[str, Any] | None, source: str = "tenant") -> TierInfo | None:
    """Build a ``TierInfo`` from the tier JSON served by the backend.

    Accepts both snake_case and camelCase keys. Returns None when the payload
    carries no tier key.
    """
    if not isinstance(payload, Mapping):
        return None
    tier_key = payload.get("tier_key") or payload.get("tierKey")
    if not tier_key:
        return None

    features = payload.get("tier_features_list") or payload.get("features") or []
    if not isinstance(features, (list, tuple, set, frozenset)):
        features = []

    return TierInfo(
        id=str(tier_key),
        name=str(
            payload.get("display_name")
            or payload.get("displayName")
            or payload.get("name")
            or tier_key
        ),
        level=level_for_tier_key(str(tier_key)),
        source=source,
        features=frozenset(str(feature) for feature in features),
        limits=_coerce_limits(payload.get("limits")),
    )


def usage_from_api(payload: Mapping[str, Any] | None) -> UsageSnapshot:
    if not isinstance(payload, Mapping):
        return UsageSnapshot()

    def _number(key: str) -> float:
        value = payload.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return value

    return UsageSnapshot(
        products=int(_number("products")),
        locations=int(_number("locations")),
        users=int(_number("users")),
        api_calls=int(_number("apiCalls")),
        storage_gb=float(_number("storageGB")),
    )


def resolve_from_api(payload: Mapping[str, Any] | None) -> ResolvedTier:
    """Resolve the effective tier from a ``/tenants/{id}/tier`` response body."""
    if not isinstance(payload, Mapping):
        return resolve_tier(None, None, False)
    return resolve_tier(
        tier_from_api(payload.get("organizationTier"), source="organization"),
        tier_from_api(payload.get("tenantTier"), source="tenant"),
        bool(payload.get("isChain")),
    )


def tier_to_api(tier: TierInfo | None) -> dict[str, Any] | None:
    if tier is None:
        return None
    return {
        "tierKey": tier.id,
        "displayName": tier.name,
        "level": tier.level,
        "source": tier.source,
        "features": sorted(tier.features),
        "limits": dict(tier.limits),
    }
