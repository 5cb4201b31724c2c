"""Tier catalogue, feature aliases and role permission tables."""

from __future__ import annotations

from typing import Final

TierKey = str
TierLevel = str

LEVEL_ORDER: Final[dict[TierLevel, int]] = {
    "starter": 1,
    "pro": 2,
    "enterprise": 3,
}

TIER_KEY_LEVELS: Final[dict[TierKey, TierLevel]] = {
    "google_only": "starter",
    "starter": "starter",
    "professional": "pro",
    "enterprise": "enterprise",
    "organization": "enterprise",
    "chain_starter": "starter",
    "chain_professional": "pro",
    "chain_enterprise": "enterprise",
}

# Legacy and alternate feature names seen in clients, normalized before lookup.
FEATURE_ALIASES: Final[dict[str, str]] = {
    "barcode_scan": "product_scanning",
    "quick_start_wizard_full": "quick_start_wizard",
    "propagation": "propagation_products",
}

TIER_FEATURES: Final[dict[TierKey, tuple[str, ...]]] = {
    "google_only": (
        "google_shopping",
        "google_merchant_center",
        "basic_product_pages",
        "qr_codes_512",
        "performance_analytics",
    ),
    "starter": (
        "storefront",
        "product_search",
        "mobile_responsive",
        "enhanced_seo",
        "basic_categories",
        "category_quick_start",
    ),
    "professional": (
        "quick_start_wizard",
        "product_scanning",
        "gbp_integration",
        "custom_branding",
        "business_logo",
        "qr_codes_1024",
        "image_gallery_5",
        "interactive_maps",
        "privacy_mode",
        "custom_marketing_copy",
        "priority_support",
    ),
    "enterprise": (
        "unlimited_skus",
        "white_label",
        "custom_domain",
        "qr_codes_2048",
        "image_gallery_10",
        "api_access",
        "advanced_analytics",
        "dedicated_account_manager",
        "sla_guarantee",
        "custom_integrations",
    ),
    "organization": (
        "propagation_products",
        "propagation_categories",
        "propagation_gbp_sync",
        "propagation_hours",
        "propagation_profile",
        "propagation_flags",
        "propagation_roles",
        "propagation_brand",
        "organization_dashboard",
        "hero_location",
        "strategic_testing",
        "unlimited_locations",
        "shared_sku_pool",
        "centralized_control",
        "api_access",
    ),
    "chain_starter": (
        "storefront",
        "product_search",
        "mobile_responsive",
        "enhanced_seo",
        "multi_location_5",
    ),
    "chain_professional": (
        "quick_start_wizard",
        "product_scanning",
        "gbp_integration",
        "custom_branding",
        "qr_codes_1024",
        "image_gallery_5",
        "multi_location_25",
        "basic_propagation",
    ),
    "chain_enterprise": (
        "unlimited_skus",
        "white_label",
        "custom_domain",
        "qr_codes_2048",
        "image_gallery_10",
        "api_access",
        "unlimited_locations",
        "advanced_propagation",
        "dedicated_account_manager",
    ),
}

# Tiers whose features each tier inherits.
TIER_HIERARCHY: Final[dict[TierKey, tuple[TierKey, ...]]] = {
    "google_only": (),
    "starter": ("google_only",),
    "professional": ("starter", "google_only"),
    "enterprise": ("professional", "starter", "google_only"),
    "organization": ("professional", "starter", "google_only"),
    "chain_starter": ("starter", "google_only"),
    "chain_professional": ("professional", "starter", "google_only"),
    "chain_enterprise": ("enterprise", "professional", "starter", "google_only"),
}

FEATURE_TIER_MAP: Final[dict[str, TierKey]] = {
    "storefront": "starter",
    "product_search": "starter",
    "mobile_responsive": "starter",
    "enhanced_seo": "starter",
    "category_quick_start": "starter",
    "quick_start_wizard": "professional",
    "product_scanning": "professional",
    "gbp_integration": "professional",
    "custom_branding": "professional",
    "qr_codes_1024": "professional",
    "image_gallery_5": "professional",
    "white_label": "enterprise",
    "custom_domain": "enterprise",
    "qr_codes_2048": "enterprise",
    "image_gallery_10": "enterprise",
    "api_access": "enterprise",
    "propagation_products": "starter",
    "propagation_user_roles": "starter",
    "propagation_hours": "professional",
    "propagation_profile": "professional",
    "propagation_categories": "professional",
    "propagation_gbp_sync": "professional",
    "propagation_feature_flags": "professional",
    "propagation_brand_assets": "organization",
    "propagation_selective": "organization",
    "propagation_scheduling": "organization",
    "propagation_rollback": "organization",
    "organization_dashboard": "organization",
    "hero_location": "organization",
    "strategic_testing": "organization",
}

TIER_DISPLAY_NAMES: Final[dict[TierKey, str]] = {
    "google_only": "Google-Only",
    "starter": "Starter",
    "professional": "Professional",
    "enterprise": "Enterprise",
    "organization": "Organization",
    "chain_starter": "Chain Starter",
    "chain_professional": "Chain Professional",
    "chain_enterprise": "Chain Enterprise",
}

TIER_PRICING: Final[dict[TierKey, int]] = {
    "google_only": 29,
    "starter": 49,
    "professional": 499,
    "enterprise": 999,
    "organization": 999,
    "chain_starter": 199,
    "chain_professional": 1999,
    "chain_enterprise": 4999,
}

# None means unlimited.
TIER_LIMITS: Final[dict[TierKey, dict[str, int | None]]] = {
    "google_only": {"maxProducts": 250, "maxLocations": 1, "maxUsers": 1},
    "starter": {"maxProducts": 500, "maxLocations": 1, "maxUsers": 3},
    "professional": {"maxProducts": 5000, "maxLocations": 1, "maxUsers": 10},
    "enterprise": {"maxProducts": None, "maxLocations": 1, "maxUsers": None},
    "organization": {"maxProducts": None, "maxLocations": None, "maxUsers": None},
    "chain_starter": {"maxProducts": 2500, "maxLocations": 5, "maxUsers": 15},
    "chain_professional": {"maxProducts": 25000, "maxLocations": 25, "maxUsers": 100},
    "chain_enterprise": {"maxProducts": None, "maxLocations": None, "maxUsers": None},
}

# Tiers a subscription webhook may assign. google_only is reserved for expired trials.
BILLABLE_TIERS: Final[frozenset[TierKey]] = frozenset(
    {"google_only", "starter", "professional", "enterprise", "organization"}
)

# Subscription states that leave a tenant in read-only mode.
INACTIVE_SUBSCRIPTION_STATUSES: Final[frozenset[str]] = frozenset({"canceled", "expired"})

PLATFORM_BYPASS_ROLES: Final[frozenset[str]] = frozenset(
    {"PLATFORM_ADMIN", "PLATFORM_SUPPORT", "ADMIN"}
)

ROLE_PERMISSIONS: Final[dict[str, frozenset[str]]] = {
    "OWNER": frozenset({"canView", "canEdit", "canManage", "canSupport", "canAdmin"}),
    "ADMIN": frozenset({"canView", "canEdit", "canManage", "canSupport"}),
    "SUPPORT": frozenset({"canView", "canEdit", "canManage", "canSupport"}),
    "MANAGER": frozenset({"canView", "canEdit", "canManage", "canSupport"}),
    "MEMBER": frozenset({"canView", "canEdit"}),
    "VIEWER": frozenset({"canView"}),
}

PERMISSION_LABELS: Final[dict[str, str]] = {
    "canView": "view",
    "canEdit": "edit",
    "canManage": "manage",
    "canSupport": "perform this action",
    "canAdmin": "access admin features",
}

# (badge text, tooltip, css color class) keyed by normalized feature id.
FEATURE_BADGES: Final[dict[str, tuple[str, str, str]]] = {
    "propagation_products": (
        "ORG",
        "Requires Organization tier - Upgrade to propagate to all locations",
        "bg-gradient-to-r from-blue-600 to-cyan-600",
    ),
    "barcode_scan": (
        "PRO+",
        "Requires Professional tier or higher - Upgrade for barcode scanning",
        "bg-gradient-to-r from-purple-600 to-pink-600",
    ),
    "quick_start_wizard": (
        "PRO+",
        "Requires Professional tier or higher - Upgrade for Quick Start wizard",
        "bg-gradient-to-r from-purple-600 to-pink-600",
    ),
    "storefront": (
        "STARTER+",
        "Requires Starter tier or higher - Upgrade for public storefront",
        "bg-blue-600",
    ),
    "category_quick_start": (
        "STARTER+",
        "Requires Starter tier or higher - Upgrade for category quick start",
        "bg-blue-600",
    ),
}

DEFAULT_BADGE: Final[tuple[str, str, str]] = (
    "UPGRADE",
    "Upgrade to access this feature",
    "bg-gray-600",
)


def is_valid_tier(tier_key: str) -> bool:
    return tier_key in TIER_FEATURES


def level_for_tier_key(tier_key: str | None) -> TierLevel:
    if not tier_key:
        return "starter"
    return TIER_KEY_LEVELS.get(tier_key, "starter")


def normalize_feature_id(feature_id: str) -> str:
    return FEATURE_ALIASES.get(feature_id, feature_id)


def tier_feature_set(tier_key: str) -> frozenset[str]:
    """All features of a tier, including those inherited from lower tiers."""
    features = set(TIER_FEATURES.get(tier_key, ()))
    for inherited in TIER_HIERARCHY.get(tier_key, ()):
        features.update(TIER_FEATURES.get(inherited, ()))
    return frozenset(features)


def check_tier_feature(tier_key: str, feature: str) -> bool:
    return feature in tier_feature_set(tier_key)


def get_required_tier(feature: str) -> TierKey:
    return FEATURE_TIER_MAP.get(feature, "professional")


def get_tier_display_name(tier_key: str) -> str:
    return TIER_DISPLAY_NAMES.get(tier_key, tier_key)


def get_tier_pricing(tier_key: str) -> int:
    return TIER_PRICING.get(tier_key, 0)


def calculate_upgrade_requirements(current_tier: str, feature: str) -> dict:
    if check_tier_feature(current_tier, feature):
        return {"required": False}

    target_tier = get_required_tier(feature)
    target_price = get_tier_pricing(target_tier)
    current_price = get_tier_pricing(current_tier)
    return {
        "required": True,
        "target_tier": target_tier,
        "target_tier_display": get_tier_display_name(target_tier),
        "target_price": target_price,
        "current_price": current_price,
        "upgrade_cost": target_price - current_price,
    }
