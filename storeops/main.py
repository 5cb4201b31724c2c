"""FastAPI app serving tenant tiers, feature access and store hours."""

from __future__ import annotations

import json
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config
from .billing import process_subscription_event
from .constants import (
    INACTIVE_SUBSCRIPTION_STATUSES,
    TIER_FEATURES,
    TIER_LIMITS,
    TIER_PRICING,
    calculate_upgrade_requirements,
    get_tier_display_name,
    is_valid_tier,
    normalize_feature_id,
    tier_feature_set,
)
from .db import get_db, init_db
from .hours import (
    HoursValidationError,
    compute_status,
    ensure_valid_overrides,
    ensure_valid_periods,
    upcoming_special_hours,
)
from .models import (
    ApiToken,
    BillingEvent,
    BusinessHours,
    InventoryItem,
    Organization,
    SpecialHours,
    Tenant,
    TenantMembership,
    User,
)
from .permissions import TenantAccess
from .schemas import (
    AuthResponse,
    BusinessHoursIn,
    BusinessHoursOut,
    FeatureAccessOut,
    ItemCreateRequest,
    ItemOut,
    LocationCreateRequest,
    MemberCreateRequest,
    MemberOut,
    PermissionType,
    RegisterRequest,
    SpecialHoursIn,
    SpecialHoursOut,
    StoreStatusOut,
    TenantOut,
    UserOut,
)
from .security import generate_access_token, hash_token, verify_webhook_signature
from .tenancy import (
    override_to_api,
    resolve_tenant_tier,
    stored_overrides,
    stored_periods,
    tenant_tier_response,
    tenant_usage,
    user_snapshot,
)

logger = logging.getLogger(__name__)

EMAIL_REGEX = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class RequestContext:
    user: User
    token: ApiToken


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Storeops API",
    description="Tenant tiers, feature gating and business hours for multi-location retail storefronts.",
    version="0.1.0",
    lifespan=lifespan,
)


def validate_email(email: str) -> None:
    if not EMAIL_REGEX.match(email):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid email format.",
        )


def _user_for_credentials(
    credentials: HTTPAuthorizationCredentials | None,
    db: Session,
) -> tuple[User, ApiToken] | None:
    if credentials is None or credentials.scheme.lower() != "bearer":
        return None
    token = db.scalar(
        select(ApiToken).where(
            ApiToken.token_hash == hash_token(credentials.credentials),
            ApiToken.revoked_at.is_(None),
        )
    )
    if not token:
        return None
    user = db.get(User, token.user_id)
    if not user:
        return None
    return user, token


def get_request_context(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> RequestContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token.",
        )
    resolved = _user_for_credentials(credentials, db)
    if resolved is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
        )
    user, token = resolved
    return RequestContext(user=user, token=token)


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User | None:
    resolved = _user_for_credentials(credentials, db)
    return resolved[0] if resolved else None


def get_tenant_or_404(db: Session, tenant_id: int) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found.",
        )
    return tenant


def build_access(db: Session, tenant: Tenant, user: User | None) -> TenantAccess:
    return TenantAccess(
        tier=resolve_tenant_tier(tenant),
        usage=tenant_usage(db, tenant),
        user=user_snapshot(user),
        tenant_id=str(tenant.id),
    )


def require_active_subscription(tenant: Tenant) -> None:
    if tenant.subscription_status in INACTIVE_SUBSCRIPTION_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "subscription_inactive",
                "message": "Your subscription is inactive. Please renew to access features.",
                "subscription_status": tenant.subscription_status,
            },
        )


def require_permission(access: TenantAccess, permission: str, action: str) -> None:
    if not access.has_permission(permission):
        role_name = access.role or "your role"
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Your role ({role_name}) does not have permission to {action}",
        )


def require_capacity(access: TenantAccess, usage_key: str, label: str) -> None:
    if access.is_limit_reached(usage_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Tier {label} limit reached. Upgrade to add more {label}.",
        )


def hours_validation_failed(exc: HoursValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": "Business hours are invalid.", "errors": exc.messages},
    )


def _commit_or_conflict(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        ) from None


@app.get("/health")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> AuthResponse:
    validate_email(payload.email)
    if not is_valid_tier(payload.tier):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown tier '{payload.tier}'.",
        )

    organization = None
    if payload.organization is not None:
        if not is_valid_tier(payload.organization.tier):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=f"Unknown tier '{payload.organization.tier}'.",
            )
        organization = Organization(
            name=payload.organization.name.strip(),
            slug=payload.organization.slug.strip(),
            subscription_tier=payload.organization.tier,
        )

    tenant = Tenant(
        name=payload.tenant_name.strip(),
        slug=payload.tenant_slug.strip(),
        subscription_tier=payload.tier,
        organization=organization,
    )
    user = User(
        email=payload.email.strip().lower(),
        full_name=payload.full_name.strip(),
    )
    membership = TenantMembership(tenant=tenant, user=user, role="OWNER")
    access_token = generate_access_token()
    token = ApiToken(user=user, token_hash=hash_token(access_token))

    db.add_all([tenant, user, membership, token])
    if organization is not None:
        db.add(organization)
    _commit_or_conflict(db, "Unable to register tenant with provided data.")

    db.refresh(tenant)
    db.refresh(user)
    logger.info(
        "Registered tenant %s (tier=%s, organization=%s)",
        tenant.slug,
        tenant.subscription_tier,
        tenant.organization_id,
    )

    return AuthResponse(
        access_token=access_token,
        token_type="bearer",
        tenant=TenantOut.model_validate(tenant),
        user=UserOut.model_validate(user),
    )


@app.post("/auth/tokens/rotate")
def rotate_token(
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    context.token.revoked_at = datetime.now(timezone.utc)
    new_token = generate_access_token()
    db.add(
        ApiToken(
            user_id=context.user.id,
            token_hash=hash_token(new_token),
        )
    )
    db.commit()
    return {
        "access_token": new_token,
        "token_type": "bearer",
    }


@app.get("/tiers")
def get_tier_catalog() -> dict[str, list[dict]]:
    tiers = [
        {
            "tierKey": tier_key,
            "displayName": get_tier_display_name(tier_key),
            "price": TIER_PRICING.get(tier_key, 0),
            "limits": TIER_LIMITS.get(tier_key, {}),
            "features": sorted(tier_feature_set(tier_key)),
        }
        for tier_key in TIER_FEATURES
    ]
    return {"tiers": tiers}


@app.get("/tenants/{tenant_id}/tier")
def get_tenant_tier(
    tenant_id: int,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> dict:
    tenant = get_tenant_or_404(db, tenant_id)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canView", "view")
    return tenant_tier_response(tenant)


@app.get("/tenants/{tenant_id}/tier/public")
def get_public_tenant_tier(tenant_id: int, db: Session = Depends(get_db)) -> dict:
    return tenant_tier_response(get_tenant_or_404(db, tenant_id))


@app.get("/tenants/{tenant_id}/usage")
def get_tenant_usage(
    tenant_id: int,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> dict:
    tenant = get_tenant_or_404(db, tenant_id)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canView", "view")
    usage = access.usage.to_api()
    usage["percentages"] = {
        key: access.get_usage_percentage(key) for key in ("products", "locations", "users")
    }
    return usage


@app.get("/tenants/{tenant_id}/features/{feature_id}", response_model=FeatureAccessOut)
def check_feature_access(
    tenant_id: int,
    feature_id: str,
    permission: PermissionType = Query(default="canView"),
    action: str | None = Query(default=None, max_length=80),
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
) -> FeatureAccessOut:
    tenant = get_tenant_or_404(db, tenant_id)
    require_active_subscription(tenant)
    access = build_access(db, tenant, user)
    badge = access.get_feature_badge_with_permission(feature_id, permission, action)
    effective_tier = access.tier.effective.id if access.tier else "starter"
    return FeatureAccessOut(
        feature=feature_id,
        permission=permission,
        allowed=access.can_access(feature_id, permission),
        reason=access.get_access_denied_reason(feature_id, permission, action),
        badge=None if badge is None else {
            "text": badge.text,
            "tooltip": badge.tooltip,
            "colorClass": badge.color_class,
        },
        effectiveTier=effective_tier,
        upgrade=calculate_upgrade_requirements(effective_tier, normalize_feature_id(feature_id)),
    )


@app.post("/tenants/{tenant_id}/members", response_model=MemberOut, status_code=status.HTTP_201_CREATED)
def add_tenant_member(
    tenant_id: int,
    payload: MemberCreateRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> MemberOut:
    validate_email(payload.email)
    tenant = get_tenant_or_404(db, tenant_id)
    require_active_subscription(tenant)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canManage", "manage users")
    require_capacity(access, "users", "users")

    email = payload.email.strip().lower()
    user = db.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, full_name=payload.full_name.strip())
        db.add(user)
    db.add(TenantMembership(tenant=tenant, user=user, role=payload.role))
    _commit_or_conflict(db, "User is already a member of this tenant.")
    db.refresh(user)
    return MemberOut(user=UserOut.model_validate(user), role=payload.role)


@app.post("/tenants/{tenant_id}/locations", response_model=TenantOut, status_code=status.HTTP_201_CREATED)
def add_location(
    tenant_id: int,
    payload: LocationCreateRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> TenantOut:
    tenant = get_tenant_or_404(db, tenant_id)
    if tenant.organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only chain tenants can add locations.",
        )
    require_active_subscription(tenant)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canManage", "add locations")
    require_capacity(access, "locations", "locations")

    location = Tenant(
        name=payload.name.strip(),
        slug=payload.slug.strip(),
        organization_id=tenant.organization_id,
        subscription_tier=tenant.subscription_tier,
    )
    db.add(location)
    db.add(TenantMembership(tenant=location, user_id=context.user.id, role="OWNER"))
    _commit_or_conflict(db, "Location slug already exists.")
    db.refresh(location)
    return TenantOut.model_validate(location)


@app.post("/tenants/{tenant_id}/items", response_model=ItemOut, status_code=status.HTTP_201_CREATED)
def create_item(
    tenant_id: int,
    payload: ItemCreateRequest,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> InventoryItem:
    tenant = get_tenant_or_404(db, tenant_id)
    require_active_subscription(tenant)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canEdit", "add products")
    require_capacity(access, "products", "products")

    item = InventoryItem(tenant_id=tenant.id, sku=payload.sku.strip(), name=payload.name.strip())
    db.add(item)
    _commit_or_conflict(db, "SKU already exists for this tenant.")
    db.refresh(item)
    return item


@app.get("/tenants/{tenant_id}/business-hours", response_model=BusinessHoursOut)
def get_business_hours(tenant_id: int, db: Session = Depends(get_db)) -> BusinessHoursOut:
    tenant = get_tenant_or_404(db, tenant_id)
    hours = tenant.business_hours
    return BusinessHoursOut(
        timezone=hours.timezone if hours else config.DEFAULT_TIMEZONE,
        periods=[
            {"day": period.day, "open": period.open, "close": period.close}
            for period in stored_periods(hours)
        ],
    )


@app.put("/tenants/{tenant_id}/business-hours", response_model=BusinessHoursOut)
def replace_business_hours(
    tenant_id: int,
    payload: BusinessHoursIn,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> BusinessHoursOut:
    tenant = get_tenant_or_404(db, tenant_id)
    require_active_subscription(tenant)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canEdit", "edit business hours")

    periods = [period.to_period() for period in payload.periods]
    try:
        ensure_valid_periods(periods)
    except HoursValidationError as exc:
        raise hours_validation_failed(exc) from None

    hours = tenant.business_hours
    if hours is None:
        hours = BusinessHours(tenant_id=tenant.id)
        db.add(hours)
    hours.timezone = payload.timezone
    hours.periods = [period.model_dump() for period in payload.periods]
    db.commit()
    logger.info("Saved %d business hour periods for tenant %s", len(periods), tenant.id)
    return BusinessHoursOut(timezone=hours.timezone, periods=payload.periods)


@app.get("/tenants/{tenant_id}/business-hours/special", response_model=SpecialHoursOut)
def get_special_hours(tenant_id: int, db: Session = Depends(get_db)) -> SpecialHoursOut:
    tenant = get_tenant_or_404(db, tenant_id)
    return SpecialHoursOut(overrides=[override_to_api(o) for o in stored_overrides(tenant)])


@app.put("/tenants/{tenant_id}/business-hours/special", response_model=SpecialHoursOut)
def replace_special_hours(
    tenant_id: int,
    payload: SpecialHoursIn,
    context: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
) -> SpecialHoursOut:
    tenant = get_tenant_or_404(db, tenant_id)
    require_active_subscription(tenant)
    access = build_access(db, tenant, context.user)
    require_permission(access, "canEdit", "edit business hours")

    overrides = [item.to_override() for item in payload.overrides]
    try:
        ensure_valid_overrides(overrides)
    except HoursValidationError as exc:
        raise hours_validation_failed(exc) from None

    tenant.special_hours = [
        SpecialHours(
            date=override.date,
            is_closed=override.is_closed,
            open=override.open,
            close=override.close,
            note=override.note,
        )
        for override in overrides
    ]
    db.commit()
    logger.info("Saved %d special hour overrides for tenant %s", len(overrides), tenant.id)
    return SpecialHoursOut(overrides=[override_to_api(o) for o in overrides])


@app.get("/tenants/{tenant_id}/status", response_model=StoreStatusOut)
def get_store_status(
    tenant_id: int,
    at: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
) -> StoreStatusOut:
    tenant = get_tenant_or_404(db, tenant_id)
    hours = tenant.business_hours
    tz_name = hours.timezone if hours else config.DEFAULT_TIMEZONE
    now = at or datetime.now(timezone.utc)
    overrides = stored_overrides(tenant)

    store_status = compute_status(stored_periods(hours), overrides, now, tz_name)
    upcoming = upcoming_special_hours(overrides, now, tz_name, config.SPECIAL_HOURS_LOOKAHEAD_DAYS)
    return StoreStatusOut(
        isOpen=store_status.is_open,
        label=store_status.label,
        special=store_status.special,
        timezone=tz_name,
        upcoming=[
            {**override_to_api(entry.override), "label": entry.label, "daysAway": entry.days_away}
            for entry in upcoming
        ],
    )


@app.post("/billing/webhooks/stripe")
async def process_stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
) -> dict:
    raw_payload = await request.body()
    if not verify_webhook_signature(raw_payload, stripe_signature, config.stripe_webhook_secret()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature.",
        )

    try:
        payload = json.loads(raw_payload.decode("utf-8"))
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload.",
        ) from None

    idempotency_key = payload.get("id")
    if not idempotency_key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing event id for idempotency.",
        )

    existing_event = db.scalar(
        select(BillingEvent).where(BillingEvent.idempotency_key == idempotency_key)
    )
    if existing_event:
        return {
            "status": "duplicate",
            "idempotency_key": idempotency_key,
            "event_type": existing_event.event_type,
        }

    updated_tenant, tenant_id = process_subscription_event(db, payload)

    db.add(
        BillingEvent(
            tenant_id=tenant_id,
            event_type=payload.get("type", "unknown"),
            idempotency_key=idempotency_key,
            payload=payload,
        )
    )
    db.commit()

    return {
        "status": "processed",
        "idempotency_key": idempotency_key,
        "updated_tenant": updated_tenant,
    }
