"""Subscription lifecycle helpers driven by Stripe webhook events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from .constants import BILLABLE_TIERS
from .models import Tenant

logger = logging.getLogger(__name__)

HANDLED_EVENTS = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.payment_failed",
        "invoice.payment_succeeded",
    }
)


def normalize_status(status_value: str | None) -> str:
    if not status_value:
        return "active"
    normalized = status_value.strip().lower()
    if normalized == "trialing":
        return "trial"
    if normalized in {"active", "past_due", "canceled"}:
        return normalized
    if normalized == "unpaid":
        return "past_due"
    if normalized in {"incomplete", "incomplete_expired"}:
        return "expired"
    return "active"


def tier_from_price(price: dict | None) -> str:
    """Read the tier from Stripe price metadata, defaulting to starter."""
    metadata = (price or {}).get("metadata") or {}
    tier = metadata.get("tier") or metadata.get("plan") or "starter"
    return tier if tier in BILLABLE_TIERS else "starter"


def _first_price(subscription: dict) -> dict | None:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    return items[0].get("price")


def _timestamp(value: object) -> datetime | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def _tenant_by(db: Session, column, value: object) -> Tenant | None:
    if not value:
        return None
    return db.scalar(select(Tenant).where(column == str(value)))


def _handle_checkout_completed(db: Session, session: dict) -> Tenant | None:
    metadata = session.get("metadata") or {}
    tenant_slug = metadata.get("tenant_slug") or session.get("client_reference_id")
    tenant = _tenant_by(db, Tenant.slug, tenant_slug)
    if tenant is None:
        logger.error("Checkout session %s has no matching tenant", session.get("id"))
        return None

    if session.get("customer"):
        tenant.stripe_customer_id = str(session["customer"])
    if session.get("subscription"):
        tenant.stripe_subscription_id = str(session["subscription"])
    return tenant


def _handle_subscription_changed(db: Session, subscription: dict) -> Tenant | None:
    tenant = _tenant_by(db, Tenant.stripe_customer_id, subscription.get("customer"))
    if tenant is None:
        metadata = subscription.get("metadata") or {}
        tenant = _tenant_by(db, Tenant.slug, metadata.get("tenant_slug"))
    if tenant is None:
        logger.error("No tenant found for customer %s", subscription.get("customer"))
        return None

    tier = tier_from_price(_first_price(subscription))
    if tier == "google_only":
        # google_only is reserved for expired trials and is never set by billing.
        logger.warning("Ignoring google_only tier from webhook for tenant %s", tenant.id)
    else:
        tenant.subscription_tier = tier

    tenant.subscription_status = normalize_status(subscription.get("status"))
    if subscription.get("id"):
        tenant.stripe_subscription_id = str(subscription["id"])
    if subscription.get("customer"):
        tenant.stripe_customer_id = str(subscription["customer"])
    period_end = _timestamp(subscription.get("current_period_end"))
    if period_end is not None:
        tenant.subscription_ends_at = period_end
    return tenant


def _handle_subscription_deleted(db: Session, subscription: dict) -> Tenant | None:
    tenant = _tenant_by(db, Tenant.stripe_subscription_id, subscription.get("id"))
    if tenant is None:
        logger.error("No tenant found for subscription %s", subscription.get("id"))
        return None
    # Tier is kept for reference.
    tenant.subscription_status = "canceled"
    return tenant


def _handle_invoice(db: Session, invoice: dict, succeeded: bool) -> Tenant | None:
    if not invoice.get("subscription"):
        logger.info("Invoice %s has no subscription, skipping", invoice.get("id"))
        return None
    tenant = _tenant_by(db, Tenant.stripe_subscription_id, invoice.get("subscription"))
    if tenant is None:
        logger.error("No tenant found for subscription %s", invoice.get("subscription"))
        return None

    if not succeeded:
        tenant.subscription_status = "past_due"
    elif tenant.subscription_status == "past_due":
        tenant.subscription_status = "active"
    return tenant


def process_subscription_event(db: Session, event_payload: dict) -> tuple[bool, int | None]:
    """Apply a Stripe event to the matching tenant.

    Returns:
      - bool: whether a tenant was updated
      - tenant_id: target tenant id when resolved
    """
    event_type = event_payload.get("type")
    if event_type not in HANDLED_EVENTS:
        return False, None

    event_object = (event_payload.get("data") or {}).get("object") or {}
    if event_type == "checkout.session.completed":
        tenant = _handle_checkout_completed(db, event_object)
    elif event_type == "customer.subscription.deleted":
        tenant = _handle_subscription_deleted(db, event_object)
    elif event_type.startswith("customer.subscription."):
        tenant = _handle_subscription_changed(db, event_object)
    else:
        tenant = _handle_invoice(db, event_object, succeeded=event_type == "invoice.payment_succeeded")

    if tenant is None:
        return False, None

    logger.info(
        "Applied %s to tenant %s (tier=%s, status=%s)",
        event_type,
        tenant.id,
        tenant.subscription_tier,
        tenant.subscription_status,
    )
    return True, tenant.id
