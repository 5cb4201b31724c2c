from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient

from storeops import constants, db
from storeops.main import app
from storeops.models import ApiToken, Tenant, User
from storeops.security import generate_access_token, hash_token, sign_payload


@pytest.fixture()
def client(tmp_path):
    database_url = f"sqlite:///{tmp_path}/test.db"
    db.reset_engine(database_url)
    db.init_db()

    with TestClient(app) as test_client:
        yield test_client


def register_tenant(
    client: TestClient,
    slug: str = "corner-shop",
    tier: str = "starter",
    organization: dict | None = None,
) -> tuple[str, int, int]:
    body = {
        "tenant_name": "Corner Shop",
        "tenant_slug": slug,
        "tier": tier,
        "email": f"owner@{slug}.com",
        "full_name": "Owner User",
    }
    if organization is not None:
        body["organization"] = organization
    response = client.post("/auth/register", json=body)
    assert response.status_code == 201, response.text
    payload = response.json()
    return payload["access_token"], payload["tenant"]["id"], payload["user"]["id"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def issue_token(user_id: int) -> str:
    token = generate_access_token()
    with db.SessionLocal() as session:
        session.add(ApiToken(user_id=user_id, token_hash=hash_token(token)))
        session.commit()
    return token


def add_member(client: TestClient, token: str, tenant_id: int, email: str, role: str):
    return client.post(
        f"/tenants/{tenant_id}/members",
        headers=auth_headers(token),
        json={"email": email, "full_name": "Staff User", "role": role},
    )


def test_register_and_tier_endpoints(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client)

    public = client.get(f"/tenants/{tenant_id}/tier/public")
    assert public.status_code == 200
    body = public.json()
    assert body["isChain"] is False
    assert body["organizationTier"] is None
    assert body["tenantTier"]["tier_key"] == "starter"
    assert body["effectiveTier"]["tierKey"] == "starter"
    assert "storefront" in body["effectiveTier"]["features"]

    assert client.get(f"/tenants/{tenant_id}/tier").status_code == 401
    private = client.get(f"/tenants/{tenant_id}/tier", headers=auth_headers(token))
    assert private.status_code == 200
    assert private.json() == body

    assert client.get("/tenants/999/tier/public").status_code == 404


def test_register_rejects_unknown_tier_and_duplicate_slug(client: TestClient) -> None:
    register_tenant(client, slug="dup-shop")

    unknown = client.post(
        "/auth/register",
        json={
            "tenant_name": "Other",
            "tenant_slug": "other-shop",
            "tier": "platinum",
            "email": "owner@other.com",
            "full_name": "Owner User",
        },
    )
    assert unknown.status_code == 422

    duplicate = client.post(
        "/auth/register",
        json={
            "tenant_name": "Dup",
            "tenant_slug": "dup-shop",
            "email": "someone@else.com",
            "full_name": "Someone Else",
        },
    )
    assert duplicate.status_code == 409


def test_chain_tenant_uses_higher_organization_tier(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(
        client,
        slug="chain-main",
        organization={"name": "Chain Co", "slug": "chain-co", "tier": "chain_professional"},
    )

    tier = client.get(f"/tenants/{tenant_id}/tier/public").json()
    assert tier["isChain"] is True
    assert tier["effectiveTier"]["tierKey"] == "chain_professional"
    assert tier["effectiveTier"]["source"] == "organization"

    location = client.post(
        f"/tenants/{tenant_id}/locations",
        headers=auth_headers(token),
        json={"name": "Second Street", "slug": "chain-second"},
    )
    assert location.status_code == 201, location.text
    assert location.json()["organization_id"] is not None

    usage = client.get(f"/tenants/{tenant_id}/usage", headers=auth_headers(token))
    assert usage.status_code == 200
    assert usage.json()["locations"] == 2


def test_single_location_tenant_cannot_add_locations(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client, slug="solo-shop")

    response = client.post(
        f"/tenants/{tenant_id}/locations",
        headers=auth_headers(token),
        json={"name": "Another", "slug": "solo-another"},
    )
    assert response.status_code == 409


def test_feature_access_checks_tier_before_role(client: TestClient) -> None:
    token, tenant_id, owner_id = register_tenant(client, slug="gate-shop")

    premium = client.get(
        f"/tenants/{tenant_id}/features/quick_start_wizard",
        headers=auth_headers(token),
        params={"permission": "canView"},
    )
    assert premium.status_code == 200
    assert premium.json()["allowed"] is False
    assert premium.json()["badge"]["text"] == "PRO+"
    assert premium.json()["reason"].startswith("Requires Professional tier")
    assert premium.json()["upgrade"]["target_tier"] == "professional"
    assert premium.json()["upgrade"]["upgrade_cost"] == 450

    storefront = client.get(
        f"/tenants/{tenant_id}/features/storefront",
        headers=auth_headers(token),
        params={"permission": "canEdit"},
    )
    assert storefront.json()["allowed"] is True
    assert storefront.json()["reason"] is None
    assert storefront.json()["badge"] is None
    assert storefront.json()["upgrade"] == {"required": False}

    viewer = add_member(client, token, tenant_id, "viewer@gate-shop.com", "VIEWER")
    assert viewer.status_code == 201, viewer.text
    viewer_token = issue_token(viewer.json()["user"]["id"])

    denied = client.get(
        f"/tenants/{tenant_id}/features/storefront",
        headers=auth_headers(viewer_token),
        params={"permission": "canEdit"},
    ).json()
    assert denied["allowed"] is False
    assert denied["reason"] == "Your role (VIEWER) does not have permission to edit"
    assert denied["badge"]["text"] == "RESTRICTED"

    anonymous = client.get(f"/tenants/{tenant_id}/features/storefront").json()
    assert anonymous["allowed"] is False

    with db.SessionLocal() as session:
        session.get(User, owner_id).role = "PLATFORM_ADMIN"
        session.commit()

    bypass = client.get(
        f"/tenants/{tenant_id}/features/quick_start_wizard",
        headers=auth_headers(token),
        params={"permission": "canAdmin"},
    ).json()
    assert bypass["allowed"] is True
    assert bypass["badge"] is None


def test_member_limit_follows_tier(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client, slug="small-shop")

    assert add_member(client, token, tenant_id, "a@small-shop.com", "MEMBER").status_code == 201
    assert add_member(client, token, tenant_id, "b@small-shop.com", "MEMBER").status_code == 201

    over_limit = add_member(client, token, tenant_id, "c@small-shop.com", "MEMBER")
    assert over_limit.status_code == 403
    assert "limit reached" in over_limit.json()["detail"]


def test_member_cannot_manage_users(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client, slug="staff-shop")
    member = add_member(client, token, tenant_id, "m@staff-shop.com", "MEMBER")
    member_token = issue_token(member.json()["user"]["id"])

    response = add_member(client, member_token, tenant_id, "x@staff-shop.com", "MEMBER")
    assert response.status_code == 403
    assert response.json()["detail"] == "Your role (MEMBER) does not have permission to manage users"


def test_product_limit_blocks_new_items(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setitem(
        constants.TIER_LIMITS,
        "starter",
        {"maxProducts": 2, "maxLocations": 1, "maxUsers": 3},
    )
    token, tenant_id, _ = register_tenant(client, slug="item-shop")

    for sku in ("SKU-1", "SKU-2"):
        created = client.post(
            f"/tenants/{tenant_id}/items",
            headers=auth_headers(token),
            json={"sku": sku, "name": f"Item {sku}"},
        )
        assert created.status_code == 201, created.text

    blocked = client.post(
        f"/tenants/{tenant_id}/items",
        headers=auth_headers(token),
        json={"sku": "SKU-3", "name": "Item 3"},
    )
    assert blocked.status_code == 403

    usage = client.get(f"/tenants/{tenant_id}/usage", headers=auth_headers(token)).json()
    assert usage["products"] == 2
    assert usage["percentages"]["products"] == 100


def test_business_hours_save_and_status(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client, slug="hours-shop")

    saved = client.put(
        f"/tenants/{tenant_id}/business-hours",
        headers=auth_headers(token),
        json={"timezone": "UTC", "periods": [{"day": "MONDAY", "open": "09:00", "close": "17:00"}]},
    )
    assert saved.status_code == 200, saved.text

    hours = client.get(f"/tenants/{tenant_id}/business-hours").json()
    assert hours == {"timezone": "UTC", "periods": [{"day": "MONDAY", "open": "09:00", "close": "17:00"}]}

    # 2026-10-12 is a Monday.
    open_status = client.get(f"/tenants/{tenant_id}/status", params={"at": "2026-10-12T10:00:00Z"}).json()
    assert open_status["isOpen"] is True
    assert open_status["label"] == "Open until 5:00 PM"

    closed_status = client.get(f"/tenants/{tenant_id}/status", params={"at": "2026-10-12T18:00:00Z"}).json()
    assert closed_status["isOpen"] is False

    overlapping = client.put(
        f"/tenants/{tenant_id}/business-hours",
        headers=auth_headers(token),
        json={
            "timezone": "UTC",
            "periods": [
                {"day": "MONDAY", "open": "09:00", "close": "12:00"},
                {"day": "MONDAY", "open": "11:00", "close": "14:00"},
            ],
        },
    )
    assert overlapping.status_code == 422
    assert "overlaps" in overlapping.json()["detail"]["errors"][0]
    assert client.get(f"/tenants/{tenant_id}/business-hours").json() == hours

    special = client.put(
        f"/tenants/{tenant_id}/business-hours/special",
        headers=auth_headers(token),
        json={"overrides": [{"date": "2026-10-12", "isClosed": True, "note": "Inventory day"}]},
    )
    assert special.status_code == 200, special.text

    override_status = client.get(f"/tenants/{tenant_id}/status", params={"at": "2026-10-12T10:00:00Z"}).json()
    assert override_status["isOpen"] is False
    assert override_status["label"] == "Closed today (special hours)"
    assert override_status["upcoming"][0]["label"] == "today"
    assert override_status["upcoming"][0]["daysAway"] == 0

    listed = client.get(f"/tenants/{tenant_id}/business-hours/special").json()
    assert listed["overrides"][0]["note"] == "Inventory day"


def test_viewer_cannot_edit_business_hours(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client, slug="view-shop")
    viewer = add_member(client, token, tenant_id, "v@view-shop.com", "VIEWER")
    viewer_token = issue_token(viewer.json()["user"]["id"])

    response = client.put(
        f"/tenants/{tenant_id}/business-hours",
        headers=auth_headers(viewer_token),
        json={"timezone": "UTC", "periods": []},
    )
    assert response.status_code == 403


def test_stripe_webhook_updates_tenant_tier(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    token, tenant_id, _ = register_tenant(client, slug="paid-shop")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "test-secret")

    def post_event(event: dict, secret: str = "test-secret"):
        raw_payload = json.dumps(event, separators=(",", ":")).encode("utf-8")
        return client.post(
            "/billing/webhooks/stripe",
            content=raw_payload,
            headers={
                "Content-Type": "application/json",
                "Stripe-Signature": sign_payload(raw_payload, secret, int(time.time())),
            },
        )

    checkout = post_event(
        {
            "id": "evt_checkout",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_001",
                    "customer": "cus_001",
                    "subscription": "sub_001",
                    "metadata": {"tenant_slug": "paid-shop"},
                }
            },
        }
    )
    assert checkout.status_code == 200, checkout.text
    assert checkout.json()["updated_tenant"] is True

    upgrade_event = {
        "id": "evt_upgrade",
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "id": "sub_001",
                "customer": "cus_001",
                "status": "active",
                "items": {"data": [{"price": {"metadata": {"tier": "professional"}}}]},
            }
        },
    }
    first = post_event(upgrade_event)
    assert first.json()["status"] == "processed"
    second = post_event(upgrade_event)
    assert second.json()["status"] == "duplicate"

    tier = client.get(f"/tenants/{tenant_id}/tier/public").json()
    assert tier["tenantTier"]["tier_key"] == "professional"

    forged = post_event({"id": "evt_forged", "type": "customer.subscription.deleted"}, secret="wrong")
    assert forged.status_code == 401

    deleted = post_event(
        {
            "id": "evt_deleted",
            "type": "customer.subscription.deleted",
            "data": {"object": {"id": "sub_001", "customer": "cus_001"}},
        }
    )
    assert deleted.json()["updated_tenant"] is True

    with db.SessionLocal() as session:
        tenant = session.get(Tenant, tenant_id)
        assert tenant.subscription_status == "canceled"
        assert tenant.subscription_tier == "professional"

    blocked = client.post(
        f"/tenants/{tenant_id}/items",
        headers=auth_headers(token),
        json={"sku": "SKU-1", "name": "Item 1"},
    )
    assert blocked.status_code == 403
    assert blocked.json()["detail"]["error"] == "subscription_inactive"

    feature = client.get(f"/tenants/{tenant_id}/features/quick_start_wizard", headers=auth_headers(token))
    assert feature.status_code == 403

    assert client.get(f"/tenants/{tenant_id}/tier", headers=auth_headers(token)).status_code == 200
    assert client.get(f"/tenants/{tenant_id}/business-hours").status_code == 200


@pytest.mark.parametrize("subscription_status", ["canceled", "expired"])
def test_inactive_subscription_is_read_only(client: TestClient, subscription_status: str) -> None:
    token, tenant_id, _ = register_tenant(client, slug="frozen-shop", tier="professional")
    with db.SessionLocal() as session:
        session.get(Tenant, tenant_id).subscription_status = subscription_status
        session.commit()

    feature = client.get(f"/tenants/{tenant_id}/features/quick_start_wizard", headers=auth_headers(token))
    assert feature.status_code == 403
    assert feature.json()["detail"]["subscription_status"] == subscription_status

    writes = [
        client.post(
            f"/tenants/{tenant_id}/items",
            headers=auth_headers(token),
            json={"sku": "SKU-1", "name": "Item 1"},
        ),
        add_member(client, token, tenant_id, "late@frozen-shop.com", "MEMBER"),
        client.put(
            f"/tenants/{tenant_id}/business-hours",
            headers=auth_headers(token),
            json={"timezone": "UTC", "periods": []},
        ),
        client.put(
            f"/tenants/{tenant_id}/business-hours/special",
            headers=auth_headers(token),
            json={"overrides": []},
        ),
    ]
    assert [response.status_code for response in writes] == [403, 403, 403, 403]

    usage = client.get(f"/tenants/{tenant_id}/usage", headers=auth_headers(token))
    assert usage.status_code == 200
    assert usage.json()["products"] == 0


def test_past_due_subscription_keeps_access(client: TestClient) -> None:
    token, tenant_id, _ = register_tenant(client, slug="late-shop", tier="professional")
    with db.SessionLocal() as session:
        session.get(Tenant, tenant_id).subscription_status = "past_due"
        session.commit()

    feature = client.get(f"/tenants/{tenant_id}/features/quick_start_wizard", headers=auth_headers(token))
    assert feature.status_code == 200
    assert feature.json()["allowed"] is True
