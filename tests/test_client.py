from __future__ import annotations

import asyncio
import json
from datetime import date

import httpx
import pytest

from storeops.client import StoreApiClient, StoreApiError, StoreStatusPoller
from storeops.hours import HoursValidationError, SpecialHourOverride, WeeklyPeriod
from storeops.permissions import UserSnapshot

TIER_BODY = {
    "tenantTier": {
        "tier_key": "starter",
        "display_name": "Starter",
        "tier_features_list": ["storefront"],
        "limits": {"maxProducts": 10},
    },
    "organizationTier": {
        "tier_key": "chain_professional",
        "display_name": "Chain Professional",
        "tier_features_list": ["storefront", "quick_start_wizard"],
        "limits": {"maxProducts": 25000},
    },
    "isChain": True,
}


class RecordingHandler:
    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"detail": "Not found"})
        return response


def make_client(handler: RecordingHandler, token: str | None = "secret") -> StoreApiClient:
    return StoreApiClient(
        base_url="http://storeops.test",
        token=token,
        transport=httpx.MockTransport(handler),
    )


def test_fetch_access_resolves_tier_and_usage() -> None:
    handler = RecordingHandler(
        {
            ("GET", "/tenants/1/tier"): httpx.Response(200, json=TIER_BODY),
            ("GET", "/tenants/1/usage"): httpx.Response(200, json={"products": 10, "users": 2}),
        }
    )
    client = make_client(handler)
    user = UserSnapshot(id=5, role="USER", tenants={"1": "MEMBER"})

    access = asyncio.run(client.fetch_access(1, user))

    assert access.tier.effective.id == "chain_professional"
    assert access.can_access("quick_start_wizard", "canEdit") is True
    assert access.can_access("quick_start_wizard", "canManage") is False
    assert access.is_limit_reached("products") is False
    assert all(r.headers["Authorization"] == "Bearer secret" for r in handler.requests)


def test_anonymous_client_uses_public_tier_and_skips_usage() -> None:
    handler = RecordingHandler({("GET", "/tenants/1/tier/public"): httpx.Response(200, json=TIER_BODY)})
    client = make_client(handler, token=None)

    access = asyncio.run(client.fetch_access(1))

    assert [r.url.path for r in handler.requests] == ["/tenants/1/tier/public"]
    assert access.usage.products == 0


def test_fetch_failure_raises_store_api_error() -> None:
    handler = RecordingHandler({("GET", "/tenants/1/tier"): httpx.Response(500, json={})})
    with pytest.raises(StoreApiError):
        asyncio.run(make_client(handler).fetch_tier(1))


def test_overlapping_hours_are_rejected_before_any_request() -> None:
    handler = RecordingHandler({("PUT", "/tenants/1/business-hours"): httpx.Response(200, json={})})
    client = make_client(handler)
    periods = [WeeklyPeriod("MONDAY", "09:00", "12:00"), WeeklyPeriod("MONDAY", "11:00", "14:00")]

    with pytest.raises(HoursValidationError):
        asyncio.run(client.save_business_hours(1, "UTC", periods))

    assert handler.requests == []


def test_save_hours_reports_http_result() -> None:
    handler = RecordingHandler(
        {
            ("PUT", "/tenants/1/business-hours"): httpx.Response(200, json={}),
            ("PUT", "/tenants/2/business-hours/special"): httpx.Response(403, json={}),
        }
    )
    client = make_client(handler)

    saved = asyncio.run(client.save_business_hours(1, "UTC", [WeeklyPeriod("MONDAY", "09:00", "17:00")]))
    rejected = asyncio.run(
        client.save_special_hours(2, [SpecialHourOverride(date=date(2026, 12, 25), is_closed=True)])
    )

    assert saved is True
    assert rejected is False
    assert json.loads(handler.requests[0].read()) == {
        "timezone": "UTC",
        "periods": [{"day": "MONDAY", "open": "09:00", "close": "17:00"}],
    }


def test_fetch_hours() -> None:
    handler = RecordingHandler(
        {
            ("GET", "/tenants/1/business-hours"): httpx.Response(
                200,
                json={"timezone": "UTC", "periods": [{"day": "FRIDAY", "open": "10:00", "close": "18:00"}]},
            ),
            ("GET", "/tenants/1/business-hours/special"): httpx.Response(
                200,
                json={"overrides": [{"date": "2026-12-25", "isClosed": True, "open": None, "close": None}]},
            ),
        }
    )
    client = make_client(handler)

    timezone, periods = asyncio.run(client.fetch_business_hours(1))
    overrides = asyncio.run(client.fetch_special_hours(1))

    assert timezone == "UTC"
    assert periods == [WeeklyPeriod("FRIDAY", "10:00", "18:00")]
    assert overrides[0].date == date(2026, 12, 25)
    assert overrides[0].is_closed is True


def test_poller_records_error_and_keeps_last_status() -> None:
    responses = [
        httpx.Response(200, json={"isOpen": True, "label": "Open until 5:00 PM", "special": False}),
        httpx.Response(503, json={}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    client = StoreApiClient(base_url="http://storeops.test", transport=httpx.MockTransport(handler))
    poller = StoreStatusPoller(client, 1, interval=60)

    first = asyncio.run(poller.refresh())
    assert first.is_open is True
    assert poller.error is None

    second = asyncio.run(poller.refresh())
    assert second is first
    assert "503" in poller.error


def test_poller_polls_until_stopped() -> None:
    calls: list[str] = []
    updates = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={"isOpen": False, "label": "Closed", "special": False})

    client = StoreApiClient(base_url="http://storeops.test", transport=httpx.MockTransport(handler))

    async def scenario() -> StoreStatusPoller:
        poller = StoreStatusPoller(client, 7, interval=0.01, on_update=updates.append)
        async with poller:
            assert poller.running
            await asyncio.sleep(0.1)
        return poller

    poller = asyncio.run(scenario())

    assert poller.running is False
    assert len(calls) >= 2
    assert set(calls) == {"/tenants/7/status"}
    assert updates[-1].label == "Closed"


def test_poller_defaults_to_longest_interval() -> None:
    poller = StoreStatusPoller(StoreApiClient(base_url="http://storeops.test"), 1)
    assert poller.interval == 900


def test_poller_survives_failing_callback() -> None:
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, json={"isOpen": True, "label": "Open until 5:00 PM", "special": False})

    def broken_callback(store_status) -> None:
        raise RuntimeError("render failed")

    client = StoreApiClient(base_url="http://storeops.test", transport=httpx.MockTransport(handler))

    async def scenario() -> StoreStatusPoller:
        poller = StoreStatusPoller(client, 3, interval=0.01, on_update=broken_callback)
        async with poller:
            await asyncio.sleep(0.1)
            assert poller.running
        return poller

    poller = asyncio.run(scenario())

    assert len(calls) >= 2
    assert poller.status.is_open is True
    assert poller.error is None


def test_poller_keeps_running_after_unexpected_error() -> None:
    class FlakyClient:
        def __init__(self) -> None:
            self.calls = 0

        async def fetch_status(self, tenant_id):
            self.calls += 1
            raise RuntimeError("connection pool closed")

    flaky = FlakyClient()

    async def scenario() -> StoreStatusPoller:
        poller = StoreStatusPoller(flaky, 3, interval=0.01)
        async with poller:
            await asyncio.sleep(0.1)
            assert poller.running
        return poller

    poller = asyncio.run(scenario())

    assert flaky.calls >= 2
    assert poller.error == "connection pool closed"
    assert poller.status is None
