"""Async HTTP client for the storeops API and a store status poller.

The client mirrors what a storefront or dashboard does: fetch tier, usage and
hours as JSON, run the pure engines locally, and validate hours before saving.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date

import httpx

from . import config
from .hours import (
    SpecialHourOverride,
    StoreStatus,
    WeeklyPeriod,
    ensure_valid_overrides,
    ensure_valid_periods,
)
from .permissions import TenantAccess, UserSnapshot
from .tiers import ResolvedTier, UsageSnapshot, resolve_from_api, usage_from_api

logger = logging.getLogger(__name__)


class StoreApiError(Exception):
    """A request to the storeops API failed or returned an unusable body."""


class StoreApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = (base_url or config.API_URL).rstrip("/")
        self.token = token
        self._transport = transport
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                transport=self._transport,
                timeout=self._timeout,
            ) as client:
                response = await client.request(method, path, headers=self._headers(), json=json)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            raise StoreApiError(
                f"{method} {path} failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise StoreApiError(f"{method} {path} failed: {e}") from e

    async def _get_json(self, path: str) -> dict:
        response = await self._request("GET", path)
        try:
            body = response.json()
        except ValueError as e:
            raise StoreApiError(f"GET {path} returned invalid JSON") from e
        if not isinstance(body, dict):
            raise StoreApiError(f"GET {path} returned an unexpected body")
        return body

    async def fetch_tier(self, tenant_id: int | str) -> ResolvedTier:
        suffix = "tier" if self.token else "tier/public"
        return resolve_from_api(await self._get_json(f"/tenants/{tenant_id}/{suffix}"))

    async def fetch_usage(self, tenant_id: int | str) -> UsageSnapshot:
        return usage_from_api(await self._get_json(f"/tenants/{tenant_id}/usage"))

    async def fetch_access(self, tenant_id: int | str, user: UserSnapshot | None = None) -> TenantAccess:
        """Tier, usage and the given user folded into one access object.

        Usage is only requested for signed-in clients; the public storefront
        has no use for it.
        """
        if self.token:
            tier, usage = await asyncio.gather(self.fetch_tier(tenant_id), self.fetch_usage(tenant_id))
        else:
            tier, usage = await self.fetch_tier(tenant_id), UsageSnapshot()
        return TenantAccess(tier=tier, usage=usage, user=user, tenant_id=str(tenant_id))

    async def fetch_status(self, tenant_id: int | str) -> StoreStatus:
        body = await self._get_json(f"/tenants/{tenant_id}/status")
        return StoreStatus(
            is_open=bool(body.get("isOpen")),
            label=str(body.get("label") or ""),
            special=bool(body.get("special")),
        )

    async def fetch_business_hours(self, tenant_id: int | str) -> tuple[str, list[WeeklyPeriod]]:
        body = await self._get_json(f"/tenants/{tenant_id}/business-hours")
        periods = [
            WeeklyPeriod(day=p["day"], open=p["open"], close=p["close"])
            for p in body.get("periods") or []
        ]
        return body.get("timezone") or config.DEFAULT_TIMEZONE, periods

    async def fetch_special_hours(self, tenant_id: int | str) -> list[SpecialHourOverride]:
        body = await self._get_json(f"/tenants/{tenant_id}/business-hours/special")
        return [
            SpecialHourOverride(
                date=date.fromisoformat(o["date"]),
                is_closed=bool(o.get("isClosed")),
                open=o.get("open"),
                close=o.get("close"),
                note=o.get("note"),
            )
            for o in body.get("overrides") or []
        ]

    async def save_business_hours(
        self,
        tenant_id: int | str,
        timezone: str,
        periods: Sequence[WeeklyPeriod],
    ) -> bool:
        """Replace the weekly schedule. Raises ``HoursValidationError`` before any request."""
        ensure_valid_periods(periods)
        body = {
            "timezone": timezone,
            "periods": [{"day": p.day, "open": p.open, "close": p.close} for p in periods],
        }
        return await self._put_ok(f"/tenants/{tenant_id}/business-hours", body)

    async def save_special_hours(
        self,
        tenant_id: int | str,
        overrides: Sequence[SpecialHourOverride],
    ) -> bool:
        ensure_valid_overrides(overrides)
        body = {
            "overrides": [
                {
                    "date": o.date.isoformat(),
                    "isClosed": o.is_closed,
                    "open": o.open,
                    "close": o.close,
                    "note": o.note,
                }
                for o in overrides
            ]
        }
        return await self._put_ok(f"/tenants/{tenant_id}/business-hours/special", body)

    async def _put_ok(self, path: str, body: dict) -> bool:
        try:
            await self._request("PUT", path, json=body)
        except StoreApiError as e:
            logger.warning("Save rejected: %s", e)
            return False
        return True


class StoreStatusPoller:
    """Refreshes a tenant's open/closed status on a fixed interval.

    A failed fetch records ``error`` and keeps the previous status; the next
    tick tries again. Errors raised by ``on_update`` are logged and do not stop
    the poller. Call ``stop`` (or leave the ``async with`` block) on
    teardown.
    """

    def __init__(
        self,
        client: StoreApiClient,
        tenant_id: int | str,
        interval: float | None = None,
        on_update: Callable[[StoreStatus], Awaitable[None] | None] | None = None,
    ) -> None:
        self.client = client
        self.tenant_id = tenant_id
        self.interval = config.POLL_INTERVAL_SECONDS if interval is None else interval
        self.on_update = on_update
        self.status: StoreStatus | None = None
        self.error: str | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> StoreStatus | None:
        try:
            store_status = await self.client.fetch_status(self.tenant_id)
        except StoreApiError as e:
            self.error = str(e)
            logger.warning("Status refresh for tenant %s failed: %s", self.tenant_id, e)
            return self.status

        self.status = store_status
        self.error = None
        if self.on_update is not None:
            try:
                result = self.on_update(store_status)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Status update callback for tenant %s failed", self.tenant_id)
        return store_status

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception as e:
                self.error = str(e)
                logger.exception("Status poll for tenant %s failed", self.tenant_id)
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> StoreStatusPoller:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
