"""Pydantic schemas for API requests and responses."""

from __future__ import annotations

from datetime import date as calendar_date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .hours import SpecialHourOverride, WeeklyPeriod

DayName = Literal["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY"]
TenantRole = Literal["OWNER", "ADMIN", "SUPPORT", "MANAGER", "MEMBER", "VIEWER"]
PermissionType = Literal["canView", "canEdit", "canManage", "canSupport", "canAdmin"]

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class OrganizationIn(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    slug: str = Field(min_length=3, max_length=80, pattern=SLUG_PATTERN)
    tier: str = "chain_starter"


class RegisterRequest(BaseModel):
    tenant_name: str = Field(min_length=2, max_length=200)
    tenant_slug: str = Field(min_length=3, max_length=80, pattern=SLUG_PATTERN)
    tier: str = "starter"
    email: str = Field(min_length=5, max_length=255)
    full_name: str = Field(min_length=2, max_length=200)
    organization: OrganizationIn | None = None


class MemberCreateRequest(BaseModel):
    email: str = Field(min_length=5, max_length=255)
    full_name: str = Field(min_length=2, max_length=200)
    role: TenantRole = "MEMBER"


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    organization_id: int | None
    subscription_tier: str
    subscription_status: str
    created_at: datetime


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    full_name: str
    role: str
    created_at: datetime


class MemberOut(BaseModel):
    user: UserOut
    role: TenantRole


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    tenant: TenantOut
    user: UserOut


class LocationCreateRequest(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    slug: str = Field(min_length=3, max_length=80, pattern=SLUG_PATTERN)


class ItemCreateRequest(BaseModel):
    sku: str = Field(min_length=1, max_length=120)
    name: str = Field(min_length=1, max_length=255)


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sku: str
    name: str
    created_at: datetime


class PeriodIn(BaseModel):
    day: DayName
    open: str = Field(pattern=HHMM_PATTERN)
    close: str = Field(pattern=HHMM_PATTERN)

    def to_period(self) -> WeeklyPeriod:
        return WeeklyPeriod(day=self.day, open=self.open, close=self.close)


class BusinessHoursIn(BaseModel):
    timezone: str = Field(min_length=1, max_length=64)
    periods: list[PeriodIn] = Field(default_factory=list)


class BusinessHoursOut(BaseModel):
    timezone: str
    periods: list[PeriodIn]


class SpecialHourIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: calendar_date
    is_closed: bool = Field(default=False, alias="isClosed")
    open: str | None = Field(default=None, pattern=HHMM_PATTERN)
    close: str | None = Field(default=None, pattern=HHMM_PATTERN)
    note: str | None = Field(default=None, max_length=255)

    def to_override(self) -> SpecialHourOverride:
        return SpecialHourOverride(
            date=self.date,
            is_closed=self.is_closed,
            open=None if self.is_closed else self.open,
            close=None if self.is_closed else self.close,
            note=self.note,
        )


class SpecialHoursIn(BaseModel):
    overrides: list[SpecialHourIn] = Field(default_factory=list)


class SpecialHoursOut(BaseModel):
    overrides: list[dict]


class StoreStatusOut(BaseModel):
    isOpen: bool
    label: str
    special: bool
    timezone: str
    upcoming: list[dict] = Field(default_factory=list)


class FeatureAccessOut(BaseModel):
    feature: str
    permission: PermissionType
    allowed: bool
    reason: str | None = None
    badge: dict | None = None
    effectiveTier: str | None = None
    upgrade: dict | None = None
