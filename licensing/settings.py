"""
Per-principal Daily Limits and Warm-up settings.

Both records are created lazily with defaults the first time they are read.
Updates are validated with pydantic; Daily Limits caps above the tier
ceiling are clamped silently rather than rejected.
"""

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from licensing import engine
from licensing.errors import LicenseNotFoundError, SettingsValidationError
from licensing.models import (
    DEFAULT_PHASE_LIMITS,
    ActionKind,
    DailyLimits,
    LicenseRecord,
    Materialized,
    PhaseCaps,
    WarmupState,
    ensure_utc,
)
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)

_LIMIT_ACTIONS = (
    ("max_connections", ActionKind.CONNECTION),
    ("max_messages", ActionKind.MESSAGE),
    ("max_profile_views", ActionKind.PROFILE_VIEW),
    ("max_searches", ActionKind.SEARCH),
)


class DailyLimitsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_connections: Optional[int] = Field(None, ge=1, le=100)
    max_messages: Optional[int] = Field(None, ge=1, le=50)
    max_profile_views: Optional[int] = Field(None, ge=10, le=1000)
    max_searches: Optional[int] = Field(None, ge=1, le=100)
    respect_warmup: Optional[bool] = None


class PhaseCapsUpdate(BaseModel):
    daily: int = Field(..., ge=0)
    weekly: int = Field(..., ge=0)


class WarmupUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    override_warmup: Optional[bool] = None
    phase: Optional[Literal["auto", "week1", "week2", "week3", "week4plus"]] = None
    phase_limits: Optional[Dict[Literal["week1", "week2", "week3", "week4plus"], PhaseCapsUpdate]] = None
    account_start_date: Optional[datetime] = None


def next_daily_reset(now: datetime) -> datetime:
    """Next UTC midnight strictly after now."""
    tomorrow = ensure_utc(now).date() + timedelta(days=1)
    return datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)


def _field_errors(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())) or "payload"
        errors.append({"field": field, "message": error.get("msg", "invalid value")})
    return errors


def _validate(model: type, payload: Mapping[str, Any]) -> BaseModel:
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        raise SettingsValidationError(_field_errors(exc)) from exc


class SettingsService:
    """Reads and writes Daily Limits and Warm-up settings for one store."""

    def __init__(self, store: LicenseStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _require_license(self, principal_id: str) -> LicenseRecord:
        license = self.store.get_license(principal_id)
        if license is None:
            raise LicenseNotFoundError(principal_id)
        return license

    def default_limits(self, license: LicenseRecord) -> DailyLimits:
        return DailyLimits(
            principal_id=license.principal_id,
            max_connections=engine.tier_ceiling(license, ActionKind.CONNECTION),
            max_messages=engine.tier_ceiling(license, ActionKind.MESSAGE),
            max_profile_views=engine.tier_ceiling(license, ActionKind.PROFILE_VIEW),
            max_searches=engine.tier_ceiling(license, ActionKind.SEARCH),
            respect_warmup=True,
            daily_reset=next_daily_reset(self._clock()),
        )

    def get_or_create_limits(self, principal_id: str) -> Materialized[DailyLimits]:
        existing = self.store.get_daily_limits(principal_id)
        if existing is not None:
            return Materialized(record=existing, created=False)

        defaults = self.default_limits(self._require_license(principal_id))
        created = self.store.insert_daily_limits(defaults)
        if created:
            logger.info("Default daily limits created", extra={"principal_id": principal_id})
        return Materialized(record=self.store.get_daily_limits(principal_id), created=created)

    def update_limits(self, principal_id: str, payload: Mapping[str, Any]) -> DailyLimits:
        update = _validate(DailyLimitsUpdate, payload)
        license = self._require_license(principal_id)
        self.get_or_create_limits(principal_id)

        values = update.model_dump(exclude_none=True)
        for column, action in _LIMIT_ACTIONS:
            if column in values:
                ceiling = engine.tier_ceiling(license, action)
                if values[column] > ceiling:
                    logger.info(
                        "Daily limit clamped to tier ceiling",
                        extra={"principal_id": principal_id, "field": column, "requested": values[column], "ceiling": ceiling},
                    )
                    values[column] = ceiling

        if values:
            self.store.update_daily_limits(principal_id, **values)
        return self.store.get_daily_limits(principal_id)

    def clamp_limits_to_tier(self, license: LicenseRecord) -> Optional[DailyLimits]:
        """Lower any stored cap that now exceeds the license's tier ceiling."""
        current = self.store.get_daily_limits(license.principal_id)
        if current is None:
            return None
        values = {}
        for column, action in _LIMIT_ACTIONS:
            ceiling = engine.tier_ceiling(license, action)
            if getattr(current, column) > ceiling:
                values[column] = ceiling
        if values:
            self.store.update_daily_limits(license.principal_id, **values)
            return self.store.get_daily_limits(license.principal_id)
        return current

    def get_or_create_warmup(self, principal_id: str) -> Materialized[WarmupState]:
        existing = self.store.get_warmup(principal_id)
        if existing is not None:
            return Materialized(record=existing, created=False)

        license = self.store.get_license(principal_id)
        start = license.activated_at if license is not None else self._clock()
        created = self.store.insert_warmup(
            WarmupState(
                principal_id=principal_id,
                account_start_date=start,
                phase_limits=DEFAULT_PHASE_LIMITS,
            )
        )
        if created:
            logger.info("Default warm-up settings created", extra={"principal_id": principal_id})
        return Materialized(record=self.store.get_warmup(principal_id), created=created)

    def update_warmup(self, principal_id: str, payload: Mapping[str, Any]) -> WarmupState:
        update = _validate(WarmupUpdate, payload)
        current = self.get_or_create_warmup(principal_id).record

        values = update.model_dump(exclude_none=True, exclude={"phase_limits"})
        if update.phase_limits is not None:
            merged = dict(current.phase_limits)
            for phase, caps in update.phase_limits.items():
                merged[phase] = PhaseCaps(daily=caps.daily, weekly=caps.weekly)
            values["phase_limits"] = merged

        if values:
            self.store.update_warmup(principal_id, **values)
        return self.store.get_warmup(principal_id)
