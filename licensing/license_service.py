"""
License lifecycle: creation, upgrade, extension, deactivation and login
bookkeeping, plus the read-only statistics used by the weekly report.

Licenses are deactivated, never deleted.
"""

import logging
import secrets
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError

from licensing import catalog
from licensing.config import get_trial_duration_days
from licensing.errors import AuthorizationDeniedError, LicenseAlreadyExistsError, LicenseNotFoundError
from licensing.ledger import UsageLedger
from licensing.models import DenyReason, LicenseRecord, UsageCounters
from licensing.settings import SettingsService
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)


def generate_license_key() -> str:
    return "LIC-" + secrets.token_hex(16).upper()


class LicenseService:
    def __init__(
        self,
        store: LicenseStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[SettingsService] = None,
    ) -> None:
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.settings = settings or SettingsService(store, clock=self._clock)
        self.ledger = UsageLedger(store, clock=self._clock)

    def _require(self, principal_id: str) -> LicenseRecord:
        license = self.store.get_license(principal_id)
        if license is None:
            raise LicenseNotFoundError(principal_id)
        return license

    def _duration_days(self, tier: str) -> int:
        if tier == catalog.FALLBACK_TIER:
            return get_trial_duration_days()
        return catalog.license_duration_days(tier)

    def create_license(
        self,
        principal_id: str,
        username: str,
        email: str,
        tier: str = "trial",
    ) -> LicenseRecord:
        """Create a license with the tier's permissions; unknown tiers become trial."""
        if self.store.get_license(principal_id) is not None:
            raise LicenseAlreadyExistsError(principal_id)
        tier = catalog.normalize_tier(tier)
        now = self._clock()
        record = LicenseRecord(
            principal_id=principal_id,
            username=username,
            email=email,
            license_key=generate_license_key(),
            tier=tier,
            is_active=True,
            activated_at=now,
            expires_at=now + timedelta(days=self._duration_days(tier)),
            permissions=catalog.limits_for(tier).permission_set(),
            usage=UsageCounters(),
        )
        try:
            created = self.store.insert_license(record)
        except IntegrityError as exc:
            raise LicenseAlreadyExistsError(principal_id) from exc

        logger.info(
            "License created",
            extra={"principal_id": principal_id, "tier": tier, "expires_at": created.expires_at.isoformat()},
        )
        return created

    def upgrade_license(self, principal_id: str, tier: str, duration_days: Optional[int] = None) -> LicenseRecord:
        """
        Move a principal to a tier, re-deriving permissions from the catalog.

        The license is reactivated and expires duration_days from now (the
        tier's default duration when omitted). Stored Daily Limits above the
        new ceilings are clamped down.
        """
        self._require(principal_id)
        tier = catalog.normalize_tier(tier)
        days = duration_days if duration_days is not None else self._duration_days(tier)
        now = self._clock()

        self.store.update_license(
            principal_id,
            tier=tier,
            is_active=True,
            expires_at=now + timedelta(days=days),
            **catalog.limits_for(tier).permission_set().to_dict(),
        )
        upgraded = self._require(principal_id)
        self.settings.clamp_limits_to_tier(upgraded)

        logger.info(
            "License upgraded",
            extra={"principal_id": principal_id, "tier": tier, "duration_days": days},
        )
        return upgraded

    def extend_license(self, principal_id: str, days: int) -> LicenseRecord:
        if days <= 0:
            raise ValueError("days must be positive")
        license = self._require(principal_id)
        self.store.update_license(principal_id, expires_at=license.expires_at + timedelta(days=days))
        logger.info("License extended", extra={"principal_id": principal_id, "days": days})
        return self._require(principal_id)

    def deactivate_license(self, principal_id: str) -> LicenseRecord:
        if not self.store.update_license(principal_id, is_active=False):
            raise LicenseNotFoundError(principal_id)
        logger.info("License deactivated", extra={"principal_id": principal_id})
        return self._require(principal_id)

    def record_login(
        self,
        principal_id: str,
        *,
        device_id: Optional[str] = None,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LicenseRecord:
        values: Dict[str, Any] = {"last_login_at": self._clock()}
        if device_id:
            values["last_device_id"] = device_id
        if ip:
            values["last_ip"] = ip
        if user_agent:
            values["last_user_agent"] = user_agent
        if not self.store.update_license(principal_id, **values):
            raise LicenseNotFoundError(principal_id)
        return self._require(principal_id)

    def reset_usage(self, principal_id: str) -> UsageCounters:
        """
        Zero a principal's daily counters on demand.

        Needs a valid license on a tier that grants can_reset_usage.
        """
        license = self._require(principal_id)
        now = self._clock()
        if not license.is_active:
            reason = DenyReason.LICENSE_INACTIVE
        elif license.is_expired(now):
            reason = DenyReason.LICENSE_EXPIRED
        elif not catalog.limits_for(license.tier).can_reset_usage:
            reason = DenyReason.PERMISSION_DENIED
        else:
            reason = None
        if reason is not None:
            raise AuthorizationDeniedError(principal_id, reason, action="reset_usage")

        if not self.ledger.reset_principal(principal_id):
            raise LicenseNotFoundError(principal_id)
        return self._require(principal_id).usage

    def get_license_info(self, principal_id: str) -> Dict[str, Any]:
        """License payload with is_valid / is_expired / days_remaining evaluated now."""
        return self._require(principal_id).to_dict(self._clock())

    def find_by_license_key(self, license_key: str) -> Optional[LicenseRecord]:
        """Active license for a key, or None."""
        license = self.store.find_license_by_key(license_key)
        if license is None or not license.is_active:
            return None
        return license

    def deactivate_expired(self, now: Optional[datetime] = None) -> List[str]:
        expired = self.store.deactivate_expired(now or self._clock())
        logger.info("Expired licenses deactivated", extra={"count": len(expired)})
        return expired

    def get_statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """{total, active, expired, by_tier: {tier: {count, active, expired}}}."""
        now = now or self._clock()
        by_tier: Dict[str, Dict[str, int]] = defaultdict(lambda: {"count": 0, "active": 0, "expired": 0})
        total = active = expired = 0
        for tier, is_active, expires_at in self.store.license_summary_rows():
            bucket = by_tier[tier]
            total += 1
            bucket["count"] += 1
            if is_active:
                active += 1
                bucket["active"] += 1
            if expires_at < now:
                expired += 1
                bucket["expired"] += 1
        return {
            "total": total,
            "active": active,
            "expired": expired,
            "by_tier": dict(by_tier),
        }
