"""
Entitlement catalog: fixed tier -> limits table.

Unknown tiers resolve to the trial entitlement (fail-safe, never fail-open).
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from licensing.models import PermissionSet

FALLBACK_TIER = "trial"


@dataclass(frozen=True)
class TierEntitlement:
    """Ceilings and feature flags granted by a license tier."""

    tier: str
    max_daily_connections: int
    max_daily_messages: int
    max_search_keywords: int
    max_daily_profile_views: int
    max_daily_searches: int
    can_use_advanced_features: bool
    can_export_data: bool
    can_use_api: bool
    can_reset_usage: bool
    duration_days: int

    def permission_set(self) -> PermissionSet:
        """Permissions written onto a license when this tier is assigned."""
        return PermissionSet(
            max_daily_connections=self.max_daily_connections,
            max_daily_messages=self.max_daily_messages,
            max_search_keywords=self.max_search_keywords,
            can_use_advanced_features=self.can_use_advanced_features,
            can_export_data=self.can_export_data,
            can_use_api=self.can_use_api,
        )


TIER_ENTITLEMENTS: Mapping[str, TierEntitlement] = MappingProxyType({
    "trial": TierEntitlement(
        tier="trial",
        max_daily_connections=5,
        max_daily_messages=3,
        max_search_keywords=3,
        max_daily_profile_views=50,
        max_daily_searches=10,
        can_use_advanced_features=False,
        can_export_data=False,
        can_use_api=False,
        can_reset_usage=False,
        duration_days=30,
    ),
    "basic": TierEntitlement(
        tier="basic",
        max_daily_connections=15,
        max_daily_messages=10,
        max_search_keywords=10,
        max_daily_profile_views=150,
        max_daily_searches=25,
        can_use_advanced_features=True,
        can_export_data=True,
        can_use_api=False,
        can_reset_usage=False,
        duration_days=365,
    ),
    "premium": TierEntitlement(
        tier="premium",
        max_daily_connections=50,
        max_daily_messages=25,
        max_search_keywords=25,
        max_daily_profile_views=300,
        max_daily_searches=50,
        can_use_advanced_features=True,
        can_export_data=True,
        can_use_api=True,
        can_reset_usage=True,
        duration_days=365,
    ),
    "enterprise": TierEntitlement(
        tier="enterprise",
        max_daily_connections=100,
        max_daily_messages=50,
        max_search_keywords=50,
        max_daily_profile_views=500,
        max_daily_searches=100,
        can_use_advanced_features=True,
        can_export_data=True,
        can_use_api=True,
        can_reset_usage=True,
        duration_days=365,
    ),
})


def normalize_tier(tier: object) -> str:
    """Return a known tier key; anything unrecognized maps to the trial tier."""
    key = str(tier or "").strip().lower()
    return key if key in TIER_ENTITLEMENTS else FALLBACK_TIER


def is_known_tier(tier: object) -> bool:
    return str(tier or "").strip().lower() in TIER_ENTITLEMENTS


def limits_for(tier: object) -> TierEntitlement:
    """Entitlement for a tier name. Pure lookup, no side effects."""
    return TIER_ENTITLEMENTS[normalize_tier(tier)]


def license_duration_days(tier: object) -> int:
    return limits_for(tier).duration_days
