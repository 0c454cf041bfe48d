import logging
from datetime import datetime, time, timezone
from typing import Callable, Dict, Optional

from licensing.models import ActivityEvent, ActivityType, ensure_utc
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)

# today_usage() key per event type
_USAGE_KEYS = {
    ActivityType.CONNECTION_SENT.value: "connections",
    ActivityType.DIRECT_MESSAGE_SENT.value: "direct_messages",
    ActivityType.PROFILE_VIEWED.value: "profile_views",
    ActivityType.SEARCH_PERFORMED.value: "searches",
}


def start_of_day(now: datetime) -> datetime:
    return datetime.combine(ensure_utc(now).date(), time.min, tzinfo=timezone.utc)


class ActivityLog:
    """Append-only record of automation events."""

    def __init__(self, store: LicenseStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record_event(
        self,
        principal_id: str,
        action_type: ActivityType,
        *,
        success: bool,
        target_profile: str = "",
        profile_url: str = "",
        search_keyword: str = "",
        message: str = "",
        context: str = "",
        timestamp: Optional[datetime] = None,
    ) -> ActivityEvent:
        event = ActivityEvent(
            principal_id=principal_id,
            action_type=action_type,
            success=success,
            timestamp=timestamp or self._clock(),
            target_profile=target_profile,
            profile_url=profile_url,
            search_keyword=search_keyword,
            message=message,
            context=context,
        )
        self.store.insert_activity(event)
        logger.debug(
            "Activity recorded",
            extra={"principal_id": principal_id, "action_type": event.action_type.value, "success": success},
        )
        return event

    def today_usage(self, principal_id: str, now: Optional[datetime] = None) -> Dict[str, int]:
        """Successful events since UTC midnight, keyed connections / direct_messages / profile_views / searches."""
        counts = self.store.count_activity(principal_id, start_of_day(now or self._clock()), success_only=True)
        usage = {key: 0 for key in _USAGE_KEYS.values()}
        for action_type, count in counts.items():
            key = _USAGE_KEYS.get(action_type)
            if key is not None:
                usage[key] = count
        return usage

    def counts_by_type(self, principal_id: str, since: datetime) -> Dict[str, int]:
        return self.store.count_activity(principal_id, since)
