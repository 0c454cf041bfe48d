"""
Usage ledger: per-principal daily counters on the license row.

The ledger never rejects. Callers are expected to have an allowed Decision
before recording; recording is what makes the next decision see the usage.
remaining() and is_exhausted() resolve the same effective cap (Daily Limits,
tier ceiling, warm-up phase) that engine.decide() enforces.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from licensing import engine
from licensing.models import ActionKind, UsageCounters
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)

# Counters bumped per recorded action. Lifetime counters ride along in the same UPDATE.
_COUNTERS: Dict[ActionKind, Dict[str, int]] = {
    ActionKind.CONNECTION: {"connections_used": 1, "total_connections": 1},
    ActionKind.MESSAGE: {"messages_used": 1},
    ActionKind.SEARCH: {"searches_used": 1},
    ActionKind.PROFILE_VIEW: {"profile_views_used": 1},
    ActionKind.SESSION: {"total_sessions": 1},
}


class UsageLedger:
    def __init__(self, store: LicenseStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def record_usage(self, principal_id: str, action: ActionKind) -> None:
        """Increment the counters for one occurrence of action."""
        action = ActionKind(action)
        amounts = _COUNTERS.get(action)
        if amounts is None:
            raise ValueError(f"{action.value} is not a metered action")

        if not self.store.increment_license_counters(principal_id, amounts):
            logger.warning(
                "Usage recorded for unknown principal",
                extra={"principal_id": principal_id, "action": action.value},
            )
            return
        if action == ActionKind.CONNECTION:
            self.store.increment_warmup_connections(principal_id)

    def usage_for(self, principal_id: str) -> Optional[UsageCounters]:
        record = self.store.get_license(principal_id)
        return record.usage if record is not None else None

    def remaining(self, principal_id: str, action: ActionKind) -> int:
        """Quota left today; 0 for a missing, inactive or expired license."""
        license, limits, warmup_state = self.store.load_decision_inputs(principal_id)
        return engine.remaining_quota(
            license=license,
            action=action,
            now=self._clock(),
            limits=limits,
            warmup_state=warmup_state,
        )

    def is_exhausted(self, principal_id: str, action: ActionKind) -> bool:
        return self.remaining(principal_id, action) <= 0

    def reset_all(self) -> int:
        """Zero every daily counter in one statement. Lifetime counters are untouched."""
        count = self.store.reset_daily_counters()
        logger.info("Daily usage counters reset", extra={"licenses": count})
        return count

    def reset_principal(self, principal_id: str) -> bool:
        reset = self.store.reset_daily_counters(principal_id) > 0
        logger.info("Usage counters reset for principal", extra={"principal_id": principal_id, "reset": reset})
        return reset
