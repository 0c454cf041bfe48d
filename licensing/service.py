from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from licensing import engine
from licensing.errors import AuthorizationDeniedError, LicenseNotFoundError
from licensing.ledger import UsageLedger
from licensing.models import ActionKind, Decision, EffectiveLimits
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AuthorizationService:
    """
    Facade over the pure decision engine.

    Loads the principal's records, asks engine.decide(), and records usage
    through the ledger. Storage failures surface as LicensingUnavailableError
    and are never turned into an allow.
    """

    def __init__(
        self,
        store: LicenseStore,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ledger: Optional[UsageLedger] = None,
    ) -> None:
        self.store = store
        self._clock = clock or utc_now
        self.ledger = ledger or UsageLedger(store, clock=self._clock)

    def now(self) -> datetime:
        return self._clock()

    def authorize(self, principal_id: str, action: ActionKind) -> Decision:
        action = ActionKind(action)
        license, limits, warmup_state = self.store.load_decision_inputs(principal_id)
        decision = engine.decide(
            license=license,
            action=action,
            now=self.now(),
            limits=limits,
            warmup_state=warmup_state,
        )
        if not decision.allowed:
            logger.info(
                "Action denied",
                extra={
                    "principal_id": principal_id,
                    "action": action.value,
                    "reason": decision.reason.value,
                },
            )
        return decision

    def require(self, principal_id: str, action: ActionKind) -> Decision:
        """authorize(), raising AuthorizationDeniedError on a denial."""
        decision = self.authorize(principal_id, action)
        if not decision.allowed:
            raise AuthorizationDeniedError(principal_id, decision.reason, action=decision.action.value)
        return decision

    def record_usage(self, principal_id: str, action: ActionKind) -> None:
        self.ledger.record_usage(principal_id, action)

    def get_effective_limits(self, principal_id: str) -> EffectiveLimits:
        license, limits, warmup_state = self.store.load_decision_inputs(principal_id)
        if license is None:
            raise LicenseNotFoundError(principal_id)
        return engine.effective_limits(
            license=license,
            now=self.now(),
            limits=limits,
            warmup_state=warmup_state,
        )
