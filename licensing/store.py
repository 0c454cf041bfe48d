"""
SQLAlchemy storage adapter.

Converts ORM rows into the frozen records in licensing.models and exposes the
handful of single-statement writes the ledger and bot control rely on:

- counter increments are `UPDATE ... SET col = col + n` (no read-modify-write)
- the daily reset is one UPDATE over every row
- bot start is `UPDATE ... WHERE status != 'running'`, the rowcount tells the
  caller whether it won

Any SQLAlchemyError is rolled back, logged with its stack trace and re-raised
as LicensingUnavailableError so request handlers fail closed.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from licensing.errors import LicensingUnavailableError
from licensing.models import (
    ActivityEvent,
    BotStatusRecord,
    DailyLimits,
    LicenseRecord,
    PermissionSet,
    PhaseCaps,
    UsageCounters,
    WarmupState,
    ensure_utc,
)
from licensing.tables import (
    ActivityLogRow,
    BotStatusRow,
    DailyLimitsRow,
    LicenseRow,
    WarmupSettingsRow,
)

logger = logging.getLogger(__name__)

DAILY_COUNTER_COLUMNS = (
    "connections_used",
    "messages_used",
    "searches_used",
    "profile_views_used",
)


def _license_from_row(row: LicenseRow) -> LicenseRecord:
    return LicenseRecord(
        principal_id=row.principal_id,
        username=row.username,
        email=row.email,
        license_key=row.license_key,
        tier=row.tier,
        is_active=bool(row.is_active),
        activated_at=row.activated_at,
        expires_at=row.expires_at,
        permissions=PermissionSet(
            max_daily_connections=row.max_daily_connections,
            max_daily_messages=row.max_daily_messages,
            max_search_keywords=row.max_search_keywords,
            can_use_advanced_features=bool(row.can_use_advanced_features),
            can_export_data=bool(row.can_export_data),
            can_use_api=bool(row.can_use_api),
        ),
        usage=UsageCounters(
            connections_used=row.connections_used or 0,
            messages_used=row.messages_used or 0,
            searches_used=row.searches_used or 0,
            profile_views_used=row.profile_views_used or 0,
            total_sessions=row.total_sessions or 0,
            total_connections=row.total_connections or 0,
        ),
        last_login_at=row.last_login_at,
        last_device_id=row.last_device_id,
        last_ip=row.last_ip,
        last_user_agent=row.last_user_agent,
    )


def _limits_from_row(row: DailyLimitsRow) -> DailyLimits:
    return DailyLimits(
        principal_id=row.principal_id,
        max_connections=row.max_connections,
        max_messages=row.max_messages,
        max_profile_views=row.max_profile_views,
        max_searches=row.max_searches,
        respect_warmup=bool(row.respect_warmup),
        daily_reset=row.daily_reset,
    )


def encode_phase_limits(limits: Mapping[str, PhaseCaps]) -> Dict[str, Dict[str, int]]:
    return {phase: caps.to_dict() for phase, caps in limits.items()}


def decode_phase_limits(raw: Optional[Mapping[str, Any]]) -> Dict[str, PhaseCaps]:
    decoded: Dict[str, PhaseCaps] = {}
    for phase, caps in (raw or {}).items():
        decoded[phase] = PhaseCaps(daily=int(caps["daily"]), weekly=int(caps["weekly"]))
    return decoded


def _warmup_from_row(row: WarmupSettingsRow) -> WarmupState:
    return WarmupState(
        principal_id=row.principal_id,
        account_start_date=row.account_start_date,
        enabled=bool(row.enabled),
        override_warmup=bool(row.override_warmup),
        phase=row.phase or "auto",
        phase_limits=decode_phase_limits(row.phase_limits),
        total_connections=row.total_connections or 0,
    )


def _bot_status_from_row(row: BotStatusRow) -> BotStatusRecord:
    return BotStatusRecord(
        principal_id=row.principal_id,
        status=row.status,
        last_start_time=row.last_start_time,
        last_stop_time=row.last_stop_time,
        current_task=row.current_task,
        error_message=row.error_message,
    )


def _utc_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: ensure_utc(value) if isinstance(value, datetime) else value
        for key, value in values.items()
    }


class LicenseStore:
    """Typed access to the licensing tables over one SQLAlchemy session."""

    def __init__(self, db_session: Session):
        self.db = db_session

    @contextmanager
    def _guard(self, operation: str, principal_id: Optional[str] = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Licensing store operation failed",
                extra={"operation": operation, "principal_id": principal_id},
            )
            raise LicensingUnavailableError(principal_id, f"{operation} failed", cause=exc) from exc

    @contextmanager
    def _guard_integrity(self, operation: str, principal_id: Optional[str]) -> Iterator[None]:
        """Like _guard, but constraint violations propagate for the caller to map."""
        try:
            yield
        except IntegrityError:
            self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception(
                "Licensing store operation failed",
                extra={"operation": operation, "principal_id": principal_id},
            )
            raise LicensingUnavailableError(principal_id, f"{operation} failed", cause=exc) from exc

    # ------------------------------------------------------------------
    # Licenses
    # ------------------------------------------------------------------

    def get_license(self, principal_id: str) -> Optional[LicenseRecord]:
        with self._guard("get_license", principal_id):
            row = self.db.get(LicenseRow, principal_id)
            if row is None:
                return None
            self.db.refresh(row)
            return _license_from_row(row)

    def find_license_by_key(self, license_key: str) -> Optional[LicenseRecord]:
        with self._guard("find_license_by_key"):
            row = self.db.query(LicenseRow).filter(LicenseRow.license_key == license_key).first()
            return _license_from_row(row) if row is not None else None

    def insert_license(self, record: LicenseRecord) -> LicenseRecord:
        """Raises IntegrityError (unwrapped) on a duplicate principal, username, email or key."""
        row = LicenseRow(
            principal_id=record.principal_id,
            username=record.username,
            email=record.email,
            license_key=record.license_key,
            tier=record.tier,
            is_active=record.is_active,
            activated_at=record.activated_at,
            expires_at=record.expires_at,
            **record.permissions.to_dict(),
            **record.usage.to_dict(),
        )
        with self._guard_integrity("insert_license", record.principal_id):
            self.db.add(row)
            self.db.commit()
        return self.get_license(record.principal_id)

    def update_license(self, principal_id: str, **values: Any) -> bool:
        """Plain field update. Returns False when the principal has no license."""
        with self._guard("update_license", principal_id):
            result = self.db.execute(
                update(LicenseRow)
                .where(LicenseRow.principal_id == principal_id)
                .values(**_utc_values(values))
            )
            self.db.commit()
            return result.rowcount > 0

    def increment_license_counters(self, principal_id: str, amounts: Mapping[str, int]) -> bool:
        """Atomic `col = col + n` for each named counter in a single UPDATE."""
        values = {
            column: getattr(LicenseRow, column) + amount
            for column, amount in amounts.items()
        }
        with self._guard("increment_license_counters", principal_id):
            result = self.db.execute(
                update(LicenseRow).where(LicenseRow.principal_id == principal_id).values(**values)
            )
            self.db.commit()
            return result.rowcount > 0

    def reset_daily_counters(self, principal_id: Optional[str] = None) -> int:
        """Zero the daily counters for one principal, or every row when principal_id is None."""
        stmt = update(LicenseRow).values(**{column: 0 for column in DAILY_COUNTER_COLUMNS})
        if principal_id is not None:
            stmt = stmt.where(LicenseRow.principal_id == principal_id)
        with self._guard("reset_daily_counters", principal_id):
            result = self.db.execute(stmt)
            self.db.commit()
            return result.rowcount

    def deactivate_expired(self, now: datetime) -> List[str]:
        """Deactivate every active license with expires_at < now; returns their ids."""
        now = ensure_utc(now)
        with self._guard("deactivate_expired"):
            expired_ids = [
                principal_id
                for (principal_id,) in self.db.query(LicenseRow.principal_id)
                .filter(LicenseRow.is_active.is_(True), LicenseRow.expires_at < now)
                .all()
            ]
            if expired_ids:
                self.db.execute(
                    update(LicenseRow)
                    .where(LicenseRow.principal_id.in_(expired_ids))
                    .values(is_active=False)
                )
            self.db.commit()
            return expired_ids

    def license_summary_rows(self) -> List[Tuple[str, bool, datetime]]:
        """(tier, is_active, expires_at) for every license."""
        with self._guard("license_summary_rows"):
            rows = self.db.query(LicenseRow.tier, LicenseRow.is_active, LicenseRow.expires_at).all()
            return [(tier, bool(active), ensure_utc(expires_at)) for tier, active, expires_at in rows]

    # ------------------------------------------------------------------
    # Daily limits
    # ------------------------------------------------------------------

    def get_daily_limits(self, principal_id: str) -> Optional[DailyLimits]:
        with self._guard("get_daily_limits", principal_id):
            row = self.db.get(DailyLimitsRow, principal_id)
            return _limits_from_row(row) if row is not None else None

    def insert_daily_limits(self, limits: DailyLimits) -> bool:
        """Insert defaults; returns False if a concurrent writer created the row first."""
        row = DailyLimitsRow(
            principal_id=limits.principal_id,
            max_connections=limits.max_connections,
            max_messages=limits.max_messages,
            max_profile_views=limits.max_profile_views,
            max_searches=limits.max_searches,
            respect_warmup=limits.respect_warmup,
            daily_reset=limits.daily_reset,
        )
        try:
            with self._guard_integrity("insert_daily_limits", limits.principal_id):
                self.db.add(row)
                self.db.commit()
        except IntegrityError:
            return False
        return True

    def update_daily_limits(self, principal_id: str, **values: Any) -> bool:
        with self._guard("update_daily_limits", principal_id):
            result = self.db.execute(
                update(DailyLimitsRow)
                .where(DailyLimitsRow.principal_id == principal_id)
                .values(**_utc_values(values))
            )
            self.db.commit()
            return result.rowcount > 0

    def roll_daily_reset(self, next_reset: datetime) -> int:
        with self._guard("roll_daily_reset"):
            result = self.db.execute(update(DailyLimitsRow).values(daily_reset=ensure_utc(next_reset)))
            self.db.commit()
            return result.rowcount

    # ------------------------------------------------------------------
    # Warm-up
    # ------------------------------------------------------------------

    def get_warmup(self, principal_id: str) -> Optional[WarmupState]:
        with self._guard("get_warmup", principal_id):
            row = self.db.get(WarmupSettingsRow, principal_id)
            return _warmup_from_row(row) if row is not None else None

    def load_decision_inputs(
        self, principal_id: str
    ) -> Tuple[Optional[LicenseRecord], Optional[DailyLimits], Optional[WarmupState]]:
        """
        License, Daily Limits and warm-up state as a decision sees them.

        A warm-up row that was never materialized is evaluated as the defaults
        it would be created with, starting at the license's activation.
        """
        license = self.get_license(principal_id)
        if license is None:
            return None, None, None
        limits = self.get_daily_limits(principal_id)
        warmup_state = self.get_warmup(principal_id)
        if warmup_state is None:
            warmup_state = WarmupState(principal_id=principal_id, account_start_date=license.activated_at)
        return license, limits, warmup_state

    def insert_warmup(self, state: WarmupState) -> bool:
        row = WarmupSettingsRow(
            principal_id=state.principal_id,
            enabled=state.enabled,
            override_warmup=state.override_warmup,
            phase=state.phase,
            account_start_date=state.account_start_date,
            phase_limits=encode_phase_limits(state.phase_limits),
            total_connections=state.total_connections,
        )
        try:
            with self._guard_integrity("insert_warmup", state.principal_id):
                self.db.add(row)
                self.db.commit()
        except IntegrityError:
            return False
        return True

    def update_warmup(self, principal_id: str, **values: Any) -> bool:
        if "phase_limits" in values:
            values["phase_limits"] = encode_phase_limits(values["phase_limits"])
        with self._guard("update_warmup", principal_id):
            result = self.db.execute(
                update(WarmupSettingsRow)
                .where(WarmupSettingsRow.principal_id == principal_id)
                .values(**_utc_values(values))
            )
            self.db.commit()
            return result.rowcount > 0

    def increment_warmup_connections(self, principal_id: str, amount: int = 1) -> bool:
        with self._guard("increment_warmup_connections", principal_id):
            result = self.db.execute(
                update(WarmupSettingsRow)
                .where(WarmupSettingsRow.principal_id == principal_id)
                .values(total_connections=WarmupSettingsRow.total_connections + amount)
            )
            self.db.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Bot status
    # ------------------------------------------------------------------

    def get_bot_status(self, principal_id: str) -> Optional[BotStatusRecord]:
        with self._guard("get_bot_status", principal_id):
            row = self.db.get(BotStatusRow, principal_id)
            if row is None:
                return None
            self.db.refresh(row)
            return _bot_status_from_row(row)

    def ensure_bot_status(self, principal_id: str) -> BotStatusRecord:
        """Return the status row, inserting a stopped one if missing."""
        existing = self.get_bot_status(principal_id)
        if existing is not None:
            return existing
        try:
            with self._guard_integrity("ensure_bot_status", principal_id):
                self.db.add(BotStatusRow(principal_id=principal_id, status="stopped"))
                self.db.commit()
        except IntegrityError:
            logger.debug("Bot status row created concurrently", extra={"principal_id": principal_id})
        return self.get_bot_status(principal_id)

    def transition_bot_status(
        self,
        principal_id: str,
        values: Mapping[str, Any],
        *,
        from_statuses: Optional[Tuple[str, ...]] = None,
        unless_status: Optional[str] = None,
    ) -> bool:
        """
        Conditional status write. Returns True if this call changed the row.

        from_statuses restricts the write to rows currently in one of those
        states; unless_status skips rows already in that state.
        """
        stmt = update(BotStatusRow).where(BotStatusRow.principal_id == principal_id)
        if from_statuses is not None:
            stmt = stmt.where(BotStatusRow.status.in_(from_statuses))
        if unless_status is not None:
            stmt = stmt.where(BotStatusRow.status != unless_status)
        with self._guard("transition_bot_status", principal_id):
            result = self.db.execute(stmt.values(**_utc_values(values)))
            self.db.commit()
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    def insert_activity(self, event: ActivityEvent) -> None:
        row = ActivityLogRow(
            principal_id=event.principal_id,
            action_type=event.action_type.value,
            success=event.success,
            target_profile=event.target_profile,
            profile_url=event.profile_url,
            search_keyword=event.search_keyword,
            message=event.message,
            context=event.context,
            timestamp=event.timestamp,
        )
        with self._guard("insert_activity", event.principal_id):
            self.db.add(row)
            self.db.commit()

    def count_activity(
        self,
        principal_id: str,
        since: datetime,
        *,
        success_only: bool = False,
    ) -> Dict[str, int]:
        """Event counts grouped by action_type since the given instant."""
        with self._guard("count_activity", principal_id):
            query = self.db.query(ActivityLogRow.action_type, func.count(ActivityLogRow.id)).filter(
                ActivityLogRow.principal_id == principal_id,
                ActivityLogRow.timestamp >= ensure_utc(since),
            )
            if success_only:
                query = query.filter(ActivityLogRow.success.is_(True))
            return {action_type: count for action_type, count in query.group_by(ActivityLogRow.action_type).all()}
