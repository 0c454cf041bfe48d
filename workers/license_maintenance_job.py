"""
Scheduled license maintenance.

Daily (MAINTENANCE_DAILY_HOUR_UTC, default midnight UTC):
1. zero every principal's daily usage counters (lifetime counters untouched)
2. roll daily_limits.daily_reset forward to the next UTC midnight
3. deactivate every license whose expires_at has passed

Weekly (MAINTENANCE_WEEKLY_WEEKDAY, default Monday, same hour):
- log {total, active, expired, by_tier} license statistics. Read-only.

A failed step is logged with its stack trace and counted; the remaining
steps still run. Nothing is retried within a cycle; the next firing is the
retry.

Run one cycle:
    python -m workers.license_maintenance_job daily
    python -m workers.license_maintenance_job weekly
Run the scheduler until SIGTERM/SIGINT:
    python -m workers.license_maintenance_job serve
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.orm import Session

from licensing.config import (
    get_daily_maintenance_hour,
    get_weekly_maintenance_weekday,
    is_maintenance_enabled,
)
from licensing.db import get_db_session_sync
from licensing.ledger import UsageLedger
from licensing.license_service import LicenseService
from licensing.models import ensure_utc
from licensing.settings import next_daily_reset
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MaintenanceStats:
    job: str
    started_at: str
    completed_at: Optional[str] = None
    counters_reset: int = 0
    limits_rolled: int = 0
    licenses_deactivated: int = 0
    errors: int = 0
    statistics: Optional[Dict[str, Any]] = None
    failed_steps: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LicenseMaintenanceJob:
    """Daily reset / expiry sweep and weekly statistics over one session."""

    def __init__(self, db_session: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db_session
        self._clock = clock or utc_now
        self.store = LicenseStore(db_session)
        self.ledger = UsageLedger(self.store, clock=self._clock)
        self.licenses = LicenseService(self.store, clock=self._clock)

    def _step(self, stats: MaintenanceStats, name: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            stats.errors += 1
            stats.failed_steps.append(name)
            self.db.rollback()
            logger.exception("License maintenance step failed", extra={"job": stats.job, "step": name})

    def run_daily(self, now: Optional[datetime] = None) -> MaintenanceStats:
        now = ensure_utc(now) if now is not None else self._clock()
        stats = MaintenanceStats(job="daily", started_at=now.isoformat())
        logger.info("Daily license maintenance starting", extra={"now": now.isoformat()})

        def reset_counters() -> None:
            stats.counters_reset = self.ledger.reset_all()

        def roll_limits() -> None:
            stats.limits_rolled = self.store.roll_daily_reset(next_daily_reset(now))

        def deactivate_expired() -> None:
            stats.licenses_deactivated = len(self.licenses.deactivate_expired(now))

        self._step(stats, "reset_counters", reset_counters)
        self._step(stats, "roll_daily_reset", roll_limits)
        self._step(stats, "deactivate_expired", deactivate_expired)

        stats.completed_at = self._clock().isoformat()
        logger.info("Daily license maintenance completed", extra=stats.to_dict())
        return stats

    def run_weekly(self, now: Optional[datetime] = None) -> MaintenanceStats:
        now = ensure_utc(now) if now is not None else self._clock()
        stats = MaintenanceStats(job="weekly", started_at=now.isoformat())

        def collect() -> None:
            stats.statistics = self.licenses.get_statistics(now)

        self._step(stats, "statistics", collect)

        stats.completed_at = self._clock().isoformat()
        if stats.statistics is not None:
            logger.info("License statistics", extra={"statistics": stats.statistics})
        return stats


def next_daily_run(now: datetime, hour: int) -> datetime:
    """First instant at hour:00 UTC strictly after now."""
    now = ensure_utc(now)
    candidate = datetime.combine(now.date(), time(hour=hour), tzinfo=timezone.utc)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def next_weekly_run(now: datetime, weekday: int, hour: int) -> datetime:
    """First instant on weekday (Monday=0) at hour:00 UTC strictly after now."""
    now = ensure_utc(now)
    days_ahead = (weekday - now.weekday()) % 7
    candidate = datetime.combine(now.date() + timedelta(days=days_ahead), time(hour=hour), tzinfo=timezone.utc)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


SessionSource = Callable[[], Iterator[Session]]


class MaintenanceScheduler:
    """
    Fires the daily and weekly jobs at their wall-clock times on a daemon thread.

    Each firing gets a fresh session from session_source. Exceptions never
    escape a firing, so one bad night does not stop the loop.
    """

    def __init__(
        self,
        *,
        session_source: SessionSource = get_db_session_sync,
        clock: Optional[Callable[[], datetime]] = None,
        daily_hour: Optional[int] = None,
        weekly_weekday: Optional[int] = None,
    ) -> None:
        self._session_source = session_source
        self._clock = clock or utc_now
        self.daily_hour = get_daily_maintenance_hour() if daily_hour is None else daily_hour
        self.weekly_weekday = get_weekly_maintenance_weekday() if weekly_weekday is None else weekly_weekday
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        now = self._clock()
        self.next_daily = next_daily_run(now, self.daily_hour)
        self.next_weekly = next_weekly_run(now, self.weekly_weekday, self.daily_hour)

    def _run(self, job_name: str, now: datetime) -> Optional[MaintenanceStats]:
        try:
            for session in self._session_source():
                job = LicenseMaintenanceJob(session, clock=self._clock)
                if job_name == "daily":
                    return job.run_daily(now)
                return job.run_weekly(now)
        except Exception:
            logger.exception("License maintenance run failed", extra={"job": job_name})
        return None

    def run_pending(self, now: Optional[datetime] = None) -> List[MaintenanceStats]:
        """Run whichever jobs are due at now and schedule their next firing."""
        now = ensure_utc(now) if now is not None else self._clock()
        results: List[MaintenanceStats] = []
        if now >= self.next_daily:
            stats = self._run("daily", now)
            if stats is not None:
                results.append(stats)
            self.next_daily = next_daily_run(now, self.daily_hour)
        if now >= self.next_weekly:
            stats = self._run("weekly", now)
            if stats is not None:
                results.append(stats)
            self.next_weekly = next_weekly_run(now, self.weekly_weekday, self.daily_hour)
        return results

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        now = ensure_utc(now) if now is not None else self._clock()
        due = min(self.next_daily, self.next_weekly)
        return max(0.0, (due - now).total_seconds())

    def run_forever(self) -> None:
        logger.info(
            "License maintenance scheduler starting",
            extra={"next_daily": self.next_daily.isoformat(), "next_weekly": self.next_weekly.isoformat()},
        )
        while not self._stop.is_set():
            if self._stop.wait(timeout=self.seconds_until_next()):
                break
            self.run_pending()
        logger.info("License maintenance scheduler stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="license-maintenance", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the maintenance job."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    parser = argparse.ArgumentParser(description="Run scheduled license maintenance")
    parser.add_argument("mode", choices=("daily", "weekly", "serve"), help="Run one cycle or the scheduler")
    args = parser.parse_args(argv)

    if not is_maintenance_enabled():
        logger.info("License maintenance disabled via MAINTENANCE_ENABLED")
        return

    if args.mode == "serve":
        scheduler = MaintenanceScheduler()

        def _handle_signal(sig, _frame):
            logger.info("Received signal %s, shutting down gracefully", sig)
            scheduler.stop()

        signal.signal(signal.SIGTERM, _handle_signal)
        signal.signal(signal.SIGINT, _handle_signal)
        thread = scheduler.start()
        while thread.is_alive():
            thread.join(timeout=1.0)
        return

    failed = False
    try:
        for session in get_db_session_sync():
            job = LicenseMaintenanceJob(session)
            stats = job.run_daily() if args.mode == "daily" else job.run_weekly()
            failed = stats.errors > 0
    except Exception as e:
        logger.error("License maintenance failed", extra={"error": str(e)}, exc_info=True)
        sys.exit(1)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
