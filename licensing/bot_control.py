"""
Bot control signal.

States: stopped -> running -> (paused <-> running) -> stopped.

Every transition that changes the stored state builds a StatusSnapshot and
hands it to on_status_change(principal_id, snapshot). The hook belongs to
the notification transport; its failures are logged and never undo the
transition. The status cache is invalidated on every write.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from licensing.cache import BotStatusCache
from licensing.errors import BotStateConflictError
from licensing.models import ActionKind, BotState, BotStatusRecord, StatusSnapshot
from licensing.service import AuthorizationService

logger = logging.getLogger(__name__)

StatusHook = Callable[[str, StatusSnapshot], None]
Launcher = Callable[[str, Optional[Mapping[str, Any]]], None]


class BotControl:
    def __init__(
        self,
        authorization: AuthorizationService,
        *,
        cache: Optional[BotStatusCache] = None,
        on_status_change: Optional[StatusHook] = None,
        launcher: Optional[Launcher] = None,
    ) -> None:
        """
        Args:
            authorization: facade used for the bot_control license check; its
                store and clock are shared.
            cache: bot status cache (Redis or in-memory).
            on_status_change: push hook invoked after each transition.
            launcher: starts the automation process with the caller's settings
                once the bot is marked running.
        """
        self.authorization = authorization
        self.store = authorization.store
        self.cache = cache or BotStatusCache()
        self._on_status_change = on_status_change or (lambda principal_id, snapshot: None)
        self._launcher = launcher

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _status(self, principal_id: str) -> BotStatusRecord:
        cached = self.cache.get(principal_id)
        if cached is not None:
            return cached
        record = self.store.ensure_bot_status(principal_id)
        self.cache.set(record)
        return record

    def _snapshot(self, record: BotStatusRecord) -> StatusSnapshot:
        now = self.authorization.now()
        license = self.store.get_license(record.principal_id)
        connections_today = license.usage.connections_used if license is not None else 0
        total_connections = license.usage.total_connections if license is not None else 0
        is_active = record.status != BotState.STOPPED
        uptime = 0
        if is_active and record.last_start_time is not None:
            uptime = max(0, int((now - record.last_start_time).total_seconds()))
        return StatusSnapshot(
            principal_id=record.principal_id,
            is_active=is_active,
            status=record.status,
            last_start_time=record.last_start_time,
            last_stop_time=record.last_stop_time,
            current_task=record.current_task,
            connections_today=connections_today,
            total_connections=total_connections,
            error_message=record.error_message,
            uptime_seconds=uptime,
        )

    def get_status(self, principal_id: str) -> StatusSnapshot:
        return self._snapshot(self._status(principal_id))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _write(self, principal_id: str, values: Mapping[str, Any], **conditions: Any) -> bool:
        self.store.ensure_bot_status(principal_id)
        try:
            return self.store.transition_bot_status(principal_id, values, **conditions)
        finally:
            self.cache.invalidate(principal_id)

    def _emit(self, principal_id: str, transition: str) -> StatusSnapshot:
        snapshot = self.get_status(principal_id)
        logger.info(
            "Bot status changed",
            extra={"principal_id": principal_id, "transition": transition, "status": snapshot.status.value},
        )
        try:
            self._on_status_change(principal_id, snapshot)
        except Exception:
            logger.exception("Status change hook failed", extra={"principal_id": principal_id})
        return snapshot

    def start(self, principal_id: str, settings: Optional[Mapping[str, Any]] = None) -> StatusSnapshot:
        """
        Start the bot after a bot_control license check.

        Raises AuthorizationDeniedError when the license is inactive or
        expired and BotStateConflictError(ALREADY_RUNNING) when running. A
        caller that loses a concurrent start gets the current snapshot back
        and no event is emitted for it.
        """
        self.authorization.require(principal_id, ActionKind.BOT_CONTROL)

        current = self._status(principal_id)
        if current.status == BotState.RUNNING:
            logger.info("Bot start rejected, already running", extra={"principal_id": principal_id})
            raise BotStateConflictError(principal_id, BotStateConflictError.ALREADY_RUNNING, current.status.value)

        won = self._write(
            principal_id,
            {
                "status": BotState.RUNNING.value,
                "last_start_time": self.authorization.now(),
                "error_message": None,
            },
            unless_status=BotState.RUNNING.value,
        )
        if not won:
            return self.get_status(principal_id)

        self.authorization.record_usage(principal_id, ActionKind.SESSION)
        snapshot = self._emit(principal_id, "start")
        if self._launcher is not None:
            try:
                self._launcher(principal_id, settings)
            except Exception as exc:
                logger.exception("Bot launcher failed", extra={"principal_id": principal_id})
                return self._force_stop(principal_id, str(exc), "launch_failed")
        return snapshot

    def stop(self, principal_id: str, error_message: Optional[str] = None) -> StatusSnapshot:
        """Stop a running or paused bot. Stopping a stopped bot raises NOT_RUNNING."""
        won = self._write(
            principal_id,
            {
                "status": BotState.STOPPED.value,
                "last_stop_time": self.authorization.now(),
                "error_message": error_message,
                "current_task": None,
            },
            from_statuses=(BotState.RUNNING.value, BotState.PAUSED.value),
        )
        if not won:
            logger.info("Bot stop rejected, not running", extra={"principal_id": principal_id})
            raise BotStateConflictError(principal_id, BotStateConflictError.NOT_RUNNING, BotState.STOPPED.value)
        return self._emit(principal_id, "stop")

    def pause(self, principal_id: str) -> StatusSnapshot:
        """running -> paused; from any other state returns the current snapshot unchanged."""
        won = self._write(
            principal_id,
            {"status": BotState.PAUSED.value},
            from_statuses=(BotState.RUNNING.value,),
        )
        if not won:
            return self.get_status(principal_id)
        return self._emit(principal_id, "pause")

    def resume(self, principal_id: str) -> StatusSnapshot:
        """paused -> running; from any other state returns the current snapshot unchanged."""
        won = self._write(
            principal_id,
            {"status": BotState.RUNNING.value},
            from_statuses=(BotState.PAUSED.value,),
        )
        if not won:
            return self.get_status(principal_id)
        return self._emit(principal_id, "resume")

    def _force_stop(self, principal_id: str, error_message: Optional[str], transition: str) -> StatusSnapshot:
        self._write(
            principal_id,
            {
                "status": BotState.STOPPED.value,
                "last_stop_time": self.authorization.now(),
                "error_message": error_message,
                "current_task": None,
            },
        )
        return self._emit(principal_id, transition)

    def emergency_stop(self, principal_id: str) -> StatusSnapshot:
        """Force stopped from any state. Never gated by license or quota."""
        logger.warning("Emergency stop requested", extra={"principal_id": principal_id})
        return self._force_stop(principal_id, "Emergency stop", "emergency_stop")

    def update_current_task(self, principal_id: str, task: Optional[str]) -> StatusSnapshot:
        self._write(principal_id, {"current_task": task})
        return self._emit(principal_id, "task")
