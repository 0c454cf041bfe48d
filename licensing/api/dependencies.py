"""
FastAPI dependencies for the licensing routes.

The principal id is read from request.state.principal_id, which upstream
authentication middleware sets. Services are built per request over the
request's database session; the bot status cache, status hook and clock are
process-wide and live on app.state.
"""

import logging
from datetime import datetime
from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from licensing.activity import ActivityLog
from licensing.api.errors import ActionDeniedError, AuthenticationError
from licensing.bot_control import BotControl
from licensing.db import get_db_session
from licensing.license_service import LicenseService
from licensing.models import ActionKind
from licensing.service import AuthorizationService, utc_now
from licensing.settings import SettingsService
from licensing.store import LicenseStore

logger = logging.getLogger(__name__)


def get_principal_id(request: Request) -> str:
    principal_id = getattr(request.state, "principal_id", None)
    if principal_id and str(principal_id).strip():
        return str(principal_id).strip()
    raise AuthenticationError("Missing principal context")


def get_clock(request: Request) -> Callable[[], datetime]:
    return getattr(request.app.state, "clock", None) or utc_now


def get_store(db_session: Session = Depends(get_db_session)) -> LicenseStore:
    return LicenseStore(db_session)


def get_authorization_service(
    store: LicenseStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthorizationService:
    return AuthorizationService(store, clock=clock)


def get_settings_service(
    store: LicenseStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SettingsService:
    return SettingsService(store, clock=clock)


def get_license_service(
    store: LicenseStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LicenseService:
    return LicenseService(store, clock=clock)


def get_activity_log(
    store: LicenseStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> ActivityLog:
    return ActivityLog(store, clock=clock)


def get_bot_control(
    request: Request,
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> BotControl:
    state = request.app.state
    return BotControl(
        authorization,
        cache=state.bot_status_cache,
        on_status_change=getattr(state, "on_status_change", None),
        launcher=getattr(state, "bot_launcher", None),
    )


def require_action(action: ActionKind) -> Callable:
    """
    Factory for a dependency that blocks the route unless action is allowed.

    Use on a route: Depends(require_action(ActionKind.EXPORT_DATA))
    Raises 403 with the deny reason as the error code.
    """
    action = ActionKind(action)

    def check_action(
        principal_id: str = Depends(get_principal_id),
        authorization: AuthorizationService = Depends(get_authorization_service),
    ) -> str:
        decision = authorization.authorize(principal_id, action)
        if not decision.allowed:
            raise ActionDeniedError(decision.reason.value, action.value)
        return principal_id

    return check_action
