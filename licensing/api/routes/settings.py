"""
Daily Limits and Warm-up settings endpoints.

GET creates the record with defaults on first access; `created` tells the
caller whether that just happened. PUT needs a valid license (403 with the
deny reason otherwise); bodies are validated by SettingsService and rejected
with field-level errors (400).
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends

from licensing.api.dependencies import get_clock, get_principal_id, get_settings_service, require_action
from licensing.models import ActionKind
from licensing.settings import SettingsService
from licensing.warmup import days_until_next_phase, effective_phase, next_phase_starts_at

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/limits", response_model=dict)
def get_limits(
    principal_id: str = Depends(get_principal_id),
    settings: SettingsService = Depends(get_settings_service),
) -> dict:
    result = settings.get_or_create_limits(principal_id)
    return {"success": True, "created": result.created, "data": result.record.to_dict()}


@router.put("/limits", response_model=dict)
def update_limits(
    payload: Dict[str, Any] = Body(...),
    principal_id: str = Depends(require_action(ActionKind.SESSION)),
    settings: SettingsService = Depends(get_settings_service),
) -> dict:
    limits = settings.update_limits(principal_id, payload)
    return {"success": True, "message": "Daily limits updated", "data": limits.to_dict()}


def _warmup_payload(state, now) -> dict:
    data = state.to_dict()
    data["current_phase"] = effective_phase(state, now)
    data["days_until_next_phase"] = days_until_next_phase(state, now)
    starts_at = next_phase_starts_at(state, now)
    data["next_phase_starts_at"] = starts_at.isoformat() if starts_at is not None else None
    return data


@router.get("/warmup", response_model=dict)
def get_warmup(
    principal_id: str = Depends(get_principal_id),
    settings: SettingsService = Depends(get_settings_service),
    clock=Depends(get_clock),
) -> dict:
    result = settings.get_or_create_warmup(principal_id)
    return {"success": True, "created": result.created, "data": _warmup_payload(result.record, clock())}


@router.put("/warmup", response_model=dict)
def update_warmup(
    payload: Dict[str, Any] = Body(...),
    principal_id: str = Depends(require_action(ActionKind.SESSION)),
    settings: SettingsService = Depends(get_settings_service),
    clock=Depends(get_clock),
) -> dict:
    state = settings.update_warmup(principal_id, payload)
    return {"success": True, "message": "Warm-up settings updated", "data": _warmup_payload(state, clock())}
