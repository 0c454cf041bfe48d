"""
Bot control endpoints.

Start is gated by the bot_control license check; emergency stop never is.
State conflicts come back as 409 with ALREADY_RUNNING / NOT_RUNNING.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from licensing.api.dependencies import get_bot_control, get_principal_id
from licensing.bot_control import BotControl

router = APIRouter(prefix="/bot", tags=["bot"])


class StartBody(BaseModel):
    settings: Optional[Dict[str, Any]] = Field(None, description="Options handed to the automation launcher")


class StopBody(BaseModel):
    error_message: Optional[str] = Field(None, max_length=2000)


@router.post("/start", response_model=dict)
def start_bot(
    body: Optional[StartBody] = None,
    principal_id: str = Depends(get_principal_id),
    control: BotControl = Depends(get_bot_control),
) -> dict:
    snapshot = control.start(principal_id, body.settings if body else None)
    return {"success": True, "data": snapshot.to_dict()}


@router.post("/stop", response_model=dict)
def stop_bot(
    body: Optional[StopBody] = None,
    principal_id: str = Depends(get_principal_id),
    control: BotControl = Depends(get_bot_control),
) -> dict:
    snapshot = control.stop(principal_id, body.error_message if body else None)
    return {"success": True, "data": snapshot.to_dict()}


@router.post("/pause", response_model=dict)
def pause_bot(
    principal_id: str = Depends(get_principal_id),
    control: BotControl = Depends(get_bot_control),
) -> dict:
    return {"success": True, "data": control.pause(principal_id).to_dict()}


@router.post("/resume", response_model=dict)
def resume_bot(
    principal_id: str = Depends(get_principal_id),
    control: BotControl = Depends(get_bot_control),
) -> dict:
    return {"success": True, "data": control.resume(principal_id).to_dict()}


@router.post("/emergency-stop", response_model=dict)
def emergency_stop_bot(
    principal_id: str = Depends(get_principal_id),
    control: BotControl = Depends(get_bot_control),
) -> dict:
    return {"success": True, "data": control.emergency_stop(principal_id).to_dict()}


@router.get("/status", response_model=dict)
def get_bot_status(
    principal_id: str = Depends(get_principal_id),
    control: BotControl = Depends(get_bot_control),
) -> dict:
    return {"success": True, "data": control.get_status(principal_id).to_dict()}
