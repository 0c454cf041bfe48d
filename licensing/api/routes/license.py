"""
License endpoints for the current principal.

check-permission answers without side effects; usage is recorded by the
automation side through AuthorizationService.record_usage, not here.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from licensing import catalog
from licensing.activity import ActivityLog
from licensing.api.dependencies import (
    get_activity_log,
    get_authorization_service,
    get_license_service,
    get_principal_id,
)
from licensing.errors import LicenseNotFoundError
from licensing.license_service import LicenseService
from licensing.models import LICENSE_TIERS, ActionKind
from licensing.service import AuthorizationService

router = APIRouter(prefix="/license", tags=["license"])

_USAGE_ACTIONS = (
    ("connections", ActionKind.CONNECTION),
    ("messages", ActionKind.MESSAGE),
    ("profile_views", ActionKind.PROFILE_VIEW),
    ("searches", ActionKind.SEARCH),
)


class CheckPermissionBody(BaseModel):
    action: ActionKind


class UpgradeBody(BaseModel):
    tier: str = Field(..., description=f"One of: {', '.join(LICENSE_TIERS)}")
    duration_days: Optional[int] = Field(None, ge=1, le=3650)

    @field_validator("tier")
    @classmethod
    def _validate_tier(cls, value: str) -> str:
        if not catalog.is_known_tier(value):
            raise ValueError(f"tier must be one of: {', '.join(LICENSE_TIERS)}")
        return catalog.normalize_tier(value)


class ExtendBody(BaseModel):
    days: int = Field(..., ge=1, le=3650)


@router.get("/info", response_model=dict)
def get_license_info(
    principal_id: str = Depends(get_principal_id),
    licenses: LicenseService = Depends(get_license_service),
) -> dict:
    return {"success": True, "data": licenses.get_license_info(principal_id)}


@router.get("/usage", response_model=dict)
def get_usage(
    principal_id: str = Depends(get_principal_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
    activity: ActivityLog = Depends(get_activity_log),
) -> dict:
    ledger = authorization.ledger
    usage = ledger.usage_for(principal_id)
    if usage is None:
        raise LicenseNotFoundError(principal_id)
    return {
        "success": True,
        "data": {
            "usage": usage.to_dict(),
            "remaining": {key: ledger.remaining(principal_id, action) for key, action in _USAGE_ACTIONS},
            "today_activity": activity.today_usage(principal_id),
        },
    }


@router.get("/limits", response_model=dict)
def get_effective_limits(
    principal_id: str = Depends(get_principal_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    return {"success": True, "data": authorization.get_effective_limits(principal_id).to_dict()}


@router.post("/check-permission", response_model=dict)
def check_permission(
    body: CheckPermissionBody,
    principal_id: str = Depends(get_principal_id),
    authorization: AuthorizationService = Depends(get_authorization_service),
) -> dict:
    decision = authorization.authorize(principal_id, body.action)
    return {"success": True, "data": decision.to_dict()}


@router.post("/upgrade", response_model=dict)
def upgrade_license(
    body: UpgradeBody,
    principal_id: str = Depends(get_principal_id),
    licenses: LicenseService = Depends(get_license_service),
) -> dict:
    licenses.upgrade_license(principal_id, body.tier, body.duration_days)
    return {"success": True, "data": licenses.get_license_info(principal_id)}


@router.post("/extend", response_model=dict)
def extend_license(
    body: ExtendBody,
    principal_id: str = Depends(get_principal_id),
    licenses: LicenseService = Depends(get_license_service),
) -> dict:
    licenses.extend_license(principal_id, body.days)
    return {"success": True, "data": licenses.get_license_info(principal_id)}


@router.post("/reset-usage", response_model=dict)
def reset_usage(
    principal_id: str = Depends(get_principal_id),
    licenses: LicenseService = Depends(get_license_service),
) -> dict:
    """Premium and enterprise only; 403 PERMISSION_DENIED for other tiers."""
    return {"success": True, "data": licenses.reset_usage(principal_id).to_dict()}
