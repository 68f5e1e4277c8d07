"""
Management API endpoints for the access key lifecycle.

All routes are mounted under ``/api/v1`` and protected by
``ManagementAPIAuthMiddleware``. Domain errors are translated to HTTP status
codes by the exception handlers registered in ``accessgate_proxy.main``.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Path, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from accessgate.domain.components.burst_limiter import BurstLimiter
from accessgate.domain.components.device_authorizer import DeviceAuthorizer
from accessgate.domain.components.key_administrator import KeyAdministrator
from accessgate.domain.models.access_key import AccessKey, PanelTypeRestriction
from accessgate.infrastructure.utils.validation import PERMANENT
from accessgate_proxy.dependencies import (
    get_burst_limiter,
    get_device_authorizer,
    get_key_administrator,
)

router = APIRouter(prefix="/keys")

KeyPath = Annotated[str, Path(..., description="The access key.")]
DevicePath = Annotated[str, Path(..., description="The device identifier.")]
Administrator = Annotated[KeyAdministrator, Depends(get_key_administrator)]
Authorizer = Annotated[DeviceAuthorizer, Depends(get_device_authorizer)]


class KeyCreateRequest(BaseModel):
    key: str | None = Field(None, description="Key value; generated when omitted.")
    panel_type_restriction: PanelTypeRestriction = Field(PanelTypeRestriction.Both)
    daily_limit: int = Field(0, description="Uses per day, 0 for unlimited.")
    created_by: str | None = Field(None, description="Administrator creating the key.")


class BanRequest(BaseModel):
    duration: str = Field(PERMANENT, description="<n>h, <n>d, <n>w or permanent.")
    reason: str | None = None
    banned_by: str | None = None


class SuspendRequest(BaseModel):
    duration: str | None = Field(None, description="<n>h, <n>d, <n>w; indefinite when omitted.")
    reason: str | None = None
    suspended_by: str | None = None


class DailyLimitRequest(BaseModel):
    daily_limit: int = Field(..., description="Uses per day, 0 for unlimited.")


def _serialize(key: AccessKey) -> dict[str, Any]:
    return key.model_dump(mode="json")


@router.get("")
async def list_keys(admin: Administrator) -> dict[str, Any]:
    """
    List all access keys.
    """
    keys = await admin.list_keys()
    return {"keys": [_serialize(key) for key in keys]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_key(
    request: Annotated[KeyCreateRequest, Body(...)],
    admin: Administrator,
) -> dict[str, Any]:
    """
    Create an access key.
    """
    created = await admin.create_key(
        key=request.key,
        panel_type_restriction=request.panel_type_restriction,
        daily_limit=request.daily_limit,
        created_by=request.created_by,
    )
    return {"key": _serialize(created)}


@router.get("/{key}")
async def get_key(key: KeyPath, admin: Administrator) -> dict[str, Any]:
    return {"key": _serialize(await admin.get_key(key))}


@router.delete("/{key}")
async def delete_key(key: KeyPath, admin: Administrator) -> dict[str, Any]:
    """
    Permanently delete an access key.
    """
    await admin.delete_key(key)
    return {"deleted": True}


@router.post("/{key}/ban")
async def ban_key(
    key: KeyPath,
    request: Annotated[BanRequest, Body(...)],
    admin: Administrator,
) -> dict[str, Any]:
    """
    Ban an access key permanently or for a duration.
    """
    updated = await admin.ban(
        key, duration=request.duration, reason=request.reason, banned_by=request.banned_by
    )
    return {"key": _serialize(updated)}


@router.post("/{key}/suspend")
async def suspend_key(
    key: KeyPath,
    request: Annotated[SuspendRequest, Body(...)],
    admin: Administrator,
) -> dict[str, Any]:
    updated = await admin.suspend(
        key,
        duration=request.duration,
        reason=request.reason,
        suspended_by=request.suspended_by,
    )
    return {"key": _serialize(updated)}


@router.post("/{key}/unban")
async def unban_key(key: KeyPath, admin: Administrator) -> dict[str, Any]:
    """
    Return a suspended or banned access key to active.
    """
    return {"key": _serialize(await admin.unban(key))}


@router.put("/{key}/daily-limit")
async def set_daily_limit(
    key: KeyPath,
    request: Annotated[DailyLimitRequest, Body(...)],
    admin: Administrator,
) -> dict[str, Any]:
    updated = await admin.set_daily_limit(key, request.daily_limit)
    return {"key": _serialize(updated)}


@router.post("/{key}/devices/{device_id}/authorize")
async def authorize_device(key: KeyPath, device_id: DevicePath, authorizer: Authorizer) -> dict[str, Any]:
    return {"key": _serialize(await authorizer.authorize_device(key, device_id))}


@router.post("/{key}/devices/{device_id}/reject")
async def reject_device(key: KeyPath, device_id: DevicePath, authorizer: Authorizer) -> dict[str, Any]:
    return {"key": _serialize(await authorizer.reject_device(key, device_id))}


@router.delete("/{key}/devices/{device_id}")
async def unauthorize_device(key: KeyPath, device_id: DevicePath, authorizer: Authorizer) -> dict[str, Any]:
    """
    Remove an authorized device from an access key.
    """
    return {"key": _serialize(await authorizer.unauthorize_device(key, device_id))}


@router.get("/{key}/audit")
async def get_key_audit_trail(
    key: KeyPath,
    admin: Administrator,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> dict[str, Any]:
    """
    Get the status audit trail for an access key.
    """
    transitions = await admin.get_state_transitions(key, limit=limit)
    return {"audit_trail": [t.model_dump(mode="json") for t in transitions]}


@router.post("/{key}/burst-check")
async def burst_check(
    key: KeyPath,
    limiter: Annotated[BurstLimiter, Depends(get_burst_limiter)],
) -> JSONResponse:
    """
    Run burst protection for a key, recording the use when admitted.
    """
    decision = await limiter.record_burst_and_maybe_reject(key)
    return JSONResponse(status_code=decision.status_code, content=decision.to_response())
