"""
Public endpoints: access key validation and device activation requests.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from accessgate.domain.components.access_key_validator import AccessKeyValidator
from accessgate.domain.components.device_authorizer import ActivationResult, DeviceAuthorizer
from accessgate.domain.components.key_administrator import KeyNotFoundError
from accessgate.domain.interfaces.access_key_store import StateStoreError
from accessgate.infrastructure.utils.validation import ValidationError
from accessgate_proxy.dependencies import get_access_key_validator, get_device_authorizer

logger = structlog.get_logger(__name__)

router = APIRouter()

_ACTIVATION_MESSAGES: dict[ActivationResult, str] = {
    ActivationResult.Requested: "Activation request sent to admin.",
    ActivationResult.AlreadyPending: "Activation request is already pending.",
    ActivationResult.AlreadyAuthorized: "Device is already authorized.",
}


class ActivationRequest(BaseModel):
    access_key: str | None = Field(None, alias="accessKey")
    device_id: str | None = Field(None, alias="deviceId")

    model_config = ConfigDict(populate_by_name=True)


@router.get("/validate-access-key")
async def validate_access_key(
    validator: Annotated[AccessKeyValidator, Depends(get_access_key_validator)],
    access_key: Annotated[str | None, Query(alias="accessKey")] = None,
    device_id: Annotated[str | None, Query(alias="deviceId")] = None,
    panel_type: Annotated[str | None, Query(alias="panelType")] = None,
) -> JSONResponse:
    """
    Validate an access key and consume one use.
    """
    try:
        decision = await validator.validate(access_key, device_id=device_id, panel_type=panel_type)
    except StateStoreError:
        return JSONResponse(
            status_code=500,
            content={"valid": False, "message": "Server error during validation."},
        )
    return JSONResponse(status_code=decision.status_code, content=decision.to_response())


@router.post("/request-activation")
async def request_activation(
    request: Annotated[ActivationRequest, Body(...)],
    authorizer: Annotated[DeviceAuthorizer, Depends(get_device_authorizer)],
) -> JSONResponse:
    """
    Ask an administrator to authorize a device for an access key.
    """
    if not request.access_key or not request.device_id:
        return _activation_response(400, False, "Access key and device ID are required.")

    try:
        result = await authorizer.request_activation(request.access_key, request.device_id)
    except ValidationError as e:
        return _activation_response(400, False, e.message)
    except KeyNotFoundError:
        return _activation_response(404, False, "Access key not found.")
    except StateStoreError as e:
        logger.error("activation_request_failed", error=str(e))
        return _activation_response(500, False, "Internal Server Error.")

    return _activation_response(200, True, _ACTIVATION_MESSAGES[result], status=result.value)


def _activation_response(status_code: int, success: bool, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": success, "message": message, **extra},
    )
