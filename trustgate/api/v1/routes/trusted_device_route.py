# ============================================================================
# FILE: trustgate/api/v1/routes/trusted_device_route.py
# ============================================================================

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from trustgate.core.exceptions import DeviceNotFoundError, InvalidInputError, StorageFailureError
from trustgate.core.mfa_risk_evaluator import MFARiskEvaluator, RiskFactors
from trustgate.core.security import (
    Principal,
    get_current_principal,
    infer_owner_type_from_email,
    require_admin,
)
from trustgate.db.models.trusted_device_model import OwnerType
from trustgate.db.mongodb import get_database
from trustgate.schemas.trusted_device_schema import (
    CheckDeviceRequest,
    ExtendDeviceRequest,
    MFADecisionResponse,
    MFARequiredRequest,
    PreAuthCheckRequest,
    RegisterDeviceRequest,
    RenameDeviceRequest,
    TrustCheckData,
    TrustedDeviceResponse,
    TrustedDeviceStatsResponse,
)
from trustgate.services.trusted_device_service import TrustedDeviceService
from trustgate.utils.ip_utils import get_client_ip

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/trusted-devices", tags=["Trusted Devices"])


def envelope(message: str, data: Any = None, success: bool = True, **extra) -> dict:
    body = {"success": success, "message": message, "data": data}
    body.update(extra)
    return body


async def get_trusted_device_service(db=Depends(get_database)) -> TrustedDeviceService:
    return TrustedDeviceService(db)


async def get_mfa_evaluator(
    service: TrustedDeviceService = Depends(get_trusted_device_service),
) -> MFARiskEvaluator:
    return MFARiskEvaluator(service)


def _require_fingerprint(fingerprint: Optional[str]) -> str:
    if not fingerprint or not fingerprint.strip():
        raise InvalidInputError("Device fingerprint is required")
    return fingerprint


def _trust_check_response(device) -> dict:
    if device is None:
        return envelope("Device is not trusted", trusted=False)

    data = TrustCheckData(
        device_name=device.device_name,
        last_used=device.last_used,
        expires_at=device.expires_at,
        is_shared_device=device.is_shared_device,
    )
    return envelope("Device is trusted", data=data.model_dump(), trusted=True)


# ===========================
#         REGISTER
# ===========================
@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_device(
    body: RegisterDeviceRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    """
    Register the caller's current device as trusted.
    Shared devices are rejected; they can be used but never trusted.
    """
    device = await service.register(
        owner_id=principal.id,
        owner_type=principal.owner_type,
        device_fingerprint=body.device_fingerprint,
        device_name=body.device_name,
        device_info=body.device_info,
        is_shared_device=body.is_shared_device,
        trust_duration_days=body.trust_duration_days,
        registered_ip=get_client_ip(request),
    )

    return envelope(
        "Device registered as trusted successfully",
        data={
            "id": device.id,
            "device_name": device.device_name,
            "expires_at": device.expires_at,
            "is_shared_device": device.is_shared_device,
        },
    )


# ===========================
#        TRUST CHECKS
# ===========================
@router.post("/check")
async def check_device(
    body: CheckDeviceRequest,
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    fingerprint = _require_fingerprint(body.device_fingerprint)
    device = await service.check_trust(principal.id, principal.owner_type, fingerprint)
    return _trust_check_response(device)


async def _lookup_principal_id(db: AsyncIOMotorDatabase, email: str, owner_type: str) -> Optional[str]:
    collection = db.employees if owner_type == OwnerType.EMPLOYEE.value else db.users
    user = await collection.find_one({"email": email}, {"_id": 1})
    return str(user["_id"]) if user else None


@router.post("/check-pre-auth")
async def check_device_pre_auth(
    body: PreAuthCheckRequest,
    db=Depends(get_database),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    """
    Trust check before login completes, keyed by email instead of a session.
    Any failure answers "not trusted".
    """
    fingerprint = _require_fingerprint(body.device_fingerprint)
    if not body.user_email:
        raise InvalidInputError("Device fingerprint and user email are required")

    owner_type = infer_owner_type_from_email(body.user_email)
    try:
        owner_id = await _lookup_principal_id(db, body.user_email, owner_type)
        if owner_id is None:
            return envelope("Device is not trusted", trusted=False)
        device = await service.check_trust(owner_id, owner_type, fingerprint)
    except (PyMongoError, StorageFailureError):
        logger.exception("Error checking pre-auth trusted device")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=envelope("Failed to check trusted device", success=False, trusted=False),
        )

    return _trust_check_response(device)


# ===========================
#       MFA DECISION
# ===========================
@router.post("/mfa-required")
async def mfa_required(
    body: MFARequiredRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    evaluator: MFARiskEvaluator = Depends(get_mfa_evaluator),
):
    fingerprint = _require_fingerprint(body.device_fingerprint)
    risk_factors = RiskFactors(
        action=body.action,
        ip_address=get_client_ip(request),
        new_location=body.new_location,
    )

    decision = await evaluator.evaluate(principal.id, principal.owner_type, fingerprint, risk_factors)

    trusted = decision.trusted_device
    data = MFADecisionResponse(
        require_mfa=decision.require_mfa,
        reasons=decision.reasons,
        risk_level=decision.risk_level,
        trusted_device={
            "device_name": trusted.device_name,
            "is_shared_device": trusted.is_shared_device,
        } if trusted else None,
    ).model_dump()

    if decision.error:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=envelope("Failed to determine MFA requirement", data=data, success=False),
        )
    return envelope("MFA requirement evaluated", data=data)


# ===========================
#       DEVICE LISTING
# ===========================
@router.get("")
async def list_devices(
    include_revoked: bool = Query(False),
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    devices = await service.list_for_owner(principal.id, principal.owner_type, include_revoked)
    return envelope(
        "Trusted devices retrieved",
        data=[TrustedDeviceResponse.from_model(d).model_dump() for d in devices],
        total=len(devices),
    )


# ===========================
#     ADMIN / MONITORING
# ===========================
@router.get("/stats")
async def device_stats(
    admin: Principal = Depends(require_admin),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    stats = await service.get_stats()
    return envelope("Trusted device statistics", data=TrustedDeviceStatsResponse(**stats).model_dump())


@router.post("/maintenance/cleanup")
async def cleanup_expired_devices(
    admin: Principal = Depends(require_admin),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    cleaned = await service.cleanup_expired()
    logger.info("Expired trusted device cleanup run by admin %s", admin.id)
    return envelope(f"{cleaned} expired trusted devices cleaned up", data={"cleaned_count": cleaned})


# ===========================
#         LIFECYCLE
# ===========================
@router.delete("")
async def revoke_all_devices(
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    revoked_count = await service.revoke_all(principal.id, principal.owner_type)
    return envelope(
        f"{revoked_count} trusted devices revoked successfully",
        data={"revoked_count": revoked_count},
    )


@router.delete("/{device_id}")
async def revoke_device(
    device_id: str,
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    """
    Revoke a trusted device.
    After revoking, the device is treated as untrusted and MFA applies again.
    """
    if not await service.revoke(device_id, principal.id, principal.owner_type):
        raise DeviceNotFoundError()
    return envelope("Trusted device revoked successfully")


@router.put("/{device_id}/extend")
async def extend_device(
    device_id: str,
    body: ExtendDeviceRequest,
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    new_expires_at = await service.extend(
        device_id, principal.id, principal.owner_type, body.additional_days
    )
    if new_expires_at is None:
        raise DeviceNotFoundError()
    return envelope(
        "Trusted device expiration extended successfully",
        data={"expires_at": new_expires_at},
    )


@router.put("/{device_id}/rename")
async def rename_device(
    device_id: str,
    body: RenameDeviceRequest,
    principal: Principal = Depends(get_current_principal),
    service: TrustedDeviceService = Depends(get_trusted_device_service),
):
    if not await service.rename(device_id, principal.id, principal.owner_type, body.device_name):
        raise DeviceNotFoundError()
    return envelope("Device name updated successfully")
