# trustgate/schemas/trusted_device_schema.py

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from trustgate.db.models.trusted_device_model import TrustedDeviceModel


# Required-ness of fingerprint/name/info is checked by the service so the
# caller gets one specific message instead of a field-by-field error list.
class RegisterDeviceRequest(BaseModel):
    """
    Request schema for registering the current device as trusted.
    """
    device_fingerprint: Optional[str] = Field(None, description="Client-generated device fingerprint")
    device_name: Optional[str] = Field(None, description="Human-readable device name")
    device_info: Optional[Dict[str, Any]] = Field(None, description="Browser/OS details, stored verbatim")
    is_shared_device: bool = False
    trust_duration_days: Optional[int] = Field(None, description="Days to trust the device")


class CheckDeviceRequest(BaseModel):
    device_fingerprint: Optional[str] = None


class PreAuthCheckRequest(BaseModel):
    device_fingerprint: Optional[str] = None
    user_email: Optional[EmailStr] = None


class MFARequiredRequest(BaseModel):
    """
    Request schema for the step-up MFA decision.
    The caller IP is taken from the request, not the body.
    """
    device_fingerprint: Optional[str] = None
    action: Optional[str] = Field(None, description="Action being performed, e.g. 'destructive'")
    new_location: bool = False


class ExtendDeviceRequest(BaseModel):
    additional_days: Optional[int] = Field(None, description="Days added to the current expiry")


class RenameDeviceRequest(BaseModel):
    device_name: Optional[str] = None


class TrustedDeviceResponse(BaseModel):
    """
    Response schema for trusted device.
    """
    id: str
    device_name: str
    device_info: Dict[str, Any]
    is_shared_device: bool
    last_used: datetime
    expires_at: datetime
    revoked: bool
    revoked_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_model(cls, device: TrustedDeviceModel) -> "TrustedDeviceResponse":
        return cls(**device.model_dump(include=set(cls.model_fields)))


class TrustCheckData(BaseModel):
    device_name: str
    last_used: datetime
    expires_at: datetime
    is_shared_device: bool


class MFADecisionResponse(BaseModel):
    require_mfa: bool
    reasons: List[str]
    risk_level: str
    trusted_device: Optional[Dict[str, Any]] = None


class TrustedDeviceStatsResponse(BaseModel):
    total_devices: int
    active_devices: int
    expired_devices: int
    shared_devices: int
    users_with_trusted_devices: int
