# trustgate/db/models/trusted_device_model.py
"""
Model for the trusted_devices collection.

A record means the owner completed full authentication on this device and
chose to skip step-up MFA on it until `expires_at`. Records are soft-revoked,
never deleted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from trustgate.utils.time_utils import utcnow


class OwnerType(str, Enum):
    EMPLOYEE = "employee"
    CLIENT = "client"


class TrustedDeviceModel(BaseModel):
    """Trusted device document as stored in MongoDB"""

    id: Optional[str] = Field(None, alias="_id")

    owner_id: str
    owner_type: OwnerType
    device_fingerprint: str
    device_name: str
    device_info: Dict[str, Any] = Field(default_factory=dict)
    is_shared_device: bool = False

    # Trust window
    trust_duration_days: int = 30
    expires_at: datetime
    last_used: datetime = Field(default_factory=utcnow)

    # Security tracking
    registered_ip: Optional[str] = None  # IP when device was registered

    # Status
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    class Config:
        populate_by_name = True
        use_enum_values = True

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "TrustedDeviceModel":
        data = dict(doc)
        data["_id"] = str(data["_id"])
        return cls(**data)

    def to_document(self) -> Dict[str, Any]:
        """Document to insert; MongoDB assigns the _id"""
        return self.model_dump(exclude={"id"})
