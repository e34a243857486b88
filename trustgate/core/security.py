# trustgate/core/security.py

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from trustgate.core.config import settings
from trustgate.core.exceptions import ForbiddenError, UnauthenticatedError
from trustgate.db.models.trusted_device_model import OwnerType

logger = logging.getLogger(__name__)


@dataclass
class Principal:
    """Authenticated caller as supplied by the identity provider"""

    id: str
    owner_type: str
    email: Optional[str] = None
    roles: List[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return any(role in settings.ADMIN_ROLES for role in self.roles)


# -----------------------------
# CREATE JWT TOKEN
# -----------------------------
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()

    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})

    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# -----------------------------
# VERIFY / DECODE JWT TOKEN
# -----------------------------
def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])

    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token has expired")

    except jwt.InvalidTokenError:
        raise UnauthenticatedError("Invalid token")


def infer_owner_type_from_email(email: Optional[str]) -> str:
    """
    Legacy rule: company-domain addresses are employees, everyone else is a client.
    Only used for tokens issued without a principal_type claim.
    """
    if email and settings.EMPLOYEE_EMAIL_DOMAIN.lower() in email.lower():
        return OwnerType.EMPLOYEE.value
    return OwnerType.CLIENT.value


def principal_from_claims(claims: dict) -> Principal:
    if not claims.get("id"):
        raise UnauthenticatedError("Invalid token payload")

    email = claims.get("email")
    owner_type = claims.get("principal_type")
    if owner_type is None:
        owner_type = infer_owner_type_from_email(email)
        logger.warning(
            "Token for %s has no principal_type claim; inferred '%s' from email domain",
            claims["id"], owner_type,
        )
    elif owner_type not in {t.value for t in OwnerType}:
        raise UnauthenticatedError("Invalid principal type")

    raw_roles = claims.get("roles")
    roles = [raw_roles] if isinstance(raw_roles, str) else list(raw_roles or [])
    if claims.get("role"):
        roles.append(claims["role"])

    return Principal(id=str(claims["id"]), owner_type=owner_type, email=email, roles=roles)


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def get_current_principal(token: Optional[str] = Depends(oauth2_scheme)) -> Principal:
    if not token:
        raise UnauthenticatedError("Authentication required")

    return principal_from_claims(decode_access_token(token))


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise ForbiddenError("Admin access required")
    return principal
