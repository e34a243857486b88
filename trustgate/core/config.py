from typing import List
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    PROJECT_NAME: str = "Trusted Device Service"

    # MongoDB Config
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB_NAME: str = "trusted_devices"

    # JWT (issued by the identity provider, verified here)
    JWT_SECRET_KEY: str = Field(default="change-me-in-env", description="Shared HS256 secret")
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Trust windows (days)
    DEFAULT_TRUST_DURATION_DAYS: int = 30
    MAX_TRUST_DURATION_DAYS: int = 365
    DEFAULT_EXTEND_DAYS: int = 30

    # Risk policy
    SENSITIVE_ACTIONS: List[str] = Field(
        default=["destructive", "financial", "payment", "delete", "security_settings"],
        description="Actions that always require step-up MFA",
    )

    # Legacy principal-type inference, used only when the token has no principal_type claim
    EMPLOYEE_EMAIL_DOMAIN: str = "@romerotechsolutions.com"

    ADMIN_ROLES: List[str] = ["admin"]

    CORS_ORIGINS: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()
