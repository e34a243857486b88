# main.py

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from trustgate.api.v1.routes.trusted_device_route import router as trusted_device_router
from trustgate.core.config import settings
from trustgate.core.exceptions import StorageFailureError, TrustedDeviceError
from trustgate.db.mongodb import close_mongo_connection, connect_to_mongo, ensure_indexes, get_database

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------
# FASTAPI APP
# -----------------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description="Trusted device registry and adaptive MFA decisions",
)

# -----------------------------
# CORS MIDDLEWARE
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# ROUTERS
# -----------------------------
app.include_router(trusted_device_router, prefix="/api/v1")


# -----------------------------
# ERROR ENVELOPE
# -----------------------------
def _error_body(message: str, **extra) -> dict:
    body = {"success": False, "message": message, "data": None}
    body.update(extra)
    return body


@app.exception_handler(TrustedDeviceError)
async def trusted_device_error_handler(request: Request, exc: TrustedDeviceError):
    if isinstance(exc, StorageFailureError):
        logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc.__cause__ or exc)
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content=_error_body(str(exc.detail)))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    message = f"{field}: {first.get('msg')}" if field else "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body(message))


# -----------------------------
# STARTUP EVENT
# -----------------------------
@app.on_event("startup")
async def startup_event():
    logger.info("Starting %s", settings.PROJECT_NAME)
    await connect_to_mongo()

    db = await get_database()
    await ensure_indexes(db)
    logger.info("trusted_devices indexes ensured")


# -----------------------------
# SHUTDOWN EVENT
# -----------------------------
@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down %s", settings.PROJECT_NAME)
    await close_mongo_connection()


# -----------------------------
# ROOT ENDPOINT
# -----------------------------
@app.get("/", tags=["Health"])
def root():
    return {
        "message": "Trusted Device Service Running",
        "version": "1.0.0",
        "docs": "/docs"
    }
