import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from conxion.config import settings
from conxion.core.errors import BackendError, ErrorKind, kind_for_status
from conxion.database import Base, engine

# Import models so SQLAlchemy registers tables
from conxion.models import onboarding_draft  # noqa: F401

# Routers
from conxion.routers import (
    connection_router,
    events_router,
    messages_router,
    moderation_router,
    notifications_router,
    onboarding_router,
    profiles_router,
    references_router,
    syncs_router,
    trips_router,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("conxion")

# -----------------------
# CREATE APP
# -----------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Backend API for the ConXion dance community.",
    version="1.0.0",
)

# -----------------------
# CORS
# -----------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------
# DATABASE TABLES
# -----------------------
Base.metadata.create_all(bind=engine)


# -----------------------
# ERROR ENVELOPE
# -----------------------
def _envelope(status_code: int, error: str, kind: ErrorKind) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": error, "kind": kind.value},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = _envelope(exc.status_code, str(exc.detail), kind_for_status(exc.status_code))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind.value, exc.detail)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request.")
    return _envelope(400, f"{location}: {message}" if location else message, ErrorKind.INVALID)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _envelope(500, str(exc) or "Internal server error.", ErrorKind.INTERNAL)


# -----------------------
# ROUTES
# -----------------------
app.include_router(connection_router.router)
app.include_router(syncs_router.router)
app.include_router(trips_router.router)
app.include_router(messages_router.router)
app.include_router(events_router.router)
app.include_router(moderation_router.router)
app.include_router(notifications_router.router)
app.include_router(references_router.router)
app.include_router(profiles_router.router)
app.include_router(onboarding_router.router)


# -----------------------
# HEALTH CHECK
# -----------------------
@app.get("/")
def root():
    return {"message": "ConXion API is running!"}
