"""
FastAPI server for the Around the Block check-in service.

Exposes:
  - GET /health - Health check
  - POST /sessions/{user_id}/start - Start location monitoring for a user
  - POST /sessions/{user_id}/samples - Push a location sample
  - POST /sessions/{user_id}/stop - Stop monitoring (does not check out)
  - GET /sessions/{user_id} - Current monitor snapshot
  - POST /sessions/{user_id}/checkin - Manual check-in
  - POST /sessions/{user_id}/checkout - Manual check-out
  - POST /waittime - Submit a wait time (proximity gated)
  - GET /waittime/{venue_id} - Average wait and label
  - GET /docs - Interactive API documentation (Swagger UI)
"""

from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request, status, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional, Annotated
import time

# Import configuration (loads .env automatically)
from around_the_block.config import config, validate_config

# Import logging setup
from around_the_block.utils.logging_config import logger, setup_logging

from around_the_block.monitor.sessions import SessionRegistry
from around_the_block.state import Coordinate, LocationSample, MonitorSettings, Venue
from around_the_block.tools.wait_time_tools import (
    get_wait_time_average,
    submit_wait_time,
    wait_time_label,
)
from around_the_block.utils.errors import (
    AlreadyCheckedInError,
    CheckInError,
    ForbiddenError,
    InvalidInputError,
    NetworkError,
    NoActiveCheckInError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitedError,
    RemoteStoreError,
    SessionNotFoundError,
    TooFarError,
    UnauthorizedError,
)

# Setup logging
setup_logging(debug=config.DEBUG)

# ============================================================
# VALIDATE CONFIGURATION AT STARTUP
# ============================================================
try:
    config_status = validate_config()
    logger.info("Configuration validated successfully")
    for key, value in config_status.items():
        logger.info(f"  {key}: {value}")
except ValueError as e:
    logger.error(f"Configuration error: {e}")
    exit(1)

# ============================================================
# SESSIONS
# ============================================================
registry = SessionRegistry(settings=MonitorSettings.from_config(config))


def get_registry() -> SessionRegistry:
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log startup info and release every monitor on shutdown."""
    logger.info("=" * 60)
    logger.info("Around the Block check-in service starting up")
    logger.info(f"Backend: {config.BACKEND_API_URL}")
    logger.info(f"Proximity radius: {config.PROXIMITY_RADIUS_METERS}m")
    logger.info(f"Dwell threshold: {config.DWELL_THRESHOLD_MS}ms")
    logger.info(f"Debug Mode: {config.DEBUG}")
    logger.info("=" * 60)
    yield
    logger.info("Around the Block check-in service shutting down")
    await registry.stop_all()


# ============================================================
# FASTAPI APPLICATION
# ============================================================
app = FastAPI(
    title="Around the Block Check-In Service",
    description="Geofenced automatic check-in, manual check-in/out and wait-time gating",
    version="1.0.0",
    lifespan=lifespan,
)


# ============================================================
# REQUEST/RESPONSE MODELS
# ============================================================
class StartRequest(BaseModel):
    """
    Request body for starting a monitoring session.

    Attributes:
        venues: Bar catalog to match against. Loaded from the backend when omitted.
        foreground_granted: Whether the device granted foreground location.
        background_granted: Whether the device granted background location.
    """
    venues: Optional[List[Venue]] = None
    foreground_granted: bool = True
    background_granted: bool = True


class CheckInRequest(BaseModel):
    """Manual check-in at a venue from the user's current position."""
    venue: Venue
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class WaitTimeRequest(BaseModel):
    """Wait-time report for a venue from the user's current position."""
    venue: Venue
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    minutes: float


class SessionResponse(BaseModel):
    """
    Response body for session endpoints.

    Attributes:
        success (bool): Whether the action succeeded
        user_id (str): Session owner
        data (dict): Monitor snapshot after the action
        error (Optional[str]): Error message if something went wrong
    """
    success: bool
    user_id: str
    data: Dict[str, Any] = {}
    error: Optional[str] = None


# ============================================================
# DEPENDENCIES
# ============================================================
def require_service_token(
    x_service_token: Annotated[Optional[str], Header()] = None,
) -> None:
    """Reject callers without the shared secret when one is configured."""
    if config.SERVICE_TOKEN and x_service_token != config.SERVICE_TOKEN:
        logger.warning("Unauthorized request: invalid or missing service token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def bearer_token(
    authorization: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """User token forwarded to the backend."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


# ============================================================
# MIDDLEWARE
# ============================================================
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Adds X-Process-Time header to all responses showing how long request took."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# ============================================================
# ROUTES
# ============================================================

@app.get("/health", tags=["System"])
async def health_check() -> Dict[str, str]:
    """
    Health check endpoint.

    Returns:
        dict: {"status": "healthy"}
    """
    return {"status": "healthy"}


@app.get("/", tags=["System"])
async def root() -> Dict[str, str]:
    """Returns information about the API and how to access documentation."""
    return {
        "service": "Around the Block Check-In Service",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }


@app.post(
    "/sessions/{user_id}/start",
    response_model=SessionResponse,
    tags=["Sessions"],
    dependencies=[Depends(require_service_token)],
)
async def start_session(
    user_id: str,
    request: StartRequest,
    token: Annotated[Optional[str], Depends(bearer_token)],
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> SessionResponse:
    """
    Start monitoring for a user.

    Reconciles with the backend's current check-in before the first sample
    is accepted. Returns the running session if one already exists.
    """
    logger.info(f"Starting session for {user_id}")
    session = await sessions.start(
        user_id,
        auth_token=token,
        venues=request.venues,
        foreground_granted=request.foreground_granted,
        background_granted=request.background_granted,
    )
    return SessionResponse(success=True, user_id=user_id, data=dict(session.monitor.snapshot()))


@app.post(
    "/sessions/{user_id}/samples",
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Sessions"],
    dependencies=[Depends(require_service_token)],
)
async def push_sample(
    user_id: str,
    sample: LocationSample,
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> Dict[str, Any]:
    """Queue a location sample for the user's monitor."""
    await sessions.push(user_id, sample)
    return {"success": True, "queued": True}


@app.post(
    "/sessions/{user_id}/stop",
    response_model=SessionResponse,
    tags=["Sessions"],
    dependencies=[Depends(require_service_token)],
)
async def stop_session(
    user_id: str,
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> SessionResponse:
    """Stop monitoring. The user stays checked in."""
    session = sessions.get(user_id)
    await sessions.stop(user_id)
    return SessionResponse(success=True, user_id=user_id, data=dict(session.monitor.snapshot()))


@app.get(
    "/sessions/{user_id}",
    response_model=SessionResponse,
    tags=["Sessions"],
    dependencies=[Depends(require_service_token)],
)
async def get_session(
    user_id: str,
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> SessionResponse:
    session = sessions.get(user_id)
    return SessionResponse(success=True, user_id=user_id, data=dict(session.monitor.snapshot()))


@app.post(
    "/sessions/{user_id}/checkin",
    response_model=SessionResponse,
    tags=["Check-ins"],
    dependencies=[Depends(require_service_token)],
)
async def manual_check_in(
    user_id: str,
    request: CheckInRequest,
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> SessionResponse:
    """Check in at a venue. The user must be within the proximity radius."""
    monitor = sessions.get(user_id).monitor
    location = Coordinate(latitude=request.latitude, longitude=request.longitude)
    await monitor.manual_check_in(request.venue, location)
    return SessionResponse(success=True, user_id=user_id, data=dict(monitor.snapshot()))


@app.post(
    "/sessions/{user_id}/checkout",
    response_model=SessionResponse,
    tags=["Check-ins"],
    dependencies=[Depends(require_service_token)],
)
async def manual_check_out(
    user_id: str,
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> SessionResponse:
    monitor = sessions.get(user_id).monitor
    await monitor.manual_check_out()
    return SessionResponse(success=True, user_id=user_id, data=dict(monitor.snapshot()))


@app.post("/waittime", tags=["Wait times"], dependencies=[Depends(require_service_token)])
async def post_wait_time(
    request: WaitTimeRequest,
    token: Annotated[Optional[str], Depends(bearer_token)],
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> Dict[str, Any]:
    """Submit a wait time. Rejected with 403 when the user is not at the venue."""
    location = Coordinate(latitude=request.latitude, longitude=request.longitude)
    data = await submit_wait_time(
        sessions.client(token),
        request.venue,
        location,
        request.minutes,
        radius_meters=config.PROXIMITY_RADIUS_METERS,
    )
    return {"success": True, "message": data.get("message", "Saved")}


@app.get("/waittime/{venue_id}", tags=["Wait times"], dependencies=[Depends(require_service_token)])
async def get_wait_time(
    venue_id: str,
    sessions: Annotated[SessionRegistry, Depends(get_registry)],
) -> Dict[str, Any]:
    average = await get_wait_time_average(sessions.client(), venue_id)
    return {"success": True, "average": average, "label": wait_time_label(average)}


# ============================================================
# ERROR HANDLERS
# ============================================================

CHECK_IN_ERROR_STATUS = {
    TooFarError: status.HTTP_403_FORBIDDEN,
    PermissionDeniedError: status.HTTP_403_FORBIDDEN,
    NoActiveCheckInError: status.HTTP_409_CONFLICT,
    AlreadyCheckedInError: status.HTTP_409_CONFLICT,
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
}

REMOTE_ERROR_STATUS = {
    RateLimitedError: status.HTTP_429_TOO_MANY_REQUESTS,
    NetworkError: status.HTTP_503_SERVICE_UNAVAILABLE,
    UnauthorizedError: status.HTTP_401_UNAUTHORIZED,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
}


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "status_code": status_code,
        },
    )


@app.exception_handler(CheckInError)
async def check_in_error_handler(request: Request, exc: CheckInError):
    """User-facing errors: the action was refused, nothing crashed."""
    status_code = CHECK_IN_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.info(f"Refused {request.url.path}: {exc.message}")
    return _error_response(status_code, exc.message)


@app.exception_handler(RemoteStoreError)
async def remote_store_error_handler(request: Request, exc: RemoteStoreError):
    """Backend failures the caller can retry."""
    status_code = REMOTE_ERROR_STATUS.get(type(exc), status.HTTP_502_BAD_GATEWAY)
    logger.error(f"Backend error on {request.url.path}: {exc.message}")
    return _error_response(status_code, exc.message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions with consistent error response format."""
    logger.error(f"HTTP Exception: {exc.status_code} - {exc.detail}")
    return _error_response(exc.status_code, exc.detail)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle unexpected exceptions.

    Never returns the exception message to the client; use logging instead.
    """
    logger.error(f"Unhandled exception: {str(exc)}")
    logger.exception("Full traceback:")
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    """
    Run with: python -m uvicorn around_the_block.server:app --reload
    """
    import uvicorn
    uvicorn.run(
        app,
        host=config.HOST,
        port=config.PORT,
        log_level="info" if not config.DEBUG else "debug"
    )
