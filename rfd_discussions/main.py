"""
RFD Discussions - Webhook Service

Receives signed webhooks from the RFD tool and keeps one chat discussion per
RFD in sync: the first delivery for an RFD creates the discussion, later
deliveries post change summaries into it.
"""
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from rfd_discussions import __version__
from rfd_discussions.chat import ChatPlatform, RocketChatClient
from rfd_discussions.config import AppConfig
from rfd_discussions.db import close_db_connections, init_db
from rfd_discussions.discussions import DiscussionManager
from rfd_discussions.exceptions import (
    AuthenticationError,
    ConfigurationError,
    InvalidPayloadError,
    RFDDiscussionsError,
)
from rfd_discussions.models import DiscussionRef, WebhookPayload, WebhookResponse
from rfd_discussions.webhooks import SIGNATURE_HEADER, verify_signature

app_config = AppConfig()

# Configure logging
logging.basicConfig(
    level=getattr(logging, app_config.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("rfd_discussions")

# ============================================================
# Application Setup
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise the database and the chat client; release both on shutdown."""
    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialization complete")

    chat: Optional[RocketChatClient] = None
    if app_config.rocketchat_url:
        chat = RocketChatClient(
            app_config.rocketchat_url,
            app_config.rocketchat_user_id,
            app_config.rocketchat_auth_token,
        )
    else:
        logger.warning("ROCKETCHAT_URL is not set; webhooks will fail until it is configured")
    app.state.chat = chat
    yield
    if chat is not None:
        await chat.close()
    logger.info("Closing database connections...")
    await close_db_connections()
    logger.info("Database connections closed")

app = FastAPI(title="RFD Discussions", version=__version__, lifespan=lifespan)

# ============================================================
# Error Handling - Consistent Error Format
# ============================================================

def _error_response(status: int, message: str) -> JSONResponse:
    """Create a ``{success: false, error}`` JSONResponse."""
    body = WebhookResponse(success=False, error=message).model_dump(exclude_none=True)
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(RFDDiscussionsError)
async def rfd_error_handler(request: Request, exc: RFDDiscussionsError):
    if exc.status_code >= 500:
        logger.error(f"Webhook processing error: {exc.message}")
    else:
        logger.warning(f"Webhook rejected: {exc.message}")
    return _error_response(exc.status_code, exc.message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(500, "Internal error")

# ============================================================
# Dependencies
# ============================================================

def get_app_config() -> AppConfig:
    return app_config


def get_chat_platform(request: Request) -> ChatPlatform:
    chat = getattr(request.app.state, "chat", None)
    if chat is None:
        raise ConfigurationError("Chat platform not configured")
    return chat


def _parse_payload(body: bytes) -> WebhookPayload:
    try:
        data = json.loads(body)
    except ValueError as e:
        raise InvalidPayloadError(f"Invalid payload: body is not JSON ({e})") from e
    if not isinstance(data, dict) or not data.get("event") or not data.get("rfd"):
        raise InvalidPayloadError("Invalid payload")
    try:
        return WebhookPayload.model_validate(data)
    except ValidationError as e:
        if any(err.get("loc", ())[:1] == ("event",) for err in e.errors()):
            raise InvalidPayloadError(f"Unknown event type: {data.get('event')}") from e
        raise InvalidPayloadError(f"Invalid payload: {e.error_count()} validation error(s)") from e

# ============================================================
# API Routes (v1)
# ============================================================

v1 = APIRouter(prefix="/api/v1", tags=["v1"])


@v1.post("/webhook")
async def receive_webhook(
    request: Request,
    config: AppConfig = Depends(get_app_config),
):
    """Authenticate an RFD webhook and reconcile its discussion."""
    missing = config.missing_required()
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
    chat = get_chat_platform(request)

    body = await request.body()
    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), config.webhook_secret):
        raise AuthenticationError("Invalid signature")

    payload = _parse_payload(body)
    logger.info(f"Received webhook: {payload.event} for RFD {payload.rfd.id}")

    manager = DiscussionManager(chat, config.discussion_settings())
    result = await manager.reconcile(payload.event, payload.rfd, payload.link, payload.changes)
    logger.info(f"RFD {payload.rfd.id} reconciled ({result.action}): {result.url}")

    response = WebhookResponse(
        success=True,
        discussion=DiscussionRef(id=result.room_id, url=result.url),
    )
    return response.model_dump(exclude_none=True)


# Include versioned router
app.include_router(v1)


# ============================================================
# Health Check (unversioned)
# ============================================================

@app.get("/")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "RFD Discussions",
        "version": __version__,
    }


# For direct execution
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
