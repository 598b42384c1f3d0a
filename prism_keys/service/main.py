"""FastAPI application for the Prism key service.

This module exposes the HTTP surface around the key engine: the Discord
interaction webhook that drives key issuance, public validation endpoints for
the client application, and the VIP-only dashboard API.

Endpoint Categories:
    - Discord: POST /api/interactions (Ed25519-signed webhook)
    - Public: /api/bot/status, /api/keys/validate/..., /healthz
    - Dashboard (VIP session): /api/stats, /api/keys/recent, /api/cooldowns,
      /api/logs, /api/auth/user
    - Login: /api/login, /api/callback, /api/logout

Lifecycle:
    Startup configures logging and the service container, initializes the key
    store, registers slash commands when the bot is configured, and starts the
    expiration sweeper. Shutdown stops the sweeper and disposes the container.

Error Handling:
    Store failures become 500 responses with a generic body; unknown records
    become 404. Validation results are always 200 with ``valid`` set, except
    the legacy route which keeps its historical 404 for unknown codes.
"""

import hmac
import json
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..auth import OAUTH_STATE_COOKIE, SESSION_COOKIE, SESSION_MAX_AGE, profile_to_user, require_vip_user
from ..bot.interactions import APPLICATION_COMMAND, PING, Interaction, pong
from ..bot.registration import register_commands
from ..config import configure_logging, get_settings
from ..container import configure_services, container_lifespan
from ..errors import NotFoundError, OAuthError, StoreError
from ..keys.stats import compute_stats
from ..models.key_models import (
    AuthorizedUser,
    BotStatus,
    CooldownRecord,
    DashboardStats,
    KeyRecord,
    LegacyValidationResult,
    LogEntry,
    ValidationOutcome,
)

load_dotenv()

logger = structlog.get_logger()

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop the store, bot registration and sweeper."""
    configure_logging(settings.log_level)
    container = configure_services(settings)

    logger.info("Initializing services...", key_store=settings.key_store)
    await container.get("store").initialize()
    app.state.container = container

    if settings.bot_configured:
        await register_commands(
            container.get("discord_rest"),
            settings.discord_client_id,
            settings.guild_id,
            container.get("presence"),
            container.get("audit"),
        )
    else:
        logger.warning("Discord bot cannot start - missing DISCORD_TOKEN or DISCORD_CLIENT_ID")

    sweeper = container.get("sweeper")
    sweeper.start()

    async with container_lifespan(container):
        try:
            yield
        finally:
            logger.info("Shutting down services...")
            await sweeper.stop()


app = FastAPI(
    title="Prism Key Service",
    version="1.0.0",
    description="Discord-gated key issuance, validation and VIP dashboard API",
    lifespan=lifespan,
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# Discord


@app.post("/api/interactions")
async def discord_interactions(request: Request):
    """Discord interaction webhook.

    Verifies the Ed25519 signature, answers PING with PONG and routes
    application commands to the command router. Every command gets a reply.
    """
    container = request.app.state.container
    body = await request.body()

    verifier = container.get("interaction_verifier")
    if not verifier.verify(
        request.headers.get("X-Signature-Ed25519"),
        request.headers.get("X-Signature-Timestamp"),
        body,
    ):
        logger.warning("Invalid interaction signature", security_event=True)
        raise HTTPException(status_code=401, detail="invalid request signature")

    try:
        interaction = Interaction.from_payload(json.loads(body))
    except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
        logger.warning("Malformed interaction payload", error=str(e))
        raise HTTPException(status_code=400, detail="Malformed interaction payload") from e

    if interaction.type == PING:
        return pong()
    if interaction.type != APPLICATION_COMMAND:
        raise HTTPException(status_code=400, detail="Unsupported interaction type")

    return await container.get("command_router").dispatch(interaction)


@app.get("/api/bot/status", response_model=BotStatus)
async def bot_status(request: Request):
    return request.app.state.container.get("presence").status()


# Public validation


@app.get(
    "/api/keys/validate/{code}/{caller_id}",
    response_model=ValidationOutcome,
    response_model_exclude_none=True,
)
@limiter.limit(settings.validate_rate_limit)
async def validate_key_for_user(request: Request, code: str, caller_id: str):
    """Owner-checked validation used by current clients."""
    try:
        return await request.app.state.container.get("validation_service").validate(code, caller_id)
    except StoreError:
        return JSONResponse(status_code=500, content={"valid": False, "error": "Internal server error"})


@app.get("/api/keys/validate/{code}", response_model=LegacyValidationResult)
@limiter.limit(settings.validate_rate_limit)
async def validate_key_legacy(request: Request, code: str):
    """Unchecked validation kept for clients that predate ownership checks."""
    try:
        return await request.app.state.container.get("validation_service").validate_legacy(code)
    except NotFoundError as e:
        return JSONResponse(status_code=404, content={"valid": False, "message": str(e)})
    except StoreError:
        return JSONResponse(status_code=500, content={"error": "Failed to validate key"})


# Dashboard


def list_limit(raw: Optional[str], default: int, maximum: int) -> int:
    """Parse a ``limit`` query value, falling back to ``default`` when missing, non-numeric or below 1."""
    try:
        value = int(raw) if raw is not None else default
    except ValueError:
        return default
    if value < 1:
        return default
    return min(value, maximum)


@app.get("/api/stats", response_model=DashboardStats)
async def dashboard_stats(request: Request, user_id: str = Security(require_vip_user)):
    container = request.app.state.container
    try:
        return await compute_stats(container.get("store"), container.get("clock"))
    except StoreError as e:
        logger.error("Failed to fetch stats", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch stats") from e


@app.get("/api/keys/recent", response_model=list[KeyRecord])
async def recent_keys(
    request: Request,
    limit: Optional[str] = Query(None),
    user_id: str = Security(require_vip_user),
):
    try:
        return await request.app.state.container.get("store").list_recent_keys(list_limit(limit, 10, 500))
    except StoreError as e:
        logger.error("Failed to fetch recent keys", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch recent keys") from e


@app.get("/api/cooldowns", response_model=list[CooldownRecord])
async def list_cooldowns(request: Request, user_id: str = Security(require_vip_user)):
    try:
        return await request.app.state.container.get("store").list_cooldowns()
    except StoreError as e:
        logger.error("Failed to fetch cooldowns", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch cooldowns") from e


@app.delete("/api/cooldowns/{owner_id}")
async def remove_cooldown(request: Request, owner_id: str, user_id: str = Security(require_vip_user)):
    """Administrative removal of a user's cooldown marker."""
    container = request.app.state.container
    try:
        removed = await container.get("store").remove_cooldown(owner_id)
    except StoreError as e:
        logger.error("Failed to remove cooldown", owner_id=owner_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to remove cooldown") from e

    if not removed:
        raise NotFoundError(f"No cooldown for user {owner_id}")

    await container.get("audit").info(f"Cooldown removed for {owner_id} by dashboard user {user_id}", actor_id=user_id)
    return {"removed": True, "ownerId": owner_id}


@app.get("/api/logs", response_model=list[LogEntry])
async def recent_logs(
    request: Request,
    limit: Optional[str] = Query(None),
    user_id: str = Security(require_vip_user),
):
    try:
        return await request.app.state.container.get("store").list_recent_logs(list_limit(limit, 50, 1000))
    except StoreError as e:
        logger.error("Failed to fetch logs", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch logs") from e


@app.get("/api/auth/user", response_model=AuthorizedUser)
async def current_user(request: Request, user_id: str = Security(require_vip_user)):
    try:
        user = await request.app.state.container.get("store").get_user(user_id)
    except StoreError as e:
        logger.error("Error fetching user", user_id=user_id, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch user") from e
    if user is None:
        raise NotFoundError("User profile not found")
    return user


# Login


@app.get("/api/login")
async def login(request: Request):
    oauth = request.app.state.container.get("oauth_client")
    if not oauth.configured:
        return JSONResponse(
            status_code=500,
            content={
                "error": "Discord OAuth not configured",
                "message": "Please provide DISCORD_CLIENT_SECRET to enable Discord authentication.",
            },
        )

    state = secrets.token_urlsafe(16)
    response = RedirectResponse(oauth.authorize_url(state), status_code=302)
    response.set_cookie(OAUTH_STATE_COOKIE, state, max_age=600, httponly=True, samesite="lax")
    return response


@app.get("/api/callback")
async def oauth_callback(request: Request, code: Optional[str] = None, state: Optional[str] = None):
    """Complete Discord login; only VIP users receive a session."""
    container = request.app.state.container
    expected_state = request.cookies.get(OAUTH_STATE_COOKIE)
    if not code or not state or not expected_state or not hmac.compare_digest(state, expected_state):
        logger.warning("OAuth callback state mismatch", security_event=True)
        return RedirectResponse("/unauthorized", status_code=302)

    oauth = container.get("oauth_client")
    try:
        access_token = await oauth.exchange_code(code)
        profile = await oauth.fetch_profile(access_token)
    except OAuthError:
        return RedirectResponse("/unauthorized", status_code=302)

    user = profile_to_user(profile)
    if user.id not in container.get("settings").vip_user_ids:
        await container.get("audit").warn(f"Dashboard access denied for {user.displayName}", actor_id=user.id)
        response = RedirectResponse("/unauthorized", status_code=302)
        response.delete_cookie(OAUTH_STATE_COOKIE)
        return response

    try:
        await container.get("store").upsert_user(user)
    except StoreError as e:
        logger.error("Failed to store dashboard user", user_id=user.id, error=str(e))
        return RedirectResponse("/unauthorized", status_code=302)

    logger.info("VIP user authenticated successfully", user_id=user.id)
    response = RedirectResponse("/", status_code=302)
    response.delete_cookie(OAUTH_STATE_COOKIE)
    response.set_cookie(
        SESSION_COOKIE,
        container.get("session_signer").sign(user.id),
        max_age=int(SESSION_MAX_AGE.total_seconds()),
        httponly=True,
        samesite="lax",
    )
    return response


@app.get("/api/logout")
async def logout():
    response = RedirectResponse("/", status_code=302)
    response.delete_cookie(SESSION_COOKIE)
    return response


@app.get("/healthz")
async def health(request: Request):
    """Store reachability and bot presence."""
    container = request.app.state.container
    try:
        store_ok = await container.get("store").ping()
    except StoreError as e:
        logger.error("Health check failed", error=str(e))
        store_ok = False

    bot = container.get("presence").status()
    return {
        "status": "healthy" if store_ok else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "store": store_ok,
        "bot": bot.model_dump(),
    }


if __name__ == "__main__":
    import uvicorn

    configure_logging(settings.log_level)

    uvicorn.run(
        "prism_keys.service.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        reload=os.getenv("API_RELOAD", "false").lower() == "true",
    )
