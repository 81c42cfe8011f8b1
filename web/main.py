"""FastAPI application factory for the UserForge API"""

import asyncio
import os
import signal
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from userforge.auth.service import AuthService
from userforge.auth.tokens import TokenService
from userforge.safety.rate_limiter import RateLimiter
from userforge.services.database import connect_to_db, disconnect_from_db
from userforge.services.user_service import UserService
from userforge.services.user_store import UserStore
from userforge.utils.config import Settings, load_settings
from userforge.utils.exceptions import InternalError, UserForgeError, ValidationError
from userforge.utils.logger import get_logger, setup_logging

from .auth_routes import router as auth_router
from .middleware import (
    AccessLogMiddlewareASGI,
    BodySizeLimitMiddlewareASGI,
    RateLimitMiddlewareASGI,
    SecurityHeadersMiddlewareASGI,
)
from .models import REQUIRED_MESSAGES, SECRET_FIELDS, error_envelope
from .user_routes import router as user_router

logger = get_logger(__name__)

AVAILABLE_ROUTES = {
    "api": "/api",
    "auth": "/api/auth",
    "users": "/api/users",
    "docs": "/api-docs",
    "health": "/health",
}

_REQUEST_LOCATIONS = ("body", "query", "path", "header")


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into [{field, message, value}]"""
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in _REQUEST_LOCATIONS and len(loc) > 1:
            loc = loc[1:]
        field = ".".join(loc) or "body"

        if err.get("type") == "missing":
            message = REQUIRED_MESSAGES.get(field, f"{field} is required")
        else:
            message = str(err.get("msg", "Invalid value"))
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]

        item: Dict[str, Any] = {"field": field, "message": message}
        if err.get("type") != "missing" and field not in SECRET_FIELDS and "input" in err:
            item["value"] = err["input"]
        errors.append(item)
    return errors


def _install_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(UserForgeError)
    async def userforge_error_handler(request: Request, exc: UserForgeError):
        errors = exc.errors if isinstance(exc, ValidationError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(error_envelope(exc.message, errors=errors)),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = _validation_errors(exc)
        logger.info("Request validation failed", path=request.url.path, fields=[e["field"] for e in errors])
        return JSONResponse(
            status_code=400,
            content=jsonable_encoder(error_envelope("Validation error", errors=errors)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            target = request.url.path
            if request.url.query:
                target = f"{target}?{request.url.query}"
            return JSONResponse(
                status_code=404,
                content=error_envelope(f"Route {target} not found", availableRoutes=AVAILABLE_ROUTES),
            )
        if exc.status_code == 405:
            message = f"Method {request.method} not allowed for {request.url.path}"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path, method=request.method, error=str(exc))
        internal = InternalError()
        extra = {"error": str(exc)} if settings.is_development else {}
        return JSONResponse(status_code=internal.status_code, content=error_envelope(internal.message, **extra))


def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
    """Log errors nothing else caught and shut the server down gracefully"""
    exc = context.get("exception")
    logger.error(
        "Unhandled error in event loop, shutting down",
        message=context.get("message"),
        error=repr(exc) if exc else None,
    )
    os.kill(os.getpid(), signal.SIGTERM)


def build_rate_limiters(settings: Settings) -> Dict[str, RateLimiter]:
    rules = settings.rate_limits
    return {
        "api": RateLimiter(rules.api, name="api"),
        "auth": RateLimiter(rules.auth, name="auth"),
        "create_account": RateLimiter(rules.create_account, name="create_account"),
        "password": RateLimiter(rules.password, name="password"),
    }


def create_app(settings: Optional[Settings] = None, mongo_client_class: Optional[Any] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Loaded settings; read from config/settings.yaml when omitted
        mongo_client_class: Alternative MongoClient class (mongomock in tests)
    """
    if settings is None:
        # Worker processes started by uvicorn get here without settings
        settings = load_settings()
        setup_logging(settings.logging)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        connect_to_db(settings.database, mongo_client_class=mongo_client_class)
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(_loop_exception_handler)
        app.state.started_at = time.monotonic()
        logger.info(
            "UserForge API started",
            environment=settings.app.environment,
            version=settings.app.version,
        )
        try:
            yield
        finally:
            loop.set_exception_handler(previous_handler)
            disconnect_from_db()
            logger.info("UserForge API stopped")

    app = FastAPI(
        title=f"{settings.app.name} API",
        description="User management REST API: registration, login and user administration",
        version=settings.app.version,
        docs_url="/api-docs",
        redoc_url=None,
        openapi_url="/api-docs/openapi.json",
        lifespan=lifespan,
    )

    store = UserStore()
    tokens = TokenService(settings.auth)
    app.state.settings = settings
    app.state.user_store = store
    app.state.tokens = tokens
    app.state.auth_service = AuthService(store, tokens, bcrypt_rounds=settings.auth.bcrypt_rounds)
    app.state.user_service = UserService(store, bcrypt_rounds=settings.auth.bcrypt_rounds)
    app.state.started_at = time.monotonic()

    _install_exception_handlers(app, settings)

    # Added innermost first; the access log wraps everything else
    if settings.rate_limits.enabled:
        limiters = build_rate_limiters(settings)
        app.state.rate_limiters = limiters
        app.add_middleware(RateLimitMiddlewareASGI, limiters=limiters, trusted_hops=settings.server.proxy_hops)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins if settings.is_production else ["*"],
        allow_credentials=settings.is_production,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(BodySizeLimitMiddlewareASGI, max_bytes=settings.server.max_body_bytes)
    app.add_middleware(SecurityHeadersMiddlewareASGI, hsts=settings.is_production)
    app.add_middleware(AccessLogMiddlewareASGI, trusted_hops=settings.server.proxy_hops)

    @app.get("/", include_in_schema=False)
    async def index():
        return {"success": True, "message": "API is running!", "version": settings.app.version}

    @app.get("/health")
    async def health_check(request: Request):
        return {
            "success": True,
            "message": "Server is running",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "environment": settings.app.environment,
        }

    @app.get("/api")
    async def api_info():
        return {
            "success": True,
            "message": f"User API v{settings.app.version}",
            "documentation": "/api-docs",
            "endpoints": {
                "auth": "/api/auth",
                "users": "/api/users",
            },
        }

    app.include_router(auth_router)
    app.include_router(user_router)
    return app
