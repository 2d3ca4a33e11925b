"""CrowdPulse application entrypoint."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import Message, Receive, Scope, Send

from crowdpulse.api.esp32 import (
    CORS_ALLOW_HEADERS,
    DEVICE_PATHS,
    PREFLIGHT_HEADERS,
    router as esp32_router,
)
from crowdpulse.api.routes import router as api_router
from crowdpulse.config import settings
from crowdpulse.database import init_db
from crowdpulse.errors import CrowdPulseError, MethodNotAllowed, ValidationError

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    # Import models to register them with SQLModel before init_db()
    import crowdpulse.accounts.models  # noqa: F401
    import crowdpulse.registry.models  # noqa: F401

    init_db()
    logger.info("Database initialized")

    yield


app = FastAPI(
    title="CrowdPulse",
    description="ESP32 people counting and shop crowd levels",
    version="0.1.0",
    lifespan=lifespan,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


class DeviceCORSMiddleware(CORSMiddleware):
    """CORS for the owner API. Device endpoints bypass the origin and header
    checks and always get the permissive headers, preflight included.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["path"] not in DEVICE_PATHS:
            await super().__call__(scope, receive, send)
            return

        async def send_with_cors(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).update(PREFLIGHT_HEADERS)
            await send(message)

        await self.app(scope, receive, send_with_cors)


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    DeviceCORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=CORS_ALLOW_HEADERS,
)


# Every failure leaves as {"error": ...} JSON


@app.exception_handler(CrowdPulseError)
async def crowdpulse_error_handler(request: Request, exc: CrowdPulseError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if any(err.get("type") == "json_invalid" for err in errors):
        message = "Invalid JSON body"
    else:
        fields = sorted({str(err["loc"][-1]) for err in errors if err.get("loc")})
        message = "Missing or invalid fields: " + ", ".join(fields) if fields else "Invalid request"
    err = ValidationError(message)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == MethodNotAllowed.status_code:
        content = MethodNotAllowed("Method not allowed").to_dict()
    else:
        content = {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


# Register routers
app.include_router(esp32_router)
app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting CrowdPulse on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
