"""ASGI entry point: builds the FastAPI app and runs it under uvicorn."""

from __future__ import annotations

import argparse
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from course_platform import __version__
from course_platform.config import Settings, get_settings
from course_platform.errors import PlatformError
from course_platform.routers import admin, auth, comments, courses, health
from course_platform.security.middleware import install_security_middleware
from course_platform.security.ratelimit import RateLimitService
from course_platform.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
    return JSONResponse(
        {"error": "Invalid request", "details": jsonable_encoder(details)},
        status_code=400,
    )


def create_app(
    settings: Settings | None = None,
    rate_limiter: RateLimitService | None = None,
) -> FastAPI:
    """Assemble routers, the webhook endpoint, error handlers and security middleware."""
    settings = settings or get_settings()
    app = FastAPI(title="Course Platform", version=__version__)

    for module in (health, courses, comments, auth, admin):
        app.include_router(module.router)
    register_webhook_routes(app)

    app.add_exception_handler(PlatformError, _platform_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    install_security_middleware(app, settings=settings, rate_limiter=rate_limiter)
    return app


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the course platform API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    import uvicorn

    configure_logging()
    uvicorn.run("course_platform.serve:create_app", factory=True, host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
