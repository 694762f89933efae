# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""HTTP front end for scroll captures (Starlette + uvicorn).

Routes:
- ``POST /api/generate-background``: validate, record, store, return ``{"videoUrl": ...}``
- ``GET /health``: liveness
- ``/videos``: static recordings (local storage backend only)

Invalid input is rejected with a 400 problem+json before any browser work
starts. Capture failures become problem+json bodies; the ``stack``
extension is only present in development.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.staticfiles import StaticFiles

from . import CaptureRequest, ScrollDirection, ScrollSpeed, Viewport
from .browser_session import BrowserConfig
from .config import ServiceConfig
from .errors import ValidationError
from .orchestrator import SessionOrchestrator
from .problem_details import from_exception, from_validation
from .storage import build_store

logger = logging.getLogger(__name__)

# First failing field -> message returned to the client
_FIELD_MESSAGES = {
    "url": "URL and scrollSpeed are required",
    "scrollSpeed": "scrollSpeed must be fast, medium, or slow",
    "scrollDirection": "scrollDirection must be down, up, or loop",
    "duration": "Duration must be a positive number in seconds",
    "hideElements": "hideElements must be an array of CSS selectors",
    "resolution": "resolution must look like 1920x1080",
}


class GenerateBackgroundBody(BaseModel):
    """JSON body of ``POST /api/generate-background``."""

    model_config = ConfigDict(extra="ignore")

    url: str = Field(min_length=1)
    scrollSpeed: ScrollSpeed
    resolution: str = "1920x1080"
    scrollDirection: ScrollDirection = ScrollDirection.DOWN
    hideElements: list[str] = Field(default_factory=list)
    duration: float | None = None

    @field_validator("duration", mode="before")
    @classmethod
    def _duration_is_positive_number(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ValueError("duration must be a number")
        if value <= 0:
            raise ValueError("duration must be positive")
        return value

    def to_capture_request(self) -> CaptureRequest:
        return CaptureRequest(
            page_url=self.url,
            scroll_speed=self.scrollSpeed,
            viewport=Viewport.parse(self.resolution),
            scroll_direction=self.scrollDirection,
            elements_to_hide=tuple(self.hideElements),
            explicit_duration=self.duration,
        )


def parse_capture_request(payload: Any) -> CaptureRequest:
    """Validate a decoded JSON body into a :class:`CaptureRequest`.

    Raises:
        ValidationError: with ``field_name`` set to the first offending field.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    if not payload.get("url") or not payload.get("scrollSpeed"):
        field_name = "url" if not payload.get("url") else "scrollSpeed"
        raise ValidationError(_FIELD_MESSAGES["url"], field_name=field_name)
    try:
        body = GenerateBackgroundBody.model_validate(payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field_name = str(first["loc"][0]) if first.get("loc") else ""
        message = _FIELD_MESSAGES.get(field_name, first.get("msg", "Invalid request"))
        raise ValidationError(message, field_name=field_name) from exc
    return body.to_capture_request()


# ── Request logging (pure ASGI) ──────────────────────────────────────


class RequestLogMiddleware:
    """Log one line per HTTP request and bind a request id for its log lines."""

    def __init__(self, app) -> None:
        self.app = app

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        request_id = uuid.uuid4().hex[:12]
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            logger.info("%s %s", scope.get("method", ""), scope.get("path", ""))
            await self.app(scope, receive, send)


# ── Handlers ─────────────────────────────────────────────────────────


async def generate_background(request: Request) -> JSONResponse:
    config: ServiceConfig = request.app.state.config
    try:
        payload = await request.json()
    except ValueError:
        return from_validation("Request body must be valid JSON", instance=request.url.path).to_response()

    try:
        capture = parse_capture_request(payload)
    except ValidationError as exc:
        logger.info("Rejected request: %s", exc)
        return from_validation(str(exc), field_name=exc.field_name, instance=request.url.path).to_response()

    orchestrator: SessionOrchestrator = request.app.state.orchestrator
    try:
        artifact = await orchestrator.generate(capture)
    except Exception as exc:
        logger.error("Error generating video: %s", exc)
        return from_exception(
            exc,
            instance=request.url.path,
            include_stack=config.is_development,
        ).to_response()

    logger.info("Video generated and uploaded successfully: %s", artifact.key)
    return JSONResponse({"videoUrl": artifact.reference_url})


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error: %s", exc, exc_info=exc)
    config: ServiceConfig = request.app.state.config
    return from_exception(exc, instance=request.url.path, include_stack=config.is_development).to_response()


def create_app(
    config: ServiceConfig | None = None,
    orchestrator: SessionOrchestrator | None = None,
) -> Starlette:
    """Build the ASGI app. *orchestrator* defaults to one wired from *config*."""
    config = config or ServiceConfig.from_env()
    if orchestrator is None:
        browser_config = BrowserConfig(headless=config.headless, video_dir=config.video_dir)
        orchestrator = SessionOrchestrator(build_store(config), browser_config)

    routes = [
        Route("/api/generate-background", generate_background, methods=["POST"]),
        Route("/health", health, methods=["GET"]),
    ]
    if config.storage_backend == "local":
        routes.append(
            Mount("/videos", app=StaticFiles(directory=str(config.public_video_dir), check_dir=False), name="videos")
        )

    app = Starlette(routes=routes, exception_handlers={Exception: _unhandled_error})
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.add_middleware(RequestLogMiddleware)
    return app


def run(config: ServiceConfig) -> None:
    """Serve the API with uvicorn until interrupted."""
    import uvicorn

    config.ensure_dirs()
    app = create_app(config)
    logger.info(
        "Starting scrollcast server (host=%s, port=%d, env=%s, storage=%s)",
        config.host,
        config.port,
        config.environment,
        config.storage_backend,
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level="info", log_config=None)
