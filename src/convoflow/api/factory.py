"""FastAPI application factory.

APP_ROLE=public serves the platform webhooks; APP_ROLE=worker additionally
mounts the Pub/Sub push endpoints that drive the pipeline workers.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Literal

from fastapi import FastAPI, Request, Response

from convoflow import __version__
from convoflow.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from . import dependencies
from .routes import pubsub_push, webhooks

logger = get_logger(__name__)

AppRole = Literal["public", "worker"]
_ROLES = ("public", "worker")


def create_app(role: AppRole | None = None) -> FastAPI:
    """Build the app for `role` (defaults to APP_ROLE, then "public").

    Raises:
        ValueError: Unknown role.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]
    if role not in _ROLES:
        raise ValueError(f"unknown APP_ROLE: {role}")

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "app started",
            extra={"extra_fields": safe_log_context(role=role, version=__version__)},
        )
        yield
        dependencies.shutdown()
        logger.info("app stopped", extra={"extra_fields": safe_log_context(role=role)})

    app = FastAPI(
        title="convoflow",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def bind_correlation_id(request: Request, call_next) -> Response:
        # Meta does not send one; Pub/Sub push requests get the event id later
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[CORRELATION_ID_HEADER] = cid
        return response

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "role": role}

    app.include_router(webhooks.router)
    if role == "worker":
        app.include_router(pubsub_push.router)

    return app
