"""FastAPI application receiving tracker webhooks."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from flowgate import __version__
from flowgate.core.service import FlowgateService
from flowgate.webhooks.handler import WebhookHandler
from flowgate.webhooks.schemas import LinearWebhookPayload, WebhookAccepted

logger = logging.getLogger(__name__)


def create_webhook_router(handler: WebhookHandler) -> APIRouter:
    """Create the webhook router bound to a handler.

    Args:
        handler: WebhookHandler processing accepted payloads

    Returns:
        APIRouter: Router with the webhook endpoint
    """
    router = APIRouter(tags=["webhooks"])

    @router.post(
        "/webhooks/linear",
        response_model=WebhookAccepted,
        status_code=status.HTTP_202_ACCEPTED,
    )
    async def receive_linear_webhook(
        payload: LinearWebhookPayload, background_tasks: BackgroundTasks
    ):
        """Accept a Linear webhook and process it after responding."""
        logger.debug(f"Received {payload.type} {payload.action} webhook for {payload.entity_id}")
        background_tasks.add_task(handler.handle, payload)
        return WebhookAccepted(
            action=payload.action, type=payload.type, entity_id=payload.entity_id
        )

    return router


health_router = APIRouter(tags=["health"])


@health_router.get("/health")
async def health_check():
    """Health check endpoint.

    Returns:
        dict: Health status, timestamp, and version
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


def create_app(service: FlowgateService) -> FastAPI:
    """Build the FastAPI application for a service."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        service.shutdown()

    app = FastAPI(title="flowgate", version=__version__, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(create_webhook_router(WebhookHandler(service)))

    # Malformed payloads are client errors, not unprocessable entities
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Rejected malformed webhook payload: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": jsonable_encoder(exc.errors())},
        )

    return app
