"""Inbound tracker webhook endpoint.

``POST /webhook/{tracker}`` accepts GitHub, Linear, Jira and Trello
payloads. When a webhook secret is configured, the ``X-Webhook-Secret``
header must match it; the body is not read otherwise.
"""

from __future__ import annotations

import hmac
import json
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from localpipeline.logging import get_logger
from localpipeline.web.routes.health import get_runtime

logger = get_logger(__name__)

SECRET_HEADER = "X-Webhook-Secret"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_webhooks_router() -> APIRouter:
    """Create the webhook ingestion router."""
    router = APIRouter(tags=["webhooks"])

    @router.post("/webhook/{tracker}")
    async def receive(tracker: str, request: Request) -> Any:
        ingestion = request.app.state.ingestion
        if not ingestion.knows(tracker):
            logger.warning("webhook_unknown_tracker", tracker=tracker)
            return _error(400, f"Unknown provider: {tracker}")

        secret = get_runtime(request).config.web.webhook_secret
        if secret:
            provided = request.headers.get(SECRET_HEADER, "")
            if not hmac.compare_digest(provided.encode(), secret.encode()):
                logger.warning("webhook_secret_mismatch", tracker=tracker)
                return _error(401, "Invalid webhook secret")

        try:
            payload = json.loads(await request.body())
            if not isinstance(payload, dict):
                raise ValueError("Webhook body must be a JSON object")
            result = await ingestion.handle(tracker, payload)
        except Exception as e:
            logger.error(
                "webhook_handling_failed",
                tracker=tracker,
                error=str(e),
                error_type=type(e).__name__,
            )
            return _error(500, str(e))

        return result.to_response()

    return router
