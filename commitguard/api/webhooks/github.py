"""GitHub webhook endpoint.

Security: HMAC SHA256 signature in ``X-Hub-Signature-256``, verified by the
gateway against ``GITHUB_WEBHOOK_SECRET``.
"""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Header, Request

from commitguard.api.webhooks.gateway import Rejected, WebhookGateway
from commitguard.api.webhooks.responses import accepted_body, get_gateway
from commitguard.exceptions import ValidationError
from commitguard.models import Platform

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/github")
async def receive_github_webhook(
    request: Request,
    x_github_event: str | None = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: str | None = Header(None, alias="X-GitHub-Delivery"),
    gateway: WebhookGateway = Depends(get_gateway),
):
    """Receive a GitHub webhook (push, pull_request; other events are acknowledged)."""
    if not x_github_event:
        raise ValidationError("Missing X-GitHub-Event header")

    body = await request.body()
    logger.info("Received GitHub webhook", event_type=x_github_event, delivery_id=x_github_delivery)

    result = await gateway.ingest(Platform.GITHUB, x_github_event, body, request.headers)
    if isinstance(result, Rejected):
        raise result.to_error()

    response = {
        "status": "success",
        "message": "Webhook processed successfully",
        "eventType": x_github_event,
        "deliveryId": x_github_delivery,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    response.update(accepted_body(result, repository_key="repository"))
    return response
