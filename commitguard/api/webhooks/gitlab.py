"""GitLab webhook endpoint.

Security: shared token in ``X-Gitlab-Token``, compared against
``GITLAB_WEBHOOK_TOKEN``.
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


@router.post("/gitlab")
async def receive_gitlab_webhook(
    request: Request,
    x_gitlab_event: str | None = Header(None, alias="X-Gitlab-Event"),
    x_gitlab_event_uuid: str | None = Header(None, alias="X-Gitlab-Event-UUID"),
    gateway: WebhookGateway = Depends(get_gateway),
):
    """Receive a GitLab webhook (Push Hook, Merge Request Hook; others are acknowledged)."""
    if not x_gitlab_event:
        raise ValidationError("Missing X-Gitlab-Event header")

    body = await request.body()
    logger.info("Received GitLab webhook", event_type=x_gitlab_event, event_id=x_gitlab_event_uuid)

    result = await gateway.ingest(Platform.GITLAB, x_gitlab_event, body, request.headers)
    if isinstance(result, Rejected):
        raise result.to_error()

    response = {
        "status": "success",
        "message": "Webhook processed successfully",
        "eventType": x_gitlab_event,
        "eventId": x_gitlab_event_uuid,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    response.update(accepted_body(result, repository_key="project"))
    return response
