"""Webhook routes: provider endpoints plus health, config and diagnostics."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Request

from commitguard.api.webhooks.github import router as github_router
from commitguard.api.webhooks.gitlab import router as gitlab_router
from commitguard.events.metrics import get_metrics_registry
from commitguard.models import Platform

router = APIRouter()
router.include_router(github_router)
router.include_router(gitlab_router)

admin_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

SERVICE_NAME = "commitguard-webhooks"


@admin_router.get("/health")
async def webhook_health(request: Request):
    """Liveness plus security and bus metrics."""
    validator = request.app.state.gateway.validator
    return {
        "status": "UP",
        "service": SERVICE_NAME,
        "timestamp": datetime.now(UTC).isoformat(),
        "security": {
            platform.value.lower(): validator.is_configured(platform)
            for platform in Platform
        },
        "metrics": get_metrics_registry().snapshot(),
    }


@admin_router.get("/config")
async def webhook_config(request: Request):
    """Introspection for operators wiring up webhooks."""
    validator = request.app.state.gateway.validator
    return {
        "securityConfigured": validator.security_configured,
        "allowUnsigned": validator.allow_unsigned,
        "supportedPlatforms": [platform.value for platform in Platform],
        "endpoints": {
            "github": "/webhooks/github",
            "gitlab": "/webhooks/gitlab",
            "health": "/webhooks/health",
        },
    }


@admin_router.post("/test")
async def webhook_test(payload: dict[str, Any]):
    """Echo a body back for connectivity checks."""
    return {
        "status": "success",
        "message": "Test webhook received",
        "receivedPayload": payload,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@admin_router.post("/metrics/reset")
async def reset_metrics():
    """Zero the process-wide message bus metrics."""
    get_metrics_registry().reset()
    return {"status": "success", "message": "Metrics reset"}


router.include_router(admin_router)

__all__ = ["router"]
