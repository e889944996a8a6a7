"""Shared helpers for the webhook routes."""

from typing import Any

from fastapi import Request

from commitguard.api.webhooks.gateway import Accepted, WebhookGateway


def get_gateway(request: Request) -> WebhookGateway:
    """FastAPI dependency: the gateway built by the app lifespan."""
    return request.app.state.gateway


def accepted_body(result: Accepted, repository_key: str) -> dict[str, Any]:
    """Response fields describing what an accepted webhook did."""
    body: dict[str, Any] = {}
    if result.repository is not None:
        body[repository_key] = result.repository.full_name or result.repository.name
    if result.ignored:
        body["message"] = f"Event '{result.event_type}' acknowledged, no analysis required"
    if result.commits:
        body["commits"] = [
            {
                "commitId": track.commit_id,
                "analysisId": track.analysis_id,
                "status": track.status.value,
                "duplicate": track.duplicate,
            }
            for track in result.commits
        ]
    if result.analysis_id:
        body["analysisId"] = result.analysis_id
    return body
