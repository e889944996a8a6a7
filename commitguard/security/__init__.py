"""Webhook authentication."""

from commitguard.security.signature import (
    SignatureValidator,
    compute_github_signature,
    generate_secure_token,
    verify_github_signature,
    verify_gitlab_token,
)

__all__ = [
    "SignatureValidator",
    "compute_github_signature",
    "generate_secure_token",
    "verify_github_signature",
    "verify_gitlab_token",
]
