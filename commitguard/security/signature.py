"""Webhook signature and token verification.

Security:
- GitHub: HMAC SHA256 over the raw body, ``X-Hub-Signature-256: sha256=<hex>``
- GitLab: shared token in ``X-Gitlab-Token``
- All comparisons are constant-time
- A platform with no secret configured is rejected unless unsigned webhooks
  are explicitly allowed (development setting)
"""

import hashlib
import hmac
import secrets

import structlog

from commitguard.config import Settings, get_settings
from commitguard.models import Platform

logger = structlog.get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


# =============================================================================
# Primitives
# =============================================================================


def compute_github_signature(payload_body: bytes, webhook_secret: str) -> str:
    """Compute the ``sha256=<hex>`` header value GitHub sends for a body."""
    mac = hmac.new(
        webhook_secret.encode("utf-8"),
        msg=payload_body,
        digestmod=hashlib.sha256,
    )
    return SIGNATURE_PREFIX + mac.hexdigest()


def _constant_time_equals(left: str, right: str) -> bool:
    return secrets.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def verify_github_signature(
    payload_body: bytes,
    signature_header: str | None,
    webhook_secret: str,
) -> bool:
    """Verify GitHub webhook signature using HMAC SHA256.

    Args:
        payload_body: Raw request body bytes
        signature_header: X-Hub-Signature-256 header value
        webhook_secret: Webhook secret from GitHub settings

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature_header:
        logger.warning("Missing X-Hub-Signature-256 header")
        return False

    if not signature_header.startswith(SIGNATURE_PREFIX):
        logger.warning("Invalid signature format", header=signature_header[:20])
        return False

    expected = compute_github_signature(payload_body, webhook_secret)
    return _constant_time_equals(signature_header, expected)


def verify_gitlab_token(token_header: str | None, expected_token: str) -> bool:
    """Verify GitLab webhook token.

    Args:
        token_header: X-Gitlab-Token header value
        expected_token: Token configured on the GitLab webhook

    Returns:
        True if the token matches, False otherwise
    """
    if not token_header:
        logger.warning("Missing X-Gitlab-Token header")
        return False

    return _constant_time_equals(token_header, expected_token)


def generate_secure_token(length: int = 32) -> str:
    """Generate a URL-safe random token suitable as a webhook secret."""
    return secrets.token_urlsafe(length)


# =============================================================================
# Validator
# =============================================================================


class SignatureValidator:
    """Validates webhook authenticity per platform.

    Never raises: every failure is reported as ``False`` and the caller
    decides how to reject the request.
    """

    def __init__(
        self,
        github_secret: str | None = None,
        gitlab_token: str | None = None,
        allow_unsigned: bool = False,
    ):
        self._github_secret = github_secret or None
        self._gitlab_token = gitlab_token or None
        self.allow_unsigned = allow_unsigned

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "SignatureValidator":
        settings = settings or get_settings()
        return cls(
            github_secret=(
                settings.github_webhook_secret.get_secret_value()
                if settings.github_webhook_secret
                else None
            ),
            gitlab_token=(
                settings.gitlab_webhook_token.get_secret_value()
                if settings.gitlab_webhook_token
                else None
            ),
            allow_unsigned=settings.allow_unsigned_webhooks,
        )

    def is_configured(self, platform: Platform) -> bool:
        """Whether a secret/token is configured for ``platform``."""
        if platform == Platform.GITHUB:
            return self._github_secret is not None
        return self._gitlab_token is not None

    @property
    def security_configured(self) -> bool:
        """True when every supported platform has a secret/token."""
        return all(self.is_configured(platform) for platform in Platform)

    def validate(self, platform: Platform | str, credential: str | None, raw_payload: bytes) -> bool:
        """Validate a webhook credential.

        Args:
            platform: Source platform
            credential: Signature header (GitHub) or token header (GitLab)
            raw_payload: Raw request body

        Returns:
            True if the webhook is authentic (or allowed unsigned), False otherwise
        """
        try:
            platform = Platform(platform.upper()) if isinstance(platform, str) else platform
        except ValueError:
            logger.warning("Signature validation for unsupported platform", platform=platform)
            return False

        if not self.is_configured(platform):
            if self.allow_unsigned:
                logger.warning(
                    "Webhook secret not configured - skipping validation",
                    platform=platform.value,
                )
                return True
            logger.error(
                "Webhook secret not configured - rejecting webhook",
                platform=platform.value,
            )
            return False

        if platform == Platform.GITHUB:
            valid = verify_github_signature(raw_payload, credential, self._github_secret)
        else:
            valid = verify_gitlab_token(credential, self._gitlab_token)

        if not valid:
            logger.warning("Webhook validation failed", platform=platform.value)
        return valid
