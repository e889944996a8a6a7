"""Tests for webhook signature validation."""

import hashlib
import hmac

import pytest


class TestGitHubSignature:
    """Tests for GitHub HMAC verification."""

    def test_compute_signature_matches_hmac(self, mock_env_vars):
        """Test computed header equals sha256= plus the HMAC hex digest."""
        from commitguard.security.signature import compute_github_signature

        body = b'{"ref": "refs/heads/main"}'
        expected = hmac.new(b"secret", msg=body, digestmod=hashlib.sha256).hexdigest()

        assert compute_github_signature(body, "secret") == f"sha256={expected}"

    def test_verify_valid_signature(self, mock_env_vars):
        """Test verification with a valid signature."""
        from commitguard.security.signature import compute_github_signature, verify_github_signature

        body = b'{"test": "data"}'
        signature = compute_github_signature(body, "test-secret")

        assert verify_github_signature(body, signature, "test-secret") is True

    def test_tampered_payload_rejected(self, mock_env_vars):
        """Test a modified body with the original signature is rejected."""
        from commitguard.security.signature import compute_github_signature, verify_github_signature

        body = b'{"amount": 10}'
        signature = compute_github_signature(body, "test-secret")

        assert verify_github_signature(b'{"amount": 99}', signature, "test-secret") is False

    def test_recomputed_signature_accepted(self, mock_env_vars):
        """Test the tampered body is accepted once its signature is recomputed."""
        from commitguard.security.signature import compute_github_signature, verify_github_signature

        body = b'{"amount": 99}'
        signature = compute_github_signature(body, "test-secret")

        assert verify_github_signature(body, signature, "test-secret") is True

    def test_verify_missing_signature(self, mock_env_vars):
        """Test verification with missing signature."""
        from commitguard.security.signature import verify_github_signature

        assert verify_github_signature(b"{}", None, "test-secret") is False

    def test_verify_invalid_format(self, mock_env_vars):
        """Test verification when the sha256= prefix is missing."""
        from commitguard.security.signature import verify_github_signature

        digest = hmac.new(b"test-secret", msg=b"{}", digestmod=hashlib.sha256).hexdigest()

        assert verify_github_signature(b"{}", digest, "test-secret") is False


class TestGitLabToken:
    """Tests for GitLab token verification."""

    def test_matching_token(self, mock_env_vars):
        """Test identical tokens are accepted."""
        from commitguard.security.signature import verify_gitlab_token

        assert verify_gitlab_token("token-abc", "token-abc") is True

    def test_mismatched_token(self, mock_env_vars):
        """Test a different token is rejected."""
        from commitguard.security.signature import verify_gitlab_token

        assert verify_gitlab_token("token-abd", "token-abc") is False

    def test_missing_token(self, mock_env_vars):
        """Test a missing header is rejected."""
        from commitguard.security.signature import verify_gitlab_token

        assert verify_gitlab_token(None, "token-abc") is False


class TestSignatureValidator:
    """Tests for the per-platform validator."""

    def test_github_configured(self, mock_env_vars):
        """Test GitHub validation uses the configured secret."""
        from commitguard.security.signature import SignatureValidator, compute_github_signature

        validator = SignatureValidator(github_secret="s3cret")
        body = b'{"zen": "Keep it logically awesome."}'

        assert validator.validate("github", compute_github_signature(body, "s3cret"), body) is True
        assert validator.validate("GITHUB", compute_github_signature(body, "other"), body) is False

    def test_gitlab_configured(self, mock_env_vars):
        """Test GitLab validation compares the token."""
        from commitguard.models import Platform
        from commitguard.security.signature import SignatureValidator

        validator = SignatureValidator(gitlab_token="glt-1")

        assert validator.validate(Platform.GITLAB, "glt-1", b"{}") is True
        assert validator.validate(Platform.GITLAB, "glt-2", b"{}") is False

    def test_absent_secret_rejected_by_default(self, mock_env_vars):
        """Test an unconfigured platform is rejected when unsigned webhooks are not allowed."""
        from commitguard.security.signature import SignatureValidator

        validator = SignatureValidator()

        assert validator.validate("github", None, b"{}") is False
        assert validator.validate("gitlab", "anything", b"{}") is False

    def test_absent_secret_accepted_when_allowed(self, mock_env_vars):
        """Test an unconfigured platform always passes with allow_unsigned."""
        from commitguard.security.signature import SignatureValidator

        validator = SignatureValidator(allow_unsigned=True)

        assert validator.validate("github", None, b"{}") is True
        assert validator.validate("github", "sha256=garbage", b"tampered") is True
        assert validator.validate("gitlab", None, b"{}") is True

    def test_allow_unsigned_does_not_bypass_configured_secret(self, mock_env_vars):
        """Test a configured platform still verifies when allow_unsigned is set."""
        from commitguard.security.signature import SignatureValidator

        validator = SignatureValidator(github_secret="s3cret", allow_unsigned=True)

        assert validator.validate("github", "sha256=bad", b"{}") is False

    def test_unknown_platform(self, mock_env_vars):
        """Test an unsupported platform is rejected without raising."""
        from commitguard.security.signature import SignatureValidator

        validator = SignatureValidator(allow_unsigned=True)

        assert validator.validate("bitbucket", None, b"{}") is False

    def test_security_configured(self, mock_env_vars):
        """Test security_configured requires every platform."""
        from commitguard.security.signature import SignatureValidator

        assert SignatureValidator(github_secret="a").security_configured is False
        assert SignatureValidator(github_secret="a", gitlab_token="b").security_configured is True

    def test_from_settings(self, mock_env_vars, monkeypatch):
        """Test the validator reads secrets and the unsigned flag from settings."""
        monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "env-secret")
        monkeypatch.setenv("ALLOW_UNSIGNED_WEBHOOKS", "true")

        from commitguard.config import Settings
        from commitguard.models import Platform
        from commitguard.security.signature import SignatureValidator

        validator = SignatureValidator.from_settings(Settings())

        assert validator.is_configured(Platform.GITHUB) is True
        assert validator.is_configured(Platform.GITLAB) is False
        assert validator.allow_unsigned is True

    def test_generate_secure_token(self, mock_env_vars):
        """Test generated tokens are random and URL-safe."""
        from commitguard.security.signature import generate_secure_token

        first = generate_secure_token()
        second = generate_secure_token()

        assert first != second
        assert len(first) >= 32
        assert all(c.isalnum() or c in "-_" for c in first)


@pytest.mark.parametrize("header", ["", "sha1=abc", "sha256="])
def test_malformed_headers_rejected(mock_env_vars, header):
    """Test malformed signature headers never validate."""
    from commitguard.security.signature import SignatureValidator

    validator = SignatureValidator(github_secret="s3cret")

    assert validator.validate("github", header, b"{}") is False
