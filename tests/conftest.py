"""Shared fixtures for CommitGuard tests."""

import hashlib
import hmac
import json

import pytest

GITHUB_SECRET = "test-github-secret"
GITLAB_TOKEN = "test-gitlab-token"


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test requiring a running broker"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set up test environment variables: in-memory backends, no webhook secrets."""
    monkeypatch.setenv("EVENT_BUS_BACKEND", "memory")
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("CHECKOUT_ENABLED", "false")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.delenv("GITHUB_WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("GITLAB_WEBHOOK_TOKEN", raising=False)
    monkeypatch.delenv("ALLOW_UNSIGNED_WEBHOOKS", raising=False)
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)


@pytest.fixture
def metrics():
    """A fresh metrics registry, isolated from the process-wide one."""
    from commitguard.events.metrics import MetricsRegistry

    return MetricsRegistry()


@pytest.fixture
def memory_bus(metrics):
    """An in-memory event bus (not started)."""
    from commitguard.events.bus import InMemoryEventBus

    return InMemoryEventBus(metrics=metrics)


@pytest.fixture
def stores():
    """Empty in-memory stores."""
    from commitguard.services.store import Stores

    return Stores.in_memory()


@pytest.fixture
def github_repository():
    """A canonical GitHub repository."""
    from commitguard.models import Platform, RepositorySource

    return RepositorySource(
        platform=Platform.GITHUB,
        external_id="123456",
        name="payments-service",
        full_name="acme/payments-service",
        clone_url="https://github.com/acme/payments-service.git",
        url="https://github.com/acme/payments-service",
    )


@pytest.fixture
def make_commit():
    """Factory for CommitEvents."""
    from commitguard.models import CommitEvent

    def _make(commit_id="a1b2c3d4e5f6", repository_id="github-123456", **kwargs):
        kwargs.setdefault("message", "Add payment handler")
        kwargs.setdefault("author_name", "Dev One")
        kwargs.setdefault("author_email", "dev@example.com")
        kwargs.setdefault("files_modified", ("src/Handler.java",))
        return CommitEvent(commit_id=commit_id, repository_id=repository_id, **kwargs)

    return _make


@pytest.fixture
def github_push_payload():
    """Minimal GitHub push webhook body."""
    return {
        "ref": "refs/heads/main",
        "repository": {
            "id": 123456,
            "name": "payments-service",
            "full_name": "acme/payments-service",
            "clone_url": "https://github.com/acme/payments-service.git",
            "html_url": "https://github.com/acme/payments-service",
            "default_branch": "main",
        },
        "commits": [
            {
                "id": "a1b2c3d4e5f6",
                "message": "Add payment handler",
                "timestamp": "2024-05-01T10:00:00Z",
                "author": {"name": "Dev One", "email": "dev@example.com"},
                "added": ["src/Handler.java"],
                "modified": ["README.md"],
                "removed": [],
            },
            {
                "id": "f6e5d4c3b2a1",
                "message": "Fix typo",
                "timestamp": "2024-05-01T10:05:00+00:00",
                "author": {"name": "Dev Two", "email": "two@example.com"},
                "added": [],
                "modified": ["src/Handler.java"],
                "removed": ["src/Old.java"],
            },
        ],
    }


@pytest.fixture
def gitlab_push_payload():
    """Minimal GitLab Push Hook body."""
    return {
        "object_kind": "push",
        "project": {
            "id": 42,
            "name": "ledger",
            "path_with_namespace": "bank/ledger",
            "git_http_url": "https://gitlab.com/bank/ledger.git",
            "web_url": "https://gitlab.com/bank/ledger",
            "default_branch": "develop",
        },
        "commits": [
            {
                "id": "0123456789ab",
                "message": "Initial ledger",
                "timestamp": "2024-05-02T08:30:00+02:00",
                "author": {"name": "Ops", "email": "ops@example.com"},
                "added": ["ledger.py"],
                "modified": [],
                "removed": [],
            },
        ],
    }


def sign_github(body: bytes, secret: str = GITHUB_SECRET) -> str:
    """X-Hub-Signature-256 value for ``body``."""
    mac = hmac.new(secret.encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    return f"sha256={mac.hexdigest()}"


@pytest.fixture
def signed_body():
    """Serialize a payload and sign it with the test GitHub secret."""

    def _sign(payload, secret: str = GITHUB_SECRET) -> tuple[bytes, str]:
        body = json.dumps(payload).encode("utf-8")
        return body, sign_github(body, secret)

    return _sign
