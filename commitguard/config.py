"""Configuration management for CommitGuard."""

from enum import Enum
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class EventBusBackend(str, Enum):
    """Message bus implementations."""
    KAFKA = "kafka"
    MEMORY = "memory"  # Single-process bus for local runs and tests


class StoreBackend(str, Enum):
    """Persistence implementations for repositories, commits and jobs."""
    MEMORY = "memory"
    SUPABASE = "supabase"


DEFAULT_SCAN_EXTENSIONS = [
    ".java", ".js", ".ts", ".jsx", ".tsx", ".py", ".go", ".rb", ".php",
    ".cs", ".kt", ".scala", ".c", ".cpp", ".h", ".sql", ".html", ".vue",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Webhook authentication
    github_webhook_secret: Optional[SecretStr] = Field(None, description="Shared secret for GitHub HMAC signatures")
    gitlab_webhook_token: Optional[SecretStr] = Field(None, description="Shared token for GitLab webhooks")
    allow_unsigned_webhooks: bool = Field(
        False,
        description="Accept webhooks for platforms with no secret configured (development only)",
    )

    # Message bus
    event_bus_backend: EventBusBackend = Field(EventBusBackend.KAFKA, description="Message bus implementation")
    kafka_bootstrap_servers: str = Field("localhost:9092", description="Kafka/Redpanda broker addresses")
    kafka_sasl_username: Optional[str] = Field(None, description="SASL username")
    kafka_sasl_password: Optional[SecretStr] = Field(None, description="SASL password")
    kafka_security_protocol: str = Field("SASL_PLAINTEXT", description="Security protocol when SASL is enabled")
    kafka_sasl_mechanism: str = Field("SCRAM-SHA-512", description="SASL mechanism")
    kafka_client_id: str = Field("commitguard", description="Client identifier for broker logs")
    kafka_auto_offset_reset: str = Field("earliest", description="Offset reset policy for new groups")
    topic_replication_factor: int = Field(1, description="Replication factor used when creating topics")

    # Consumer groups
    analyzer_group_id: str = Field("commitguard-analyzers", description="Group for analysis-request consumers")
    tracker_group_id: str = Field("commitguard-tracker", description="Group for analysis-result consumers")

    # Persistence
    store_backend: StoreBackend = Field(StoreBackend.MEMORY, description="Repository/commit/job store")
    supabase_url: Optional[str] = Field(None, description="Supabase project URL")
    supabase_service_key: Optional[SecretStr] = Field(None, description="Supabase service role key")

    # Analysis
    scan_pool_size: int = Field(4, description="Concurrent file scans per worker")
    scan_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SCAN_EXTENSIONS),
        description="File extensions eligible for scanning",
    )
    checkout_enabled: bool = Field(False, description="Fetch file contents from a local clone when not inline")
    checkout_base_path: str = Field("/tmp/commitguard/repos", description="Local clone cache directory")
    clone_timeout_seconds: float = Field(300.0, description="Timeout for git clone/fetch")
    checkout_timeout_seconds: float = Field(60.0, description="Timeout for git checkout")

    # Logging
    log_level: str = Field("INFO", description="Log level")
    log_json: bool = Field(False, description="Render logs as JSON")

    # Server
    server_host: str = Field("0.0.0.0", description="Server host")
    server_port: int = Field(8080, description="Server port")


def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
