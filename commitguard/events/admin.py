"""
Topic administration using confluent-kafka's AdminClient.

Used by the ``commitguard topics`` CLI to provision the pipeline topics on a
Kafka/Redpanda cluster and to check which ones exist.
"""

from typing import Any

import structlog
from confluent_kafka import KafkaException
from confluent_kafka.admin import AdminClient, NewTopic

from commitguard.config import Settings, get_settings
from commitguard.events.topics import TOPIC_CONFIGS

logger = structlog.get_logger(__name__)


def to_confluent_config(settings: Settings, extra: dict[str, Any] | None = None) -> dict[str, Any]:
    """Convert settings to a confluent-kafka configuration dict."""
    config: dict[str, Any] = {
        "bootstrap.servers": settings.kafka_bootstrap_servers,
        "client.id": f"{settings.kafka_client_id}-admin",
    }

    if settings.kafka_sasl_username and settings.kafka_sasl_password:
        config.update({
            "security.protocol": settings.kafka_security_protocol,
            "sasl.mechanism": settings.kafka_sasl_mechanism,
            "sasl.username": settings.kafka_sasl_username,
            "sasl.password": settings.kafka_sasl_password.get_secret_value(),
        })

    if extra:
        config.update(extra)

    return config


class TopicAdmin:
    """Create and list pipeline topics."""

    def __init__(self, settings: Settings | None = None, admin: AdminClient | None = None):
        self._settings = settings or get_settings()
        self._admin = admin

    def _get_admin(self) -> AdminClient:
        if self._admin is None:
            self._admin = AdminClient(to_confluent_config(self._settings))
        return self._admin

    def create_topics(self, topics: list[str] | None = None, timeout: float = 30.0) -> dict[str, bool]:
        """Create topics with their configured partitions and retention.

        Args:
            topics: Topic names; defaults to every pipeline topic

        Returns:
            Dict mapping topic name to success (an existing topic counts as success)
        """
        admin = self._get_admin()
        names = topics or list(TOPIC_CONFIGS.keys())

        new_topics = []
        for name in names:
            config = TOPIC_CONFIGS.get(name)
            new_topics.append(NewTopic(
                name,
                num_partitions=config.partitions if config else 3,
                replication_factor=self._settings.topic_replication_factor,
                config=config.to_admin_config() if config else {},
            ))

        results: dict[str, bool] = {}
        futures = admin.create_topics(new_topics, operation_timeout=timeout)
        for name, future in futures.items():
            try:
                future.result()
                logger.info("Created topic", topic=name)
                results[name] = True
            except KafkaException as e:
                if "TOPIC_ALREADY_EXISTS" in str(e):
                    logger.debug("Topic already exists", topic=name)
                    results[name] = True
                else:
                    logger.error("Failed to create topic", topic=name, error=str(e))
                    results[name] = False
        return results

    def list_topics(self, timeout: float = 10.0) -> dict[str, int]:
        """Map existing pipeline topics to their partition counts."""
        metadata = self._get_admin().list_topics(timeout=timeout)
        return {
            name: len(topic.partitions)
            for name, topic in metadata.topics.items()
            if name in TOPIC_CONFIGS
        }

    def missing_topics(self, timeout: float = 10.0) -> list[str]:
        """Pipeline topics not present on the cluster."""
        existing = self.list_topics(timeout=timeout)
        return [name for name in TOPIC_CONFIGS if name not in existing]
