"""Tests for topic configuration and administration."""

from unittest.mock import MagicMock

import pytest


class TestTopicConfig:
    """Test topic definitions."""

    def test_all_pipeline_topics(self):
        """Test every pipeline topic is configured."""
        from commitguard.events.topics import get_all_topics

        assert get_all_topics() == [
            "commit-analysis",
            "pull-request-analysis",
            "merge-request-analysis",
            "analysis-results",
            "notifications",
            "commitguard.dlq",
        ]

    def test_unknown_topic(self):
        """Test unknown topics have no config."""
        from commitguard.events.topics import get_topic_config

        assert get_topic_config("nope") is None

    def test_rpk_script(self):
        """Test the generated script creates every topic with the override."""
        from commitguard.events.topics import generate_topic_creation_script

        script = generate_topic_creation_script(replication_factor=3)

        assert script.startswith("#!/bin/bash")
        assert "rpk topic create commit-analysis --partitions 3 --replicas 3" in script
        assert "rpk topic create commitguard.dlq" in script
        assert script.rstrip().endswith("rpk topic list")


class TestTopicAdmin:
    """Test TopicAdmin against a mocked AdminClient."""

    @pytest.fixture
    def settings(self, mock_env_vars):
        from commitguard.config import Settings

        return Settings()

    def test_confluent_config_with_sasl(self, mock_env_vars, monkeypatch):
        """Test SASL credentials are mapped to confluent keys."""
        monkeypatch.setenv("KAFKA_SASL_USERNAME", "user")
        monkeypatch.setenv("KAFKA_SASL_PASSWORD", "pass")
        from commitguard.config import Settings
        from commitguard.events.admin import to_confluent_config

        config = to_confluent_config(Settings())

        assert config["sasl.username"] == "user"
        assert config["sasl.password"] == "pass"
        assert config["client.id"] == "commitguard-admin"

    def test_create_topics(self, settings):
        """Test existing topics count as success and real failures do not."""
        from confluent_kafka import KafkaException

        from commitguard.events.admin import TopicAdmin

        ok, exists, broken = MagicMock(), MagicMock(), MagicMock()
        ok.result.return_value = None
        exists.result.side_effect = KafkaException("TOPIC_ALREADY_EXISTS")
        broken.result.side_effect = KafkaException("POLICY_VIOLATION")

        admin_client = MagicMock()
        admin_client.create_topics.return_value = {
            "commit-analysis": ok,
            "analysis-results": exists,
            "notifications": broken,
        }

        results = TopicAdmin(settings, admin=admin_client).create_topics(
            ["commit-analysis", "analysis-results", "notifications"]
        )

        assert results == {"commit-analysis": True, "analysis-results": True, "notifications": False}
        new_topics = admin_client.create_topics.call_args[0][0]
        assert [t.topic for t in new_topics] == ["commit-analysis", "analysis-results", "notifications"]

    def test_missing_topics(self, settings):
        """Test missing pipeline topics are reported."""
        from commitguard.events.admin import TopicAdmin

        metadata = MagicMock()
        metadata.topics = {
            "commit-analysis": MagicMock(partitions={0: None, 1: None, 2: None}),
            "analysis-results": MagicMock(partitions={0: None}),
            "unrelated": MagicMock(partitions={0: None}),
        }
        admin_client = MagicMock()
        admin_client.list_topics.return_value = metadata

        admin = TopicAdmin(settings, admin=admin_client)

        assert admin.list_topics() == {"commit-analysis": 3, "analysis-results": 1}
        assert admin.missing_topics() == [
            "pull-request-analysis",
            "merge-request-analysis",
            "notifications",
            "commitguard.dlq",
        ]
