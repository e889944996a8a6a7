"""
Kafka Topic Configuration for CommitGuard

Analysis topics are keyed by commit id, so ordering holds per commit only.
All pipeline topics use 3 partitions.
"""

from dataclasses import dataclass, replace

# =============================================================================
# Topic Names
# =============================================================================

TOPIC_COMMIT_ANALYSIS = "commit-analysis"
TOPIC_PULL_REQUEST_ANALYSIS = "pull-request-analysis"
TOPIC_MERGE_REQUEST_ANALYSIS = "merge-request-analysis"
TOPIC_ANALYSIS_RESULTS = "analysis-results"
TOPIC_NOTIFICATIONS = "notifications"
TOPIC_DLQ = "commitguard.dlq"

ANALYSIS_REQUEST_TOPICS = (
    TOPIC_COMMIT_ANALYSIS,
    TOPIC_PULL_REQUEST_ANALYSIS,
    TOPIC_MERGE_REQUEST_ANALYSIS,
)


@dataclass
class TopicConfig:
    """Configuration for a Kafka topic."""

    name: str
    partitions: int = 3
    replication_factor: int = 1
    retention_ms: int = 7 * 24 * 60 * 60 * 1000  # 7 days default
    cleanup_policy: str = "delete"

    # Consumer configuration hint
    consumer_group: str = "commitguard-analyzers"

    def to_rpk_create_args(self) -> str:
        """Generate rpk topic create command arguments."""
        return (
            f"--partitions {self.partitions} "
            f"--replicas {self.replication_factor} "
            f"-c retention.ms={self.retention_ms} "
            f"-c cleanup.policy={self.cleanup_policy}"
        )

    def to_admin_config(self) -> dict[str, str]:
        """Topic-level config entries for AdminClient.create_topics."""
        return {
            "retention.ms": str(self.retention_ms),
            "cleanup.policy": self.cleanup_policy,
        }


# =============================================================================
# Topic Configurations
# =============================================================================

TOPIC_CONFIGS: dict[str, TopicConfig] = {
    TOPIC_COMMIT_ANALYSIS: TopicConfig(name=TOPIC_COMMIT_ANALYSIS),
    TOPIC_PULL_REQUEST_ANALYSIS: TopicConfig(name=TOPIC_PULL_REQUEST_ANALYSIS),
    TOPIC_MERGE_REQUEST_ANALYSIS: TopicConfig(name=TOPIC_MERGE_REQUEST_ANALYSIS),
    TOPIC_ANALYSIS_RESULTS: TopicConfig(
        name=TOPIC_ANALYSIS_RESULTS,
        retention_ms=30 * 24 * 60 * 60 * 1000,  # 30 days
        consumer_group="commitguard-tracker",
    ),
    TOPIC_NOTIFICATIONS: TopicConfig(
        name=TOPIC_NOTIFICATIONS,
        retention_ms=3 * 24 * 60 * 60 * 1000,  # 3 days
        consumer_group="commitguard-notifiers",
    ),
    TOPIC_DLQ: TopicConfig(
        name=TOPIC_DLQ,
        retention_ms=90 * 24 * 60 * 60 * 1000,  # 90 days - keep failures longer
        consumer_group="commitguard-operators",
    ),
}


def get_topic_config(topic_name: str) -> TopicConfig | None:
    """Get configuration for a topic.

    Args:
        topic_name: Topic name

    Returns:
        TopicConfig if found, None otherwise
    """
    return TOPIC_CONFIGS.get(topic_name)


def get_all_topics() -> list[str]:
    """Get list of all topic names."""
    return list(TOPIC_CONFIGS.keys())


def generate_topic_creation_script(replication_factor: int | None = None) -> str:
    """Generate rpk commands to create all topics.

    Args:
        replication_factor: Override the per-topic replication factor

    Returns:
        Shell script content for topic creation
    """
    lines = [
        "#!/bin/bash",
        "# CommitGuard Kafka Topic Creation Script",
        "",
    ]

    for topic, config in TOPIC_CONFIGS.items():
        if replication_factor is not None:
            config = replace(config, replication_factor=replication_factor)
        lines.append(f"rpk topic create {topic} {config.to_rpk_create_args()}")

    lines.append("")
    lines.append("# Verify topics created")
    lines.append("rpk topic list")

    return "\n".join(lines)
