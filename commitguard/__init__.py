"""CommitGuard - event-driven commit analysis pipeline.

Ingests GitHub/GitLab webhooks, tracks commits, dispatches analysis requests
over Kafka, runs security/quality/compliance rule engines and publishes
risk-scored results and notifications.
"""

__version__ = "0.1.0"
