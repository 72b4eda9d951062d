"""Health check models."""

from typing import Literal

from nlquery.api.models.ask import CamelModel


class KnowledgeBaseStats(CamelModel):
    """Record counts and active conversations."""

    facts: int = 0
    rules: int = 0
    responders: int = 0
    functions: int = 0
    active_conversations: int = 0


class HealthStatus(CamelModel):
    """Overall health status."""

    status: Literal["healthy", "degraded"]
    knowledge_base: KnowledgeBaseStats
    timestamp: int
    version: str = "0.1.0"
