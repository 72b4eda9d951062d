"""Health check endpoint handler."""

import logging

from nlquery.api.models.errors import now_ms
from nlquery.api.models.health import HealthStatus, KnowledgeBaseStats
from nlquery.core.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


async def check_health(orchestrator: ConversationOrchestrator) -> HealthStatus:
    """Report knowledge-base counts and active conversations.

    Args:
        orchestrator: Conversation orchestrator

    Returns:
        HealthStatus; "degraded" when the knowledge base is empty
    """
    stats = KnowledgeBaseStats(**orchestrator.stats())
    loaded = stats.facts + stats.rules + stats.responders + stats.functions
    status = "healthy" if loaded else "degraded"

    logger.debug(f"Health check: {status}")

    return HealthStatus(status=status, knowledge_base=stats, timestamp=now_ms())
