"""Handlers for conversation management endpoints."""

import logging
from typing import Any

from pydantic import ValidationError

from nlquery.api.models.conversation import (
    ConversationCreated,
    CreateConversationRequest,
    MessageResponse,
    TurnModel,
)
from nlquery.core.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


def create_conversation(payload: Any, orchestrator: ConversationOrchestrator) -> ConversationCreated:
    """Create a conversation for an optional user id.

    Raises:
        ValueError: If userId is present but not a string
    """
    try:
        request = CreateConversationRequest.model_validate(payload or {})
    except ValidationError as e:
        raise ValueError("userId must be a string") from e

    conversation_id = orchestrator.new_conversation(request.user_id)
    return ConversationCreated(conversation_id=conversation_id, user_id=request.user_id)


def get_history(conversation_id: str, orchestrator: ConversationOrchestrator) -> list[TurnModel]:
    """Ordered turns of a conversation.

    Raises:
        ConversationNotFoundError: If the conversation does not exist
    """
    return [TurnModel.from_turn(turn) for turn in orchestrator.history(conversation_id)]


def delete_conversation(conversation_id: str, orchestrator: ConversationOrchestrator) -> MessageResponse:
    if orchestrator.delete_conversation(conversation_id):
        return MessageResponse(message="Conversation deleted")
    logger.debug(f"Delete requested for unknown conversation {conversation_id}")
    return MessageResponse(message="Conversation not found")


def clear_conversation(conversation_id: str, orchestrator: ConversationOrchestrator) -> MessageResponse:
    """Clear a conversation's history.

    Raises:
        ConversationNotFoundError: If the conversation does not exist
    """
    orchestrator.clear_history(conversation_id)
    return MessageResponse(message="Conversation history cleared")
