"""Handler for POST /ask."""

import logging
from typing import Any

from pydantic import ValidationError

from nlquery.api.models.ask import AskRequest, AskResponse
from nlquery.core.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)


def parse_ask_request(payload: Any) -> AskRequest:
    """Validate the raw JSON body of an ask request.

    Args:
        payload: Decoded JSON body

    Returns:
        AskRequest

    Raises:
        ValueError: If question is missing, blank or not a string
    """
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    try:
        return AskRequest.model_validate(payload)
    except ValidationError as e:
        fields = {str(error["loc"][0]) for error in e.errors() if error["loc"]}
        if "question" in fields or not fields:
            raise ValueError("Question is required and must be a non-empty string") from e
        raise ValueError("conversationId must be a string") from e


async def process_ask(request: AskRequest, orchestrator: ConversationOrchestrator) -> AskResponse:
    """Answer a validated question, creating a conversation when none is given.

    Args:
        request: Validated ask request
        orchestrator: Conversation orchestrator

    Returns:
        AskResponse

    Raises:
        ConversationNotFoundError: If conversationId is unknown
    """
    conversation_id = request.conversation_id or orchestrator.new_conversation()
    logger.info(f"Question: {request.question[:80]}", extra={"conversation_id": conversation_id})

    response = await orchestrator.ask(request.question, conversation_id)
    return AskResponse.from_response(response, conversation_id)
