"""Models for conversation management endpoints."""

from datetime import datetime
from typing import Any

from pydantic import StrictStr

from nlquery.api.models.ask import CamelModel, EntityModel
from nlquery.models.conversation import Turn


class CreateConversationRequest(CamelModel):
    """Body of POST /conversation."""

    user_id: StrictStr | None = None


class ConversationCreated(CamelModel):
    conversation_id: str
    user_id: str | None = None


class MessageResponse(CamelModel):
    message: str


class IntentModel(CamelModel):
    type: str
    resolved_text: str
    target: str | None = None
    filters: dict[str, Any] = {}
    confidence: float


class ResponderAnswerModel(CamelModel):
    responder_id: str
    responder_name: str
    confidence: float


class TurnModel(CamelModel):
    """One entry of GET /history/{conversationId}."""

    turn_id: str
    timestamp: datetime
    user_text: str
    intent: IntentModel
    answer: str | None = None
    entities: list[EntityModel] = []
    responder_answers: list[ResponderAnswerModel] = []

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnModel":
        return cls(
            turn_id=turn.turn_id,
            timestamp=turn.timestamp,
            user_text=turn.user_text,
            intent=IntentModel(
                type=turn.intent.type.value,
                resolved_text=turn.intent.resolved_text,
                target=turn.intent.target,
                filters=dict(turn.intent.filters),
                confidence=turn.intent.confidence,
            ),
            answer=turn.merged_answer,
            entities=[EntityModel.from_entity(e) for e in turn.entities],
            responder_answers=[
                ResponderAnswerModel(
                    responder_id=a.responder_id,
                    responder_name=a.responder_name,
                    confidence=a.confidence,
                )
                for a in turn.responder_answers
            ],
        )
