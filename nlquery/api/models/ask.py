"""Request and response models for asking questions."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from nlquery.models.entity import Entity
from nlquery.models.response import Citation, FormattedResponse


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AskRequest(CamelModel):
    """Body of POST /ask."""

    question: StrictStr
    conversation_id: StrictStr | None = None

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be empty")
        return value


class CitationModel(CamelModel):
    source: str
    kind: str
    title: str | None = None
    line_number: int | None = None
    url: str | None = None

    @classmethod
    def from_citation(cls, citation: Citation) -> "CitationModel":
        return cls(
            source=citation.source,
            kind=citation.kind.value,
            title=citation.title,
            line_number=citation.line_number,
            url=citation.url,
        )


class EntityModel(CamelModel):
    id: str
    kind: str
    name: str
    value: Any = None

    @classmethod
    def from_entity(cls, entity: Entity) -> "EntityModel":
        return cls(id=entity.entity_id, kind=entity.kind.value, name=entity.name, value=entity.value)


class AskResponse(CamelModel):
    """Data returned by POST /ask."""

    answer: str
    citations: list[CitationModel] = []
    follow_up_suggestions: list[str] = []
    related_entities: list[EntityModel] = []
    confidence: float = Field(ge=0.0, le=1.0)
    conversation_id: str

    @classmethod
    def from_response(cls, response: FormattedResponse, conversation_id: str) -> "AskResponse":
        return cls(
            answer=response.answer,
            citations=[CitationModel.from_citation(c) for c in response.citations],
            follow_up_suggestions=list(response.follow_up_suggestions),
            related_entities=[EntityModel.from_entity(e) for e in response.related_entities],
            confidence=response.confidence,
            conversation_id=conversation_id,
        )
