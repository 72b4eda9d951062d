# nlquery/models/knowledge.py
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class KnowledgeRecord(BaseModel):
    """Fields every knowledge-base record carries for citation purposes."""

    id: str
    source: str | None = None
    line_number: int | None = None
    url: str | None = None
    title: str | None = None
    metadata: dict[str, Any] = {}


class ResponderDefinition(KnowledgeRecord):
    """A named responder ("agent") the router can send questions to."""

    type: Literal["responder"] = "responder"
    name: str
    dimension: str | None = None
    purpose: str = ""
    capabilities: list[str] = []
    dependencies: list[str] = []
    requirements: list[str] = []

    @field_validator("dimension")
    @classmethod
    def _normalize_dimension(cls, value: str | None) -> str | None:
        return value.upper() if value else value

    def searchable_text(self) -> str:
        return " ".join([self.purpose, *self.capabilities]).lower()


class FunctionDefinition(KnowledgeRecord):
    type: Literal["function"] = "function"
    name: str
    signature: str | None = None
    description: str = ""
    examples: list[str] = []
    responder_id: str | None = None


class RuleDefinition(KnowledgeRecord):
    """A normative statement with its RFC 2119 requirement level."""

    type: Literal["rule"] = "rule"
    keyword: str
    statement: str
    context: str | None = None

    @field_validator("keyword")
    @classmethod
    def _normalize_keyword(cls, value: str) -> str:
        return value.upper()


class FactDefinition(KnowledgeRecord):
    type: Literal["fact"] = "fact"
    content: str
    fact_type: str = "general"


KnowledgeItem = Annotated[
    Union[ResponderDefinition, FunctionDefinition, RuleDefinition, FactDefinition],
    Field(discriminator="type"),
]

knowledge_item_adapter: TypeAdapter[KnowledgeItem] = TypeAdapter(KnowledgeItem)


class QueryResult(BaseModel):
    """Answer returned by a direct knowledge-base query."""

    answer: str
    results: list[KnowledgeItem] = []
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
