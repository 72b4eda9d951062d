"""Knowledge-base collaborator interface and an in-memory JSONL implementation."""

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from nlquery.models.entity import EntityKind
from nlquery.models.knowledge import (
    FactDefinition,
    FunctionDefinition,
    KnowledgeItem,
    QueryResult,
    ResponderDefinition,
    RuleDefinition,
    knowledge_item_adapter,
)

logger = logging.getLogger(__name__)

NOT_FOUND_ANSWER = "I couldn't find any information about that in the knowledge base."

STOPWORDS = frozenset(
    "a an and are about can could do does for from give how i in is it me of on or "
    "show tell that the their them there these this those to what when where which "
    "who why will with you your please".split()
)

DIMENSION_PATTERN = re.compile(r"\b([0-7])d\b", re.IGNORECASE)
RESPONDER_KEYWORD_PATTERN = re.compile(r"\b(agents?|responders?)\b", re.IGNORECASE)
FUNCTION_KEYWORD_PATTERN = re.compile(r"\bfunctions?\b", re.IGNORECASE)
REQUIREMENT_PATTERN = re.compile(
    r"\b(MUST NOT|MUST|SHALL NOT|SHALL|SHOULD NOT|SHOULD|REQUIRED|RECOMMENDED|MAY|OPTIONAL)\b",
    re.IGNORECASE,
)
RULE_KEYWORD_PATTERN = re.compile(r"\b(rules?|requirements?)\b", re.IGNORECASE)


def detect_query_type(text: str) -> str | None:
    """Detect which facet of a responder a question asks about."""
    lowered = text.lower()
    if "dependenc" in lowered:
        return "dependencies"
    if "capabilit" in lowered:
        return "capabilities"
    if "requirement" in lowered:
        return "requirements"
    return None


def describe_responder(responder: ResponderDefinition, query_type: str | None = None) -> str:
    """Render a responder definition as a markdown answer.

    Args:
        responder: Responder to describe
        query_type: Optional facet ("dependencies", "capabilities", "requirements");
            without one every non-empty section is included

    Returns:
        Markdown text
    """
    lines = [f"**{responder.name}**", ""]
    if responder.purpose:
        lines.append(f"**Purpose:** {responder.purpose}")
    if responder.dimension:
        lines.append(f"**Dimension:** {responder.dimension}")

    sections = {
        "dependencies": ("Dependencies", responder.dependencies),
        "capabilities": ("Capabilities", responder.capabilities),
        "requirements": ("Requirements", responder.requirements),
    }
    selected = [sections[query_type]] if query_type in sections else list(sections.values())

    for title, values in selected:
        if values:
            lines.append("")
            lines.append(f"**{title}:**")
            lines.extend(f"- {value}" for value in values)
        elif query_type:
            lines.append("")
            lines.append(f"No {title.lower()} listed.")

    if responder.source:
        lines.append("")
        lines.append(f"*Source: {responder.source}*")

    return "\n".join(lines)


def describe_function(function: FunctionDefinition) -> str:
    lines = [f"**{function.name}**"]
    if function.signature:
        lines.append(f"`{function.signature}`")
    if function.description:
        lines.append("")
        lines.append(function.description)
    if function.examples:
        lines.append("")
        lines.append("**Examples:**")
        lines.extend(f"- `{example}`" for example in function.examples)
    return "\n".join(lines)


def _stem(word: str) -> str:
    return word[:-1] if len(word) > 3 and word.endswith("s") else word


def _keywords(text: str) -> set[str]:
    words = re.findall(r"[\w:-]+", text.lower())
    return {_stem(word) for word in words if word not in STOPWORDS and len(word) > 1}


class KnowledgeBase(ABC):
    """Interface the engine needs from a knowledge base."""

    @abstractmethod
    async def query(self, text: str) -> QueryResult:
        """Answer a natural-language question directly."""

    @abstractmethod
    def list_responders(
        self, dimension: str | None = None, name: str | None = None
    ) -> list[ResponderDefinition]:
        """List responders, optionally filtered by dimension or exact name."""

    @abstractmethod
    def get_responder(self, responder_id: str) -> ResponderDefinition | None:
        """Look up a responder by id."""

    @abstractmethod
    def entity_names(self) -> dict[str, tuple[str, EntityKind]]:
        """Map lowercase names of known entities to (canonical name, kind)."""

    @abstractmethod
    def stats(self) -> dict[str, int]:
        """Record counts by kind: facts, rules, responders, functions."""


class InMemoryKnowledgeBase(KnowledgeBase):
    """Knowledge base held in memory and loaded from JSON Lines.

    Each line is one record with a `type` of `responder` (or `agent`),
    `function`, `rule` or `fact`. Lookups are lexical: names, dimension
    tokens, requirement keywords and keyword overlap.
    """

    def __init__(self, items: Iterable[KnowledgeItem] | None = None):
        self.responders: dict[str, ResponderDefinition] = {}
        self.functions: dict[str, FunctionDefinition] = {}
        self.rules: dict[str, RuleDefinition] = {}
        self.facts: dict[str, FactDefinition] = {}

        for item in items or []:
            self.add(item)

    @classmethod
    def from_jsonl(cls, path: str | Path) -> "InMemoryKnowledgeBase":
        """Create a knowledge base from a JSONL file.

        Args:
            path: Path to the JSONL file

        Returns:
            Loaded knowledge base
        """
        knowledge_base = cls()
        with open(path, encoding="utf-8") as f:
            loaded = knowledge_base.load_lines(f, source_name=str(path))
        logger.info(f"Loaded {loaded} knowledge records from {path}")
        return knowledge_base

    def load_lines(self, lines: Iterable[str], source_name: str = "<memory>") -> int:
        """Parse JSONL records and add them.

        Malformed lines are logged and skipped.

        Args:
            lines: Lines of JSON text
            source_name: Name used in log messages

        Returns:
            Number of records added
        """
        added = 0
        for line_no, line in enumerate(lines, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                record = json.loads(line)
                if record.get("type") == "agent":
                    record["type"] = "responder"
                self.add(knowledge_item_adapter.validate_python(record))
                added += 1
            except (json.JSONDecodeError, ValidationError, AttributeError) as e:
                logger.warning(f"Skipping invalid record at {source_name}:{line_no}: {e}")
        return added

    def add(self, item: KnowledgeItem) -> None:
        if isinstance(item, ResponderDefinition):
            self.responders[item.id] = item
        elif isinstance(item, FunctionDefinition):
            self.functions[item.id] = item
        elif isinstance(item, RuleDefinition):
            self.rules[item.id] = item
        elif isinstance(item, FactDefinition):
            self.facts[item.id] = item
        else:
            raise TypeError(f"Unsupported knowledge item: {type(item).__name__}")

    def list_responders(
        self, dimension: str | None = None, name: str | None = None
    ) -> list[ResponderDefinition]:
        responders = list(self.responders.values())
        if dimension:
            responders = [r for r in responders if r.dimension == dimension.upper()]
        if name:
            responders = [r for r in responders if r.name.lower() == name.lower()]
        return responders

    def get_responder(self, responder_id: str) -> ResponderDefinition | None:
        return self.responders.get(responder_id)

    def entity_names(self) -> dict[str, tuple[str, EntityKind]]:
        names = {r.name.lower(): (r.name, EntityKind.RESPONDER) for r in self.responders.values()}
        names.update(
            {f.name.lower(): (f.name, EntityKind.FUNCTION) for f in self.functions.values()}
        )
        return names

    def stats(self) -> dict[str, int]:
        return {
            "facts": len(self.facts),
            "rules": len(self.rules),
            "responders": len(self.responders),
            "functions": len(self.functions),
        }

    async def query(self, text: str) -> QueryResult:
        """Answer a question from the loaded records.

        Args:
            text: Question text (references already resolved)

        Returns:
            QueryResult with answer, matched records and confidence
        """
        lowered = text.lower()
        keywords = _keywords(text)

        named_responders = sorted(
            (r for r in self.responders.values() if r.name.lower() in lowered),
            key=lambda r: len(r.name),
            reverse=True,
        )
        if named_responders:
            responder = named_responders[0]
            answer = describe_responder(responder, detect_query_type(text))
            return self._result(answer, [responder], keywords, confidence=0.9)

        named_functions = [f for f in self.functions.values() if f.name.lower() in lowered]
        if named_functions:
            answer = "\n\n".join(describe_function(f) for f in named_functions)
            return self._result(answer, named_functions, keywords, confidence=0.9)

        dimension_match = DIMENSION_PATTERN.search(text)
        if dimension_match:
            dimension = f"{dimension_match.group(1)}D"
            in_dimension = self.list_responders(dimension=dimension)
            if in_dimension:
                answer = self._list_answer(f"Agents in {dimension}", in_dimension)
                return self._result(answer, in_dimension, keywords, confidence=0.8)

        if RESPONDER_KEYWORD_PATTERN.search(text) and self.responders:
            responders = list(self.responders.values())
            answer = self._list_answer("Available agents", responders)
            return self._result(answer, responders, keywords, confidence=0.8)

        if FUNCTION_KEYWORD_PATTERN.search(text) and self.functions:
            functions = list(self.functions.values())
            answer = "Available functions:\n\n" + "\n".join(
                f"- **{f.name}**" + (f": {f.description}" if f.description else "")
                for f in functions
            )
            return self._result(answer, functions, keywords, confidence=0.8)

        requirement = REQUIREMENT_PATTERN.search(text)
        if requirement and self.rules:
            level = requirement.group(1).upper()
            rules = [r for r in self.rules.values() if r.keyword == level]
            if rules:
                return self._result(self._rules_answer(rules), rules, keywords, confidence=0.8)

        if RULE_KEYWORD_PATTERN.search(text) and self.rules:
            rules = self._rank(self.rules.values(), keywords) or list(self.rules.values())
            return self._result(self._rules_answer(rules), rules, keywords, confidence=0.7)

        ranked = self._rank([*self.facts.values(), *self.rules.values()], keywords)[:5]
        if ranked:
            answer = "\n\n".join(self._item_text(item) for item in ranked)
            return QueryResult(answer=answer, results=ranked, confidence=0.6)

        logger.debug(f"No knowledge-base match for: {text}")
        return QueryResult(answer=NOT_FOUND_ANSWER, results=[], confidence=0.1)

    def _result(
        self,
        answer: str,
        primary: list[KnowledgeItem],
        keywords: set[str],
        confidence: float,
    ) -> QueryResult:
        """Attach up to three supporting facts that share keywords with the question."""
        supporting = self._rank(self.facts.values(), keywords)[:3]
        return QueryResult(answer=answer, results=[*primary, *supporting], confidence=confidence)

    def _rank(self, items: Iterable[KnowledgeItem], keywords: set[str]) -> list[KnowledgeItem]:
        """Order items by keyword overlap, dropping items with none."""
        if not keywords:
            return []
        scored = []
        for item in items:
            overlap = len(keywords & _keywords(self._item_text(item)))
            if overlap:
                scored.append((overlap, item))
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [item for _, item in scored]

    @staticmethod
    def _item_text(item: KnowledgeItem) -> str:
        if isinstance(item, FactDefinition):
            return item.content
        if isinstance(item, RuleDefinition):
            return f"{item.keyword}: {item.statement}"
        if isinstance(item, FunctionDefinition):
            return f"{item.name} {item.description}"
        return f"{item.name} {item.purpose}"

    @staticmethod
    def _list_answer(heading: str, responders: list[ResponderDefinition]) -> str:
        lines = [f"{heading}:", ""]
        for responder in responders:
            label = f"- **{responder.name}**"
            if responder.dimension:
                label += f" ({responder.dimension})"
            if responder.purpose:
                label += f": {responder.purpose}"
            lines.append(label)
        return "\n".join(lines)

    @staticmethod
    def _rules_answer(rules: list[RuleDefinition]) -> str:
        return "\n".join(f"- **{rule.keyword}** {rule.statement}" for rule in rules)
