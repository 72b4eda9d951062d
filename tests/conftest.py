"""Pytest configuration and fixtures for test suite.

Provides:
- Custom markers
- A small knowledge base shared by unit and integration tests
"""

import json
import sys
from datetime import UTC, datetime
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from nlquery.core.context_store import ConversationContextStore
from nlquery.core.orchestrator import ConversationOrchestrator
from nlquery.lib.config import EngineConfig
from nlquery.storage.knowledge_base import InMemoryKnowledgeBase

SAMPLE_RECORDS = [
    {
        "type": "agent",
        "id": "4d-network-agent",
        "name": "4D-Network-Agent",
        "dimension": "4D",
        "purpose": "Manage network operations",
        "capabilities": ["IPv4/IPv6 address handling", "network topology"],
        "dependencies": ["3D-Algebraic-Agent"],
        "requirements": ["MUST validate addresses before connecting"],
        "source": "AGENTS.md",
        "line_number": 107,
    },
    {
        "type": "agent",
        "id": "5d-consensus-agent",
        "name": "5D-Consensus-Agent",
        "dimension": "5D",
        "purpose": "Implement distributed consensus",
        "capabilities": ["blockchain consensus", "voting"],
        "dependencies": ["4D-Network-Agent"],
        "source": "AGENTS.md",
        "line_number": 124,
    },
    {
        "type": "agent",
        "id": "3d-algebraic-agent",
        "name": "3D-Algebraic-Agent",
        "dimension": "3D",
        "purpose": "Perform algebraic operations over Church numerals",
        "capabilities": ["Church addition", "Church multiplication"],
        "source": "AGENTS.md",
        "line_number": 90,
    },
    {
        "type": "agent",
        "id": "query-interface-agent",
        "name": "Query-Interface-Agent",
        "purpose": "Provide SPARQL/REPL access",
        "capabilities": ["SPARQL queries", "REPL sessions"],
        "source": "AGENTS.md",
        "line_number": 160,
    },
    {
        "type": "function",
        "id": "r5rs:church-add",
        "name": "r5rs:church-add",
        "signature": "(church-add m n)",
        "description": "Add two Church numerals",
        "examples": ["(church-add two three)"],
        "source": "grammar.scm",
        "line_number": 27,
    },
    {
        "type": "rule",
        "id": "rule-dimensional-progression",
        "keyword": "MUST",
        "statement": "Agents must respect the dimensional progression from 0D to 7D",
        "context": "dimensional progression",
        "source": "AGENTS.md",
        "line_number": 12,
    },
    {
        "type": "rule",
        "id": "rule-provenance",
        "keyword": "SHOULD",
        "statement": "Responses should include provenance for each fact they cite",
        "source": "AGENTS.md",
        "line_number": 23,
    },
    {
        "type": "fact",
        "id": "fact-agent-registry",
        "content": "All available agents are registered in the automaton agent registry",
        "source": "automaton-kernel.jsonl",
        "line_number": 3,
    },
    {
        "type": "fact",
        "id": "fact-church-encoding",
        "content": "Church encoding represents natural numbers as repeated function application",
        "source": "church-encoding.md",
        "line_number": 1,
        "url": "https://en.wikipedia.org/wiki/Church_encoding",
    },
]


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


class FakeClock:
    """Controllable clock for time-dependent store behavior."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


@pytest.fixture
def sample_lines():
    """Sample knowledge base as JSONL lines."""
    return [json.dumps(record) for record in SAMPLE_RECORDS]


@pytest.fixture
def knowledge_base(sample_lines):
    """In-memory knowledge base loaded with the sample records."""
    kb = InMemoryKnowledgeBase()
    kb.load_lines(sample_lines, source_name="sample")
    return kb


@pytest.fixture
def engine_config():
    return EngineConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(engine_config, clock):
    return ConversationContextStore(engine_config, clock=clock)


@pytest.fixture
def orchestrator(knowledge_base, engine_config):
    """Orchestrator over the sample knowledge base."""
    return ConversationOrchestrator(knowledge_base, engine_config)
