"""Pytest configuration and fixtures."""
import os

# Keep tests independent of any local .env
os.environ.setdefault("QNABOT_ENVIRONMENT", "test")

import pytest

from app.dialog import DialogController
from app.errors import StorageError
from app.knowledge import KnowledgeBase, KnowledgeBaseProvider
from app.memory import MemoryStorage
from app.retrieval import MatchEngine
from app.scoring import BaseScorer

FALLBACK = "Sorry, I couldn't find an answer to that question."


class TableScorer(BaseScorer):
    """Returns scores from a (query, question) lookup table; unknown pairs score ``default``."""

    name = "table"

    def __init__(self, table=None, default=0.0):
        self.table = dict(table or {})
        self.default = default
        self.calls = []

    def score(self, query_text, question):
        self.calls.append((query_text, question))
        return self.table.get((query_text, question), self.default)


class ConstantScorer(BaseScorer):
    name = "constant"

    def __init__(self, value):
        self.value = value

    def score(self, query_text, question):
        return self.value


class FailingScorer(BaseScorer):
    name = "failing"

    def score(self, query_text, question):
        raise RuntimeError("model unavailable")


class FlakyStorage(MemoryStorage):
    """Memory storage whose reads and writes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_get = False
        self.fail_put = False
        self.get_calls = 0
        self.put_calls = 0

    async def get(self, conversation_id):
        self.get_calls += 1
        if self.fail_get:
            raise StorageError("read failed")
        return await super().get(conversation_id)

    async def put(self, conversation_id, state):
        self.put_calls += 1
        if self.fail_put:
            raise StorageError("write failed")
        return await super().put(conversation_id, state)


@pytest.fixture
def hours_entries():
    """The two-entry knowledge base used throughout: hours -> weekend hours."""
    return [
        {"id": "E1", "questions": ["hours"], "answer": "9-5", "follow_up_prompt_ids": ["E2"]},
        {"id": "E2", "questions": ["weekend hours"], "answer": "closed"},
    ]


@pytest.fixture
def hours_kb(hours_entries):
    return KnowledgeBase.load(hours_entries)


@pytest.fixture
def hours_scorer():
    return TableScorer(
        {
            ("what are your hours", "hours"): 0.9,
            ("what are your hours", "weekend hours"): 0.4,
            ("weekend hours", "hours"): 0.7,
            ("weekend hours", "weekend hours"): 1.0,
        }
    )


@pytest.fixture
def storage():
    return FlakyStorage()


@pytest.fixture
def make_controller(storage):
    def _make(kb, scorer, min_confidence=0.6):
        return DialogController(
            provider=KnowledgeBaseProvider(kb),
            engine=MatchEngine(scorer),
            storage=storage,
            min_confidence=min_confidence,
            fallback_message=FALLBACK,
        )

    return _make


@pytest.fixture
def hours_controller(make_controller, hours_kb, hours_scorer):
    return make_controller(hours_kb, hours_scorer)
