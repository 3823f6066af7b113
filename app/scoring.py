"""
Question scorers for the QnA bot

A scorer maps (query text, one question phrasing) to a confidence in [0, 1].
Scorers are pure and deterministic so they can be shared by concurrent turns.

This module provides:
- BaseScorer, the interface the match engine depends on
- LexicalScorer, token overlap (Dice coefficient) with stopword filtering
- FuzzyScorer, RapidFuzz token-sort ratio
- create_scorer, which picks a scorer from settings
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import FrozenSet, List
from rapidfuzz import fuzz
from app.config import Settings

logger = logging.getLogger(__name__)

CJK_RE = re.compile(r"[\u4e00-\u9fff]+")
TOKEN_RE = re.compile(r"[\u4e00-\u9fff]+|[a-z0-9]+")
SPACE_RE = re.compile(r"\s+")

STOPWORDS: FrozenSet[str] = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "can", "could", "do", "does", "for",
    "from", "how", "i", "in", "is", "it", "me", "my", "of", "on", "or", "please",
    "tell", "that", "the", "there", "this", "to", "was", "we", "what", "when",
    "where", "which", "who", "why", "will", "with", "would", "you", "your",
})


def normalize_text(text: str) -> str:
    normalized = text.replace("\u3000", " ").strip().lower()
    return SPACE_RE.sub(" ", normalized)


def tokenize(text: str) -> List[str]:
    """Split normalized text into word tokens; CJK runs become character bigrams."""
    tokens: List[str] = []
    for part in TOKEN_RE.findall(text):
        if CJK_RE.fullmatch(part):
            if len(part) == 1:
                tokens.append(part)
            else:
                tokens.extend(part[i : i + 2] for i in range(len(part) - 1))
        else:
            tokens.append(part)
    return tokens


def content_tokens(text: str) -> FrozenSet[str]:
    tokens = frozenset(tokenize(normalize_text(text)))
    content = tokens - STOPWORDS
    return content or tokens


class BaseScorer(ABC):
    """Scores how well a query matches one question phrasing."""

    name = "base"

    @abstractmethod
    def score(self, query_text: str, question: str) -> float:
        """
        Score a query against a single phrasing.

        Args:
            query_text: Incoming user text
            question: One phrasing of a knowledge base entry

        Returns:
            float: Confidence in [0, 1]; higher means a stronger match
        """


class LexicalScorer(BaseScorer):
    """Dice coefficient over content tokens; exact normalized matches score 1.0."""

    name = "lexical"

    def score(self, query_text: str, question: str) -> float:
        query_norm = normalize_text(query_text)
        question_norm = normalize_text(question)
        if query_norm and query_norm == question_norm:
            return 1.0

        query_tokens = content_tokens(query_text)
        question_tokens = content_tokens(question)
        if not query_tokens or not question_tokens:
            return 0.0

        overlap = len(query_tokens & question_tokens)
        return 2.0 * overlap / (len(query_tokens) + len(question_tokens))


class FuzzyScorer(BaseScorer):
    """Approximate string matching using RapidFuzz, scaled to [0, 1]."""

    name = "fuzzy"

    def score(self, query_text: str, question: str) -> float:
        query_norm = normalize_text(query_text)
        question_norm = normalize_text(question)
        if not query_norm or not question_norm:
            return 0.0
        return fuzz.token_sort_ratio(query_norm, question_norm) / 100.0


def create_scorer(settings: Settings) -> BaseScorer:
    """
    Create the scorer selected by ``settings.scorer_backend``.

    Args:
        settings: Application settings

    Returns:
        BaseScorer: Configured scorer
    """
    backend = settings.scorer_backend.lower()
    if backend == "lexical":
        scorer: BaseScorer = LexicalScorer()
    elif backend == "fuzzy":
        scorer = FuzzyScorer()
    elif backend == "sentence-transformers":
        from app.embeddings import EmbeddingScorer
        scorer = EmbeddingScorer(model_name=settings.embedding_model_name)
    else:
        raise ValueError(f"Unknown scorer backend: {settings.scorer_backend}")

    logger.info(f"Using {scorer.name} scorer")
    return scorer
