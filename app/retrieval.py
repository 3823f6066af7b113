"""
Match engine for the QnA bot

This module handles:
- Scoring candidate entries against a query (best phrasing wins)
- Confidence thresholding
- Deterministic ranking with knowledge base load order as the tie-break
"""

import logging
import math
from typing import List, Optional, Sequence
from app.errors import ScoringError
from app.knowledge import KnowledgeBase
from app.models import Entry, MatchResult
from app.scoring import BaseScorer

logger = logging.getLogger(__name__)


class MatchEngine:
    """Ranks knowledge base entries for a query using a pluggable scorer."""

    def __init__(self, scorer: BaseScorer):
        self.scorer = scorer

    def resolve(
        self,
        query_text: str,
        candidate_entries: Sequence[Entry],
        min_confidence: float,
        top: Optional[int] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
    ) -> List[MatchResult]:
        """
        Rank candidate entries for a query.

        An empty result means "no match"; it is not an error.

        Args:
            query_text: Incoming user text, scored as-is
            candidate_entries: Entries to consider
            min_confidence: Entries scoring below this are discarded
            top: Optional cap on the number of results
            knowledge_base: When given, ties are broken by its load order;
                otherwise by position in ``candidate_entries``

        Returns:
            List of match results, best first

        Raises:
            ScoringError: If the scorer fails or returns a score outside [0, 1]
        """
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be between 0 and 1, got {min_confidence}")
        if not candidate_entries:
            return []

        results: List[MatchResult] = []
        for position, entry in enumerate(candidate_entries):
            best_score = -1.0
            best_question = ""
            for question in entry.questions:
                score = self._score(query_text, question, entry.id)
                # Strictly greater: the first phrasing wins on ties.
                if score > best_score:
                    best_score = score
                    best_question = question

            if best_score < min_confidence:
                continue

            rank = position
            if knowledge_base is not None:
                kb_rank = knowledge_base.rank_of(entry.id)
                if kb_rank is not None:
                    rank = kb_rank

            results.append(
                MatchResult(
                    entry_id=entry.id,
                    score=best_score,
                    answer_text=entry.answer,
                    follow_up_prompt_ids=entry.follow_up_prompt_ids,
                    matched_question=best_question,
                    rank=rank,
                )
            )

        results.sort(key=lambda r: (-r.score, r.rank))
        if top is not None:
            results = results[:top]

        logger.debug(
            f"Resolved query against {len(candidate_entries)} candidates: "
            f"{len(results)} at or above {min_confidence:.2f}"
        )
        return results

    def _score(self, query_text: str, question: str, entry_id: str) -> float:
        try:
            score = float(self.scorer.score(query_text, question))
        except Exception as e:
            raise ScoringError(f"Scorer {self.scorer.name} failed on entry {entry_id!r}: {e}") from e

        if math.isnan(score) or not 0.0 <= score <= 1.0:
            raise ScoringError(f"Scorer {self.scorer.name} returned {score!r} for entry {entry_id!r}")
        return score
