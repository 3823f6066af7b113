"""
Embedding similarity scorer for the QnA bot

This module scores questions by cosine similarity between SentenceTransformer
(all-MiniLM-L6-v2 by default) embeddings. Embeddings are normalized, so the
dot product is the cosine; negative similarities are clamped to 0.
"""

import logging
import threading
from functools import lru_cache
from typing import Tuple
from sentence_transformers import SentenceTransformer
from app.scoring import BaseScorer, normalize_text

logger = logging.getLogger(__name__)


class EmbeddingScorer(BaseScorer):
    """Scorer backed by a SentenceTransformer embedding model."""

    name = "sentence-transformers"

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2", cache_size: int = 4096):
        self.model_name = model_name
        self.model = SentenceTransformer(model_name, device="cpu")
        self._encode_lock = threading.Lock()
        self._embed = lru_cache(maxsize=cache_size)(self._encode)
        logger.info(f"SentenceTransformer scorer initialized with model: {model_name}")

    def _encode(self, text: str) -> Tuple[float, ...]:
        with self._encode_lock:
            vector = self.model.encode(
                [text], show_progress_bar=False, convert_to_numpy=True, normalize_embeddings=True
            )[0]
        return tuple(float(x) for x in vector)

    def score(self, query_text: str, question: str) -> float:
        query_norm = normalize_text(query_text)
        question_norm = normalize_text(question)
        if not query_norm or not question_norm:
            return 0.0

        query_vec = self._embed(query_norm)
        question_vec = self._embed(question_norm)
        cosine = sum(a * b for a, b in zip(query_vec, question_vec))
        return min(1.0, max(0.0, cosine))
