"""
Knowledge base for the QnA bot

This module handles:
- Validating question/answer entries and their follow-up prompt links
- Immutable, load-ordered access to entries by id
- Atomic replacement of the active knowledge base on reload
"""

import hashlib
import json
import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from pydantic import ValidationError as PydanticValidationError
from app.errors import ValidationError
from app.models import Entry

logger = logging.getLogger(__name__)

EntryLike = Union[Entry, Mapping[str, Any]]


class KnowledgeBase:
    """Read-only collection of entries keyed by id, kept in load order."""

    def __init__(self, entries: Tuple[Entry, ...]):
        self._entries = entries
        self._by_id: Dict[str, Entry] = {entry.id: entry for entry in entries}
        self._rank: Dict[str, int] = {entry.id: idx for idx, entry in enumerate(entries)}
        self._version = _fingerprint(entries)

    @classmethod
    def load(cls, entries: Iterable[EntryLike]) -> "KnowledgeBase":
        """
        Build a knowledge base from entries or raw mappings.

        Every problem found is collected before raising, so one load reports
        all malformed entries at once.

        Args:
            entries: Entry instances or mappings accepted by Entry

        Returns:
            KnowledgeBase: Validated knowledge base

        Raises:
            ValidationError: If any entry is malformed or references a
                follow-up id that does not exist
        """
        errors: List[str] = []
        parsed: List[Entry] = []

        for idx, raw in enumerate(entries):
            if isinstance(raw, Entry):
                parsed.append(raw)
                continue
            try:
                parsed.append(Entry.model_validate(raw))
            except PydanticValidationError as e:
                for err in e.errors():
                    loc = ".".join(str(part) for part in err["loc"])
                    errors.append(f"entry #{idx}: {loc}: {err['msg']}")

        seen: Dict[str, int] = {}
        for idx, entry in enumerate(parsed):
            label = f"entry {entry.id!r}" if entry.id else f"entry #{idx}"
            if not entry.id:
                errors.append(f"{label}: id must not be blank")
            elif entry.id in seen:
                errors.append(f"{label}: duplicate id")
            else:
                seen[entry.id] = idx

            if not entry.questions:
                errors.append(f"{label}: questions must not be empty")
            elif any(not q for q in entry.questions):
                errors.append(f"{label}: questions must not contain blank phrasings")
            if not entry.answer:
                errors.append(f"{label}: answer must not be empty")
            if len(set(entry.follow_up_prompt_ids)) != len(entry.follow_up_prompt_ids):
                errors.append(f"{label}: duplicate follow-up prompt ids")

        for entry in parsed:
            for target in entry.follow_up_prompt_ids:
                if target not in seen:
                    errors.append(f"entry {entry.id!r}: follow-up prompt {target!r} does not exist")

        if errors:
            logger.error(f"Knowledge base validation failed with {len(errors)} error(s)")
            raise ValidationError("Invalid knowledge base", errors)

        kb = cls(tuple(parsed))
        logger.info(f"Loaded knowledge base with {len(kb)} entries (version {kb.version[:12]})")
        return kb

    @property
    def version(self) -> str:
        return self._version

    def lookup(self, entry_id: str) -> Optional[Entry]:
        return self._by_id.get(entry_id)

    def all(self) -> Tuple[Entry, ...]:
        return self._entries

    def restrict(self, entry_ids: Iterable[str]) -> Tuple[Entry, ...]:
        """Entries whose id is in ``entry_ids``, in load order. Unknown ids are ignored."""
        wanted = set(entry_ids)
        return tuple(entry for entry in self._entries if entry.id in wanted)

    def rank_of(self, entry_id: str) -> Optional[int]:
        return self._rank.get(entry_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._by_id

    def __repr__(self) -> str:
        return f"KnowledgeBase(entries={len(self)}, version={self.version[:12]!r})"


class KnowledgeBaseProvider:
    """Holds the active knowledge base and swaps it atomically on reload."""

    def __init__(self, knowledge_base: KnowledgeBase):
        self._current = knowledge_base
        self._swap_lock = threading.Lock()

    @property
    def current(self) -> KnowledgeBase:
        # Reference reads are atomic; a turn keeps whichever snapshot it read.
        return self._current

    def swap(self, knowledge_base: KnowledgeBase) -> KnowledgeBase:
        """
        Replace the active knowledge base.

        Args:
            knowledge_base: Fully validated replacement

        Returns:
            KnowledgeBase: The snapshot that was replaced
        """
        with self._swap_lock:
            previous = self._current
            self._current = knowledge_base
        logger.info(
            f"Swapped knowledge base {previous.version[:12]} -> {knowledge_base.version[:12]} "
            f"({len(knowledge_base)} entries)"
        )
        return previous


def _fingerprint(entries: Tuple[Entry, ...]) -> str:
    payload = json.dumps([entry.model_dump(mode="json") for entry in entries], sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
