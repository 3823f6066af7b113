"""
Dialog controller for the QnA bot

This module runs one conversation turn:
- Reads the conversation state (a failed read degrades to root scope)
- Resolves the message against the active follow-up prompts, falling back
  to the whole knowledge base when none of them match
- Writes the next state exactly once (a failed write fails the turn)
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Tuple
from app.errors import StorageError
from app.knowledge import KnowledgeBase, KnowledgeBaseProvider
from app.memory import BaseStorage, KeyedLock
from app.models import ConversationState, Entry, MatchResult, SuggestedPrompt, TurnResponse
from app.retrieval import MatchEngine

logger = logging.getLogger(__name__)

SCOPE_PROMPT = "prompt"
SCOPE_ROOT = "root"
SCOPE_ROOT_FALLBACK = "root_fallback"
SCOPE_NONE = "none"


class DialogController:
    """Orchestrates turns over a knowledge base, a match engine and a state store."""

    def __init__(
        self,
        provider: KnowledgeBaseProvider,
        engine: MatchEngine,
        storage: BaseStorage,
        min_confidence: float,
        fallback_message: str,
    ):
        """
        Initialize the dialog controller.

        Args:
            provider: Source of the active knowledge base snapshot
            engine: Match engine used to rank entries
            storage: Conversation state store
            min_confidence: Minimum score for an entry to count as a match
            fallback_message: Text emitted when nothing matches
        """
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be between 0 and 1, got {min_confidence}")
        self.provider = provider
        self.engine = engine
        self.storage = storage
        self.min_confidence = min_confidence
        self.fallback_message = fallback_message
        self._locks = KeyedLock()

    async def process_turn(self, conversation_id: str, text: str) -> TurnResponse:
        """
        Handle one incoming message.

        If the turn is cancelled while scoring, nothing is written. If it is
        cancelled while the state write is in flight, the write may still
        complete; the stored record is then the new state, never a partial one.

        Args:
            conversation_id: Conversation the message belongs to
            text: Message text

        Returns:
            TurnResponse: Answer or fallback, with the resulting dialog phase

        Raises:
            StorageError: If the next state cannot be written; the stored
                state is left as it was
            ScoringError: If the scorer fails; no state is written
        """
        # Turns for one conversation run one at a time within this process.
        async with self._locks.hold(conversation_id):
            state = await self._read_state(conversation_id)
            kb = self.provider.current

            match, scope = await self._resolve(kb, state, text)
            next_state, response = self._advance(kb, state, match, scope)

            await self.storage.put(conversation_id, next_state)

        logger.info(
            f"Turn {next_state.turn_count} for conversation {conversation_id}: scope={scope} "
            f"entry={response.entry_id} score={response.score} phase={response.phase.value}"
        )
        return response

    async def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        return await self.storage.get(conversation_id)

    async def _read_state(self, conversation_id: str) -> ConversationState:
        try:
            state = await self.storage.get(conversation_id)
        except StorageError as e:
            logger.warning(f"Could not read state for conversation {conversation_id}, continuing at root scope: {e}")
            state = None
        return state if state is not None else ConversationState(conversation_id=conversation_id)

    async def _resolve(
        self, kb: KnowledgeBase, state: ConversationState, text: str
    ) -> Tuple[Optional[MatchResult], str]:
        if state.active_prompt_context:
            prompt_entries = kb.restrict(state.active_prompt_context)
            if prompt_entries:
                results = await self._rank(text, prompt_entries, kb)
                if results:
                    return results[0], SCOPE_PROMPT
                fallback_scope = SCOPE_ROOT_FALLBACK
            else:
                logger.warning(
                    f"None of the active prompts {list(state.active_prompt_context)} exist in the current "
                    f"knowledge base for conversation {state.conversation_id}"
                )
                fallback_scope = SCOPE_ROOT
        else:
            fallback_scope = SCOPE_ROOT

        results = await self._rank(text, kb.all(), kb)
        if results:
            return results[0], fallback_scope
        return None, SCOPE_NONE

    async def _rank(self, text: str, candidates: Sequence[Entry], kb: KnowledgeBase) -> List[MatchResult]:
        # Off the event loop: a turn timeout can fire while the scorer runs.
        return await asyncio.to_thread(
            self.engine.resolve, text, candidates, self.min_confidence, top=1, knowledge_base=kb
        )

    def _advance(
        self,
        kb: KnowledgeBase,
        state: ConversationState,
        match: Optional[MatchResult],
        scope: str,
    ) -> Tuple[ConversationState, TurnResponse]:
        if match is None:
            next_state = state.model_copy(
                update={"active_prompt_context": None, "turn_count": state.turn_count + 1}
            )
            response = TurnResponse(
                conversation_id=state.conversation_id,
                text=self.fallback_message,
                fallback=True,
                phase=next_state.phase,
                scope=scope,
            )
            return next_state, response

        follow_ups = match.follow_up_prompt_ids
        next_state = state.model_copy(
            update={
                "active_prompt_context": tuple(follow_ups) if follow_ups else None,
                "last_entry_id": match.entry_id,
                "turn_count": state.turn_count + 1,
            }
        )
        response = TurnResponse(
            conversation_id=state.conversation_id,
            text=match.answer_text,
            matched=True,
            entry_id=match.entry_id,
            score=match.score,
            suggested_prompts=self._suggested_prompts(kb, follow_ups),
            phase=next_state.phase,
            scope=scope,
        )
        return next_state, response

    @staticmethod
    def _suggested_prompts(kb: KnowledgeBase, follow_ups: Tuple[str, ...]) -> List[SuggestedPrompt]:
        prompts = []
        for entry_id in follow_ups:
            entry = kb.lookup(entry_id)
            if entry is not None:
                prompts.append(SuggestedPrompt(entry_id=entry_id, display_text=entry.questions[0]))
        return prompts

