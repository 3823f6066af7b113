"""
Pydantic models and schemas for the QnA bot

This module defines the knowledge entries, match results, conversation state
records and API request/response schemas using Pydantic for validation and
serialization.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

_SPACE_RE = re.compile(r"\s+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_phrase(text: str) -> str:
    """Collapse runs of whitespace and trim the ends."""
    return _SPACE_RE.sub(" ", text).strip()


class DialogPhase(str, Enum):
    """Enumeration for the per-conversation dialog state."""
    ROOT = "root"
    IN_PROMPT = "in_prompt"


class Entry(BaseModel):
    """One knowledge item: alternate phrasings, an answer and follow-up prompts."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Stable unique identifier")
    questions: Tuple[str, ...] = Field(
        ...,
        validation_alias=AliasChoices("questions", "question"),
        description="Alternate phrasings",
    )
    answer: str = Field(..., description="Response text")
    follow_up_prompt_ids: Tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("follow_up_prompt_ids", "followUpPromptIds", "follow_ups", "prompts"),
        description="Entry ids offered as next-turn suggestions",
    )
    source: Optional[str] = Field(None, description="Where the entry was loaded from")
    metadata: Dict[str, str] = Field(default_factory=dict, description="Free-form entry metadata")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v.strip() if isinstance(v, str) else v

    @field_validator("questions", mode="before")
    @classmethod
    def normalize_questions(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple)):
            return tuple(normalize_phrase(q) if isinstance(q, str) else q for q in v)
        return v

    @field_validator("answer", mode="before")
    @classmethod
    def strip_answer(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("follow_up_prompt_ids", mode="before")
    @classmethod
    def coerce_follow_ups(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, (list, tuple)):
            # QnA exports list prompts as objects: {"qnaId": ..., "displayText": ...}
            ids = []
            for item in v:
                if isinstance(item, dict):
                    item = item.get("id", item.get("qnaId"))
                ids.append(str(item).strip() if item is not None else item)
            return tuple(ids)
        return v


class MatchResult(BaseModel):
    """A scored candidate answer produced for one query."""
    entry_id: str
    score: float = Field(..., ge=0.0, le=1.0)
    answer_text: str
    follow_up_prompt_ids: Tuple[str, ...] = ()
    matched_question: str = ""
    rank: int = Field(0, description="Knowledge base load position, used for tie-breaks")


class ConversationState(BaseModel):
    """Per-conversation dialog state persisted between turns."""
    conversation_id: str
    active_prompt_context: Optional[Tuple[str, ...]] = Field(
        None, description="Follow-up entry ids currently offered; None at root scope"
    )
    last_entry_id: Optional[str] = None
    turn_count: int = 0
    updated_at: datetime = Field(default_factory=utcnow)
    etag: Optional[str] = Field(None, description="Concurrency token assigned by storage")

    @property
    def phase(self) -> DialogPhase:
        if self.active_prompt_context:
            return DialogPhase.IN_PROMPT
        return DialogPhase.ROOT


class SuggestedPrompt(BaseModel):
    """A follow-up the user can pick on the next turn."""
    entry_id: str
    display_text: str


class TurnResponse(BaseModel):
    """Response descriptor returned for one conversation turn."""
    conversation_id: str
    text: str
    matched: bool = False
    fallback: bool = False
    error: bool = False
    entry_id: Optional[str] = None
    score: Optional[float] = Field(None, ge=0.0, le=1.0)
    suggested_prompts: List[SuggestedPrompt] = Field(default_factory=list)
    phase: DialogPhase = DialogPhase.ROOT
    scope: str = Field("none", description="prompt, root, root_fallback or none")


class MessageRequest(BaseModel):
    """Request model for the message endpoint."""
    text: str = Field(..., max_length=1000, description="User's message")


class MatchRequest(BaseModel):
    """Request model for ranking the knowledge base against a query."""
    query: str = Field(..., max_length=1000, description="Query text")
    limit: Optional[int] = Field(default=None, ge=1, le=50, description="Maximum number of results")
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Threshold override")


class MatchResponse(BaseModel):
    """Response model for knowledge base ranking."""
    results: List[MatchResult] = Field(..., description="Ranked results, best first")
    total_results: int
    query_time_ms: int
    query: str


class ReloadResponse(BaseModel):
    """Response model for knowledge base reloads."""
    success: bool
    entry_count: int
    version: str
    min_confidence: float


class HealthCheckResponse(BaseModel):
    """Response model for health check endpoint."""
    status: str = Field(..., description="Health status")
    timestamp: datetime = Field(default_factory=utcnow)
    components: Dict[str, bool] = Field(..., description="Component health status")
    knowledge_base_entries: int = 0
    version: str = Field(..., description="Application version")


class ErrorResponse(BaseModel):
    """Response model for API errors."""
    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=utcnow)
