"""
FastAPI routes and endpoints for the QnA bot

This module defines all REST API endpoints including:
- Message endpoint that runs one conversation turn
- Conversation state inspection and removal
- Knowledge base ranking and reload endpoints
- Health check endpoint
"""

import logging
import time
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from app.errors import ConfigError, QnABotError, StorageError, ValidationError
from app.models import (
    ConversationState, HealthCheckResponse, MatchRequest, MatchResponse,
    MessageRequest, ReloadResponse, TurnResponse
)
from app.startup import BotServices

# Configure logging
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter()


def get_services(request: Request) -> BotServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Bot services are not initialized")
    return services


@router.post("/conversations/{conversation_id}/messages", response_model=TurnResponse)
async def post_message(
    conversation_id: str,
    request: MessageRequest,
    services: BotServices = Depends(get_services),
) -> TurnResponse:
    """
    Send a message to the bot.

    Args:
        conversation_id: Conversation the message belongs to
        request: Message text

    Returns:
        TurnResponse: Answer, fallback or apology for this turn
    """
    return await services.adapter.process_message(conversation_id, request.text)


@router.get("/conversations/{conversation_id}/state", response_model=ConversationState)
async def get_conversation_state(
    conversation_id: str,
    services: BotServices = Depends(get_services),
) -> ConversationState:
    """
    Get the stored dialog state of a conversation.

    Args:
        conversation_id: Conversation to inspect

    Returns:
        ConversationState: Active follow-up prompts, last entry and turn count
    """
    try:
        state = await services.controller.get_state(conversation_id)
    except StorageError as e:
        logger.error(f"State lookup failed for conversation {conversation_id}: {e}")
        raise HTTPException(status_code=503, detail=f"Failed to read conversation state: {e}")

    if state is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return state


@router.delete("/conversations/{conversation_id}")
async def clear_conversation(
    conversation_id: str,
    services: BotServices = Depends(get_services),
) -> JSONResponse:
    """
    Clear the stored state of a conversation.

    Args:
        conversation_id: Conversation to clear

    Returns:
        JSONResponse: Success or not-found message
    """
    try:
        removed = await services.storage.delete(conversation_id)
    except StorageError as e:
        logger.error(f"Clear conversation failed for {conversation_id}: {e}")
        raise HTTPException(status_code=503, detail=f"Failed to clear conversation: {e}")

    if removed:
        return JSONResponse(content={"message": f"Conversation {conversation_id} cleared successfully"})
    return JSONResponse(content={"message": f"Conversation {conversation_id} not found"}, status_code=404)


@router.post("/match", response_model=MatchResponse)
async def match_query(
    request: MatchRequest,
    services: BotServices = Depends(get_services),
) -> MatchResponse:
    """
    Rank the whole knowledge base against a query without touching any conversation.

    Args:
        request: Query, result limit and optional threshold override

    Returns:
        MatchResponse: Ranked results
    """
    start_time = time.time()
    kb = services.provider.current
    min_confidence = request.min_confidence
    if min_confidence is None:
        min_confidence = services.controller.min_confidence

    try:
        results = services.engine.resolve(
            request.query,
            kb.all(),
            min_confidence,
            top=request.limit or services.settings.max_results,
            knowledge_base=kb,
        )
    except QnABotError as e:
        logger.error(f"Match endpoint error: {e}")
        raise HTTPException(status_code=500, detail=f"Match failed: {e}")

    query_time = int((time.time() - start_time) * 1000)
    return MatchResponse(results=results, total_results=len(results), query_time_ms=query_time, query=request.query)


@router.post("/knowledge-base/reload", response_model=ReloadResponse)
async def reload_knowledge_base(services: BotServices = Depends(get_services)) -> ReloadResponse:
    """
    Reload the knowledge base from its configured source.

    The active knowledge base stays in place if the new content is invalid.

    Returns:
        ReloadResponse: The new entry count, version and threshold
    """
    try:
        loaded = services.reload_knowledge_base()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail={"error": str(e), "errors": e.errors})
    except ConfigError as e:
        raise HTTPException(status_code=500, detail=f"Reload failed: {e}")

    return ReloadResponse(
        success=True,
        entry_count=len(loaded.knowledge_base),
        version=loaded.knowledge_base.version,
        min_confidence=loaded.min_confidence,
    )


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request) -> HealthCheckResponse:
    """
    Health check endpoint.

    Returns:
        HealthCheckResponse: System health status
    """
    services = getattr(request.app.state, "services", None)
    kb_entries = len(services.provider.current) if services is not None else 0
    components = {
        "services": services is not None,
        "knowledge_base": kb_entries > 0,
    }

    overall_status = "healthy" if all(components.values()) else "degraded"
    version = services.settings.api_version if services is not None else "unknown"
    return HealthCheckResponse(
        status=overall_status,
        components=components,
        knowledge_base_entries=kb_entries,
        version=version,
    )


def get_api_router() -> APIRouter:
    """
    Get the configured API router.

    Returns:
        APIRouter: Configured router with all endpoints
    """
    return router
