"""
Turn delivery for the QnA bot

The BotAdapter hands (conversation id, text) turns to the dialog controller.
Any failure escaping a turn is passed to the on-turn-error handler, which by
default logs it together with the incoming text and answers with an apology.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional
from app.dialog import DialogController
from app.models import TurnResponse

logger = logging.getLogger(__name__)

TurnErrorHandler = Callable[[str, str, Exception], Awaitable[TurnResponse]]


class BotAdapter:
    """Delivers turns to the dialog controller and applies the turn-error policy."""

    def __init__(
        self,
        controller: DialogController,
        apology_message: str,
        include_error_detail: bool = False,
        timeout_seconds: Optional[float] = None,
        on_turn_error: Optional[TurnErrorHandler] = None,
    ):
        self.controller = controller
        self.apology_message = apology_message
        self.include_error_detail = include_error_detail
        self.timeout_seconds = timeout_seconds
        self.on_turn_error: TurnErrorHandler = on_turn_error or self.default_turn_error

    async def process_message(self, conversation_id: str, text: str) -> TurnResponse:
        """
        Run one turn, converting failures into an apology response.

        Args:
            conversation_id: Conversation the message belongs to
            text: Message text

        Returns:
            TurnResponse: The controller's response, or the error handler's
        """
        try:
            turn = self.controller.process_turn(conversation_id, text)
            if self.timeout_seconds is not None:
                return await asyncio.wait_for(turn, timeout=self.timeout_seconds)
            return await turn
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return await self.on_turn_error(conversation_id, text, e)

    async def default_turn_error(self, conversation_id: str, text: str, error: Exception) -> TurnResponse:
        logger.error(
            f"Unhandled exception on bot turn for conversation {conversation_id} - incoming input was {text!r}",
            exc_info=error,
        )

        message = self.apology_message
        if self.include_error_detail:
            detail = str(error) or type(error).__name__
            message = f"{message} Exception: {detail}"

        return TurnResponse(conversation_id=conversation_id, text=message, error=True)
