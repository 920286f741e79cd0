"""AI indicator events shown alongside a generating message."""

from __future__ import annotations

from enum import Enum
import logging

from .chat_service import ChatService, MessageIdentity

LOGGER = logging.getLogger(__name__)


class AIState(str, Enum):
    """Indicator states understood by chat clients."""

    THINKING = "AI_STATE_THINKING"
    GENERATING = "AI_STATE_GENERATING"
    ERROR = "AI_STATE_ERROR"


class IndicatorSignaler:
    """Forward indicator updates for one message to the chat service."""

    def __init__(self, chat: ChatService) -> None:
        self._chat = chat

    async def update(self, identity: MessageIdentity, state: AIState) -> None:
        LOGGER.debug(
            "indicator.update",
            extra={
                "event": "indicator.update",
                "state": state.value,
                "message_id": identity.message_id,
            },
        )
        await self._chat.send_event(
            {
                "type": "ai_indicator.update",
                "ai_state": state.value,
                "cid": identity.cid,
                "message_id": identity.message_id,
            }
        )

    async def clear(self, identity: MessageIdentity) -> None:
        LOGGER.debug(
            "indicator.clear",
            extra={"event": "indicator.clear", "message_id": identity.message_id},
        )
        await self._chat.send_event(
            {
                "type": "ai_indicator.clear",
                "cid": identity.cid,
                "message_id": identity.message_id,
            }
        )
