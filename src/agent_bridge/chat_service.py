"""Chat service collaborator: message identity, protocol and Stream Chat adapter."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any, Protocol

from stream_chat import StreamChatAsync

from .events import EventBus

LOGGER = logging.getLogger(__name__)

DEFAULT_BOT_NAME = "AI Writing Assistant"


@dataclass(frozen=True)
class MessageIdentity:
    """The chat message that indicator events and partial updates target."""

    cid: str
    message_id: str

    @classmethod
    def from_message(cls, message: dict[str, Any]) -> MessageIdentity:
        return cls(cid=str(message.get("cid", "")), message_id=str(message["id"]))


class ChatService(Protocol):
    """What the agent needs from the hosted chat service."""

    def on(self, event_type: str, handler: Callable) -> None: ...

    def off(self, event_type: str, handler: Callable) -> None: ...

    async def connect(self) -> None: ...

    async def send_message(self, message: dict[str, Any]) -> dict[str, Any]: ...

    async def send_event(self, event: dict[str, Any]) -> None: ...

    async def partial_update_message(
        self, message_id: str, update: dict[str, Any]
    ) -> None: ...

    async def disconnect(self) -> None: ...


class StreamChatService:
    """``ChatService`` backed by the Stream Chat server SDK.

    Outbound calls go through ``StreamChatAsync`` acting as the bot user.
    Server-side clients receive events as webhooks, so inbound events are
    handed to ``dispatch`` and fanned out to subscribers through an
    ``EventBus``. Events for other channels are dropped.
    """

    def __init__(
        self,
        client: StreamChatAsync,
        *,
        channel_type: str,
        channel_id: str,
        user_id: str,
        bot_name: str = DEFAULT_BOT_NAME,
        bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._channel = client.channel(channel_type, channel_id)
        self.cid = f"{channel_type}:{channel_id}"
        self.user_id = user_id
        self.bot_name = bot_name
        self.bus = bus or EventBus()

    @classmethod
    def from_credentials(
        cls,
        api_key: str,
        api_secret: str,
        *,
        channel_type: str,
        channel_id: str,
        user_id: str,
        timeout: float = 6.0,
    ) -> StreamChatService:
        client = StreamChatAsync(api_key=api_key, api_secret=api_secret, timeout=timeout)
        return cls(
            client, channel_type=channel_type, channel_id=channel_id, user_id=user_id
        )

    def on(self, event_type: str, handler: Callable) -> None:
        self.bus.subscribe(event_type, handler)

    def off(self, event_type: str, handler: Callable) -> None:
        self.bus.unsubscribe(event_type, handler)

    async def connect(self) -> None:
        """Make sure the bot user exists and is a member of the channel."""
        await self._client.upsert_user(
            {"id": self.user_id, "name": self.bot_name, "role": "admin"}
        )
        await self._channel.add_members([self.user_id])
        LOGGER.info(
            "chat.connected",
            extra={"event": "chat.connected", "cid": self.cid, "user_id": self.user_id},
        )

    async def send_message(self, message: dict[str, Any]) -> dict[str, Any]:
        response = await self._channel.send_message(message, self.user_id)
        return dict(response["message"])

    async def send_event(self, event: dict[str, Any]) -> None:
        await self._channel.send_event(event, self.user_id)

    async def partial_update_message(
        self, message_id: str, update: dict[str, Any]
    ) -> None:
        await self._client.update_message_partial(message_id, update, self.user_id)

    async def disconnect(self) -> None:
        await self._client.close()
        LOGGER.info("chat.disconnected", extra={"event": "chat.disconnected"})

    def verify_webhook(self, body: bytes, signature: str) -> bool:
        """Check a webhook body against its ``X-Signature`` header."""
        return bool(self._client.verify_webhook(body, signature))

    async def dispatch(self, payload: dict[str, Any]) -> None:
        """Publish a webhook payload to subscribers of its ``type``."""
        event_type = str(payload.get("type", ""))
        cid = payload.get("cid") or (payload.get("message") or {}).get("cid")
        if cid and cid != self.cid:
            LOGGER.debug(
                "chat.dispatch.foreign_channel",
                extra={"event": "chat.dispatch.foreign_channel", "cid": cid},
            )
            return
        await self.bus.publish(event_type, payload, source="webhook")
