"""FastAPI app receiving Stream Chat webhooks for one agent."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from .agent import ChatAgent
from .chat_service import StreamChatService
from .task_manager import TaskManager

LOGGER = logging.getLogger(__name__)


def create_app(
    agent: ChatAgent,
    service: StreamChatService,
    *,
    verify_signatures: bool = True,
) -> FastAPI:
    """Build the webhook app. The agent is started and disposed with the app."""
    dispatch_tasks = TaskManager("dispatch")

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await agent.init()
        try:
            yield
        finally:
            await agent.dispose()
            await dispatch_tasks.cancel_all()

    app = FastAPI(title="agent-bridge", lifespan=lifespan)

    @app.post("/webhook")
    async def webhook(request: Request) -> dict[str, bool]:
        body = await request.body()
        if verify_signatures:
            signature = request.headers.get("x-signature", "")
            if not signature or not service.verify_webhook(body, signature):
                LOGGER.warning(
                    "webhook.signature.invalid",
                    extra={"event": "webhook.signature.invalid"},
                )
                raise HTTPException(status_code=401, detail="Invalid webhook signature")

        try:
            payload: Any = json.loads(body or b"null")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Body must be JSON") from exc
        if not isinstance(payload, dict) or not payload.get("type"):
            raise HTTPException(status_code=400, detail="Event type is missing")

        LOGGER.debug(
            "webhook.received",
            extra={"event": "webhook.received", "type": payload["type"]},
        )
        # Dispatch outlives the request; handlers may take the whole generation.
        dispatch_tasks.spawn(service.dispatch(payload))
        return {"ok": True}

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": agent.state.current.value,
            "last_interaction": agent.last_interaction,
        }

    return app
