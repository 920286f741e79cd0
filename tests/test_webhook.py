"""Tests for the webhook receiver app."""

from __future__ import annotations

import json
from typing import Any
import unittest

from fastapi.testclient import TestClient

from agent_bridge.state import AgentState, StateManager
from agent_bridge.webhook import create_app


class _FakeAgent:
    def __init__(self) -> None:
        self.state = StateManager()
        self.last_interaction = 1700000000.0
        self.calls: list[str] = []

    async def init(self) -> None:
        self.calls.append("init")
        await self.state.transition_to(AgentState.READY)

    async def dispose(self) -> None:
        self.calls.append("dispose")
        await self.state.transition_to(AgentState.DISPOSED)


class _FakeService:
    def __init__(self) -> None:
        self.dispatched: list[dict[str, Any]] = []

    def verify_webhook(self, body: bytes, signature: str) -> bool:
        return signature == "good"

    async def dispatch(self, payload: dict[str, Any]) -> None:
        self.dispatched.append(payload)


class WebhookAppTests(unittest.TestCase):
    """Validate signature checks, payload validation and health."""

    def setUp(self) -> None:
        self.agent = _FakeAgent()
        self.service = _FakeService()
        self.app = create_app(self.agent, self.service)  # type: ignore[arg-type]

    def _post(self, client: TestClient, body: Any, signature: str = "good"):
        content = body if isinstance(body, bytes) else json.dumps(body).encode()
        return client.post(
            "/webhook",
            content=content,
            headers={"X-Signature": signature, "Content-Type": "application/json"},
        )

    def test_lifespan_initialises_and_disposes_agent(self) -> None:
        with TestClient(self.app) as client:
            self.assertEqual(self.agent.calls, ["init"])
            health = client.get("/health").json()
        self.assertEqual(health, {"status": "READY", "last_interaction": 1700000000.0})
        self.assertEqual(self.agent.calls, ["init", "dispose"])

    def test_valid_event_is_acknowledged_and_dispatched(self) -> None:
        payload = {"type": "message.new", "cid": "messaging:general"}
        with TestClient(self.app) as client:
            response = self._post(client, payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        self.assertEqual(self.service.dispatched, [payload])

    def test_bad_signature_is_rejected(self) -> None:
        with TestClient(self.app) as client:
            response = self._post(client, {"type": "message.new"}, signature="forged")
            missing = client.post("/webhook", content=b"{}")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(missing.status_code, 401)
        self.assertEqual(self.service.dispatched, [])

    def test_malformed_payloads_are_rejected(self) -> None:
        with TestClient(self.app) as client:
            not_json = self._post(client, b"not json")
            no_type = self._post(client, {"cid": "messaging:general"})
            not_object = self._post(client, [1, 2, 3])
        self.assertEqual(not_json.status_code, 400)
        self.assertEqual(no_type.status_code, 400)
        self.assertEqual(not_object.status_code, 400)
        self.assertEqual(self.service.dispatched, [])

    def test_signature_check_can_be_disabled(self) -> None:
        app = create_app(self.agent, self.service, verify_signatures=False)  # type: ignore[arg-type]
        with TestClient(app) as client:
            response = client.post("/webhook", json={"type": "ai_indicator.stop"})
        self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
