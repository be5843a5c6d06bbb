#!/usr/bin/env python3
"""Tests for the HTTP surface, with orchestrators built on a scripted model."""
import os
import sys
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient

from fakes import AUTO_ADD, HIGH, ScriptedGateway, build_catalog, build_store
from poschat import __version__
from poschat.app.factory import build_orchestrator
from poschat.app.gateway import ModelGatewayError
from poschat.app.main import OrchestratorRegistry, app, get_registry
from poschat.app.session import SessionManager
from poschat.kernel.simulated import InMemoryKernelClient

APPROVE = '{"decision": "APPROVED", "rationale": "ok"}'


class ScriptedContainer:
    """Stands in for ServiceContainer: same orchestrator wiring, scripted model."""

    def __init__(self):
        self.catalog = build_catalog()
        self.kernel = InMemoryKernelClient()
        self.sessions = SessionManager(use_redis=False)

    def create_orchestrator(self, session_id):
        gateway = ScriptedGateway(by_stage={
            "greeting": "Morning! What you want?",
            "reasoning": "Customer wants kopi c",
            "tool_selection": 'TOOL_CALL: add_item_to_transaction {"item_description": "kopi c", "confidence": 0.95}',
            "validation": APPROVE,
            "response": "One Kopi C. Anything else?",
            "next_customer": "Next!",
        })
        return build_orchestrator(
            gateway=gateway, kernel=self.kernel, catalog=self.catalog, store=build_store(),
            auto_add_confidence=AUTO_ADD, high_confidence=HIGH, max_attempts=2,
            sessions=self.sessions, session_id=session_id,
        )


class TestChatApi(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.container = ScriptedContainer()

    def setUp(self):
        self.registry = OrchestratorRegistry(self.container)
        app.dependency_overrides[get_registry] = lambda: self.registry
        self.addCleanup(app.dependency_overrides.clear)
        self.client = TestClient(app)

    def open_session(self, session_id=None):
        response = self.client.post("/session", json={"session_id": session_id})
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.json(), {"status": "healthy", "version": __version__})

    def test_session_greets_once(self):
        first = self.open_session("till-1")
        self.assertTrue(first["created"])
        self.assertEqual(first["greeting"], "Morning! What you want?")
        again = self.open_session("till-1")
        self.assertFalse(again["created"])
        self.assertEqual(again["greeting"], "Morning! What you want?")

    def test_session_id_generated(self):
        body = self.open_session()
        self.assertTrue(body["session_id"])

    def test_chat_updates_receipt(self):
        session_id = self.open_session()["session_id"]
        response = self.client.post("/chat", json={"session_id": session_id, "message": "kopi c"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["response"], "One Kopi C. Anything else?")
        self.assertEqual(body["payment_state"], "Ordering")
        self.assertEqual([item["product_name"] for item in body["receipt"]["items"]], ["Kopi C"])

        receipt = self.client.get(f"/receipt/{session_id}").json()
        self.assertEqual(receipt["items"][0]["product_sku"], "KOPI002")

        history = self.client.get(f"/history/{session_id}").json()
        self.assertEqual([t["text"] for t in history["turns"]],
                         ["Morning! What you want?", "kopi c", "One Kopi C. Anything else?"])

    def test_unknown_session_is_404(self):
        self.assertEqual(self.client.post("/chat", json={"session_id": "nope", "message": "hi"}).status_code, 404)
        self.assertEqual(self.client.get("/receipt/nope").status_code, 404)
        self.assertEqual(self.client.delete("/session/nope").status_code, 404)

    def test_blank_message_is_422(self):
        session_id = self.open_session()["session_id"]
        self.assertEqual(self.client.post("/chat", json={"session_id": session_id, "message": ""}).status_code, 422)
        self.assertEqual(self.client.post("/chat", json={"session_id": session_id, "message": "   "}).status_code, 422)

    def test_next_customer_clears_receipt(self):
        session_id = self.open_session()["session_id"]
        self.client.post("/chat", json={"session_id": session_id, "message": "kopi c"})
        body = self.client.post(f"/session/{session_id}/next-customer").json()
        self.assertEqual(body["response"], "Next!")
        self.assertEqual(body["receipt"]["items"], [])

    def test_delete_session(self):
        session_id = self.open_session()["session_id"]
        response = self.client.delete(f"/session/{session_id}")
        self.assertEqual(response.json(), {"session_id": session_id, "deleted": True})
        self.assertEqual(self.client.get(f"/history/{session_id}").status_code, 404)
        self.assertIsNone(self.container.sessions.get_session(session_id))

    def test_model_failure_escaping_orchestrator_is_502(self):
        orchestrator = mock.Mock()
        orchestrator.process_user_input.side_effect = ModelGatewayError("upstream 503")
        registry = mock.Mock()
        registry.get.return_value = orchestrator
        app.dependency_overrides[get_registry] = lambda: registry

        response = self.client.post("/chat", json={"session_id": "s1", "message": "kopi"})
        self.assertEqual(response.status_code, 502)
        self.assertIn("upstream 503", response.json()["detail"])


if __name__ == '__main__':
    unittest.main()
