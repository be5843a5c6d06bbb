#!/usr/bin/env python3
"""End-to-end conversation tests: scripted model, simulated kernel, seeded catalog."""
import os
import sys
import time
import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fakes import AUTO_ADD, HIGH, ScriptedGateway, build_catalog, build_store
from poschat.agents.inference_loop import TECHNICAL_ISSUE_RESPONSE, VALIDATION_EXHAUSTED_RESPONSE
from poschat.app.controller import CLARIFICATION_HINT, NEXT_CUSTOMER_FALLBACK, PAYMENT_DUE_HINT, ConversationState
from poschat.app.factory import build_orchestrator
from poschat.app.payment_state import PaymentState
from poschat.app.session import SessionManager
from poschat.kernel.client import KernelUnavailableError
from poschat.kernel.simulated import InMemoryKernelClient
from poschat.schemas.receipt_models import PaymentStatus, ReceiptChangeType

APPROVE = '{"decision": "APPROVED", "rationale": "matches the request"}'


def add_call(description, confidence=0.95, context=None):
    arguments = f'"item_description": "{description}", "confidence": {confidence}'
    if context:
        arguments += f', "context": "{context}"'
    return "TOOL_CALL: add_item_to_transaction {" + arguments + "}"


class OrchestratorTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.catalog = build_catalog()

    def build(self, gateway, **kwargs):
        kwargs.setdefault("max_attempts", 2)
        orchestrator = build_orchestrator(
            gateway=gateway,
            kernel=InMemoryKernelClient(),
            catalog=self.catalog,
            store=build_store(),
            auto_add_confidence=AUTO_ADD,
            high_confidence=HIGH,
            **kwargs,
        )
        self.changes = []
        orchestrator.subscribe_receipt_changes(self.changes.append)
        self.addCleanup(orchestrator.shutdown)
        return orchestrator

    def change_types(self):
        return [change.change_type for change in self.changes]


class TestOrderToPayment(OrchestratorTestCase):
    def script(self):
        return ScriptedGateway(by_stage={
            "greeting": "Morning! What you want?",
            "reasoning": "Customer wants one kopi c",
            "tool_selection": "Adding it\n" + add_call("kopi c"),
            "validation": APPROVE,
            "response": "One Kopi C. Anything else?",
            "order_summary": "One Kopi C, S$1.60. How you paying?",
            "post_payment": "Thank you! Kopi coming.",
            "next_customer": "Next! What you want?",
        })

    def test_kopi_then_done_then_cash(self):
        orchestrator = self.build(self.script())
        self.assertEqual(orchestrator.initialize(), "Morning! What you want?")

        reply = orchestrator.process_user_input("kopi c")
        self.assertEqual(reply, "One Kopi C. Anything else?")
        self.assertEqual([i.product_name for i in orchestrator.receipt.items], ["Kopi C"])
        self.assertEqual(orchestrator.receipt.status, PaymentStatus.building)

        reply = orchestrator.process_user_input("that's all")
        self.assertEqual(reply, "One Kopi C, S$1.60. How you paying?")
        self.assertEqual(orchestrator.payment_state.state, PaymentState.payment_method_requested)
        self.assertEqual(orchestrator.receipt.status, PaymentStatus.ready_for_payment)

        reply = orchestrator.process_user_input("cash")
        self.assertEqual(reply, "Thank you! Kopi coming.\n\nNext! What you want?")

        self.assertIn(ReceiptChangeType.payment_completed, self.change_types())
        self.assertEqual(self.changes[-1].change_type, ReceiptChangeType.cleared)
        paid = [c for c in self.changes if c.change_type == ReceiptChangeType.payment_completed][0]
        self.assertEqual(paid.receipt.status, PaymentStatus.completed)
        self.assertEqual(len(paid.receipt.items), 1)

        # Ready for the next customer
        self.assertEqual(orchestrator.receipt.items, [])
        self.assertEqual(orchestrator.payment_state.state, PaymentState.ordering)
        self.assertIsNone(orchestrator.provider.get_transaction_snapshot())

    def test_history_records_every_turn_in_order(self):
        orchestrator = self.build(self.script())
        orchestrator.initialize()
        for text in ("kopi c", "that's all", "cash"):
            orchestrator.process_user_input(text)

        senders = [turn.sender for turn in orchestrator.history]
        self.assertEqual(senders, ["Uncle", "Customer", "Uncle", "Customer", "Uncle", "Customer", "Uncle"])
        self.assertTrue(orchestrator.history[0].is_system_generated)
        self.assertEqual([t.text for t in orchestrator.history if t.sender == "Customer"],
                         ["kopi c", "that's all", "cash"])

    def test_turns_written_to_session_store(self):
        sessions = SessionManager(use_redis=False)
        orchestrator = self.build(self.script(), sessions=sessions, session_id="till-1")
        orchestrator.initialize()
        orchestrator.process_user_input("kopi c")
        turns = sessions.get_recent_turns("till-1")
        self.assertEqual([t.text for t in turns], ["Morning! What you want?", "kopi c", "One Kopi C. Anything else?"])

    def test_summary_falls_back_to_verification(self):
        gateway = self.script()
        del gateway.by_stage["order_summary"]
        orchestrator = self.build(gateway)
        orchestrator.process_user_input("kopi c")
        reply = orchestrator.process_user_input("that's all")
        self.assertIn("1. 1x Kopi C - S$1.60", reply)
        self.assertTrue(reply.endswith("How would you like to pay?"))

    def test_greeting_falls_back_without_model(self):
        orchestrator = self.build(ScriptedGateway())
        self.assertEqual(orchestrator.initialize(), "Welcome to Toast Boleh! How can I help you today?")

    def test_auto_clear_after_payment(self):
        orchestrator = self.build(self.script(), auto_clear_seconds=0.05)
        orchestrator.process_user_input("kopi c")
        orchestrator.process_user_input("that's all")
        reply = orchestrator.process_user_input("cash")
        self.assertEqual(reply, "Thank you! Kopi coming.")

        deadline = time.time() + 2
        while orchestrator.history[-1].text != "Next! What you want?" and time.time() < deadline:
            time.sleep(0.02)
        self.assertEqual(orchestrator.payment_state.state, PaymentState.ordering)
        self.assertEqual(orchestrator.receipt.items, [])
        self.assertEqual(orchestrator.history[-1].text, "Next! What you want?")

    def test_stale_auto_clear_does_not_reset_next_order(self):
        orchestrator = self.build(self.script(), auto_clear_seconds=60)
        orchestrator.process_user_input("kopi c")
        orchestrator.process_user_input("that's all")
        orchestrator.process_user_input("cash")
        stale = orchestrator._clear_generation

        # The next customer speaks before the timer fires
        orchestrator.process_user_input("kopi c")
        orchestrator._auto_clear(stale)

        self.assertEqual([i.product_name for i in orchestrator.receipt.items], ["Kopi C"])
        self.assertEqual(orchestrator.history[-1].text, "One Kopi C. Anything else?")

    def test_paid_turn_completes_when_receipt_sync_fails(self):
        gateway = self.script()
        orchestrator = self.build(gateway)
        orchestrator.process_user_input("kopi c")
        orchestrator.process_user_input("that's all")
        orchestrator.synchronizer.synchronize = mock.Mock(return_value=None)

        reply = orchestrator.process_user_input("cash")
        self.assertEqual(reply, "Thank you! Kopi coming.\n\nNext! What you want?")
        self.assertEqual(gateway.stages().count("reasoning"), 1)
        self.assertEqual(orchestrator.payment_state.state, PaymentState.ordering)
        self.assertIsNone(orchestrator.provider.get_transaction_snapshot())

    def test_payment_methods_offered_while_payment_due(self):
        gateway = self.script()
        orchestrator = self.build(gateway)
        orchestrator.initialize()
        orchestrator.process_user_input("kopi c")
        orchestrator.process_user_input("that's all")
        gateway.by_stage["tool_selection"] = "Just answering, no tools needed."
        gateway.by_stage["response"] = "S$1.60 only."

        self.assertEqual(orchestrator.process_user_input("how much ah"), "S$1.60 only.")
        reasoning = [p for p in gateway.prompts if "Explain in plain words" in p]
        self.assertNotIn(PAYMENT_DUE_HINT, reasoning[0])
        self.assertIn(PAYMENT_DUE_HINT, reasoning[-1])
        self.assertIn("PAYMENT METHODS accepted at Toast Boleh", reasoning[-1])

    def test_prepare_next_customer(self):
        gateway = self.script()
        del gateway.by_stage["next_customer"]
        orchestrator = self.build(gateway)
        orchestrator.process_user_input("kopi c")
        self.assertEqual(orchestrator.prepare_next_customer(), NEXT_CUSTOMER_FALLBACK)
        self.assertEqual(orchestrator.receipt.items, [])
        self.assertEqual(self.changes[-1].change_type, ReceiptChangeType.cleared)
        self.assertEqual(self.changes[-1].context, "next customer")


class TestConversationEdges(OrchestratorTestCase):
    def test_blank_input_rejected(self):
        orchestrator = self.build(ScriptedGateway())
        with self.assertRaises(ValueError):
            orchestrator.process_user_input("   ")

    def test_disambiguation_then_clarification_hint(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": ["Customer wants kaya toast", "Customer picked thick kaya toast"],
            "tool_selection": [add_call("kaya toast", 0.3),
                               add_call("thick kaya toast", 0.85, "clarification_response")],
            "validation": APPROVE,
            "response": ["Which one? Kaya Toast, Traditional Set or Thick?", "Thick Kaya Toast, okay!"],
        })
        orchestrator = self.build(gateway)

        orchestrator.process_user_input("kaya toast")
        self.assertEqual(orchestrator.conversation_state, ConversationState.awaiting_disambiguation_choice)
        self.assertEqual(orchestrator.receipt.items, [])

        orchestrator.process_user_input("the thick one")
        reasoning_prompts = [p for p in gateway.prompts if "Explain in plain words" in p]
        self.assertNotIn(CLARIFICATION_HINT, reasoning_prompts[0])
        self.assertIn(CLARIFICATION_HINT, reasoning_prompts[1])
        self.assertEqual([i.product_name for i in orchestrator.receipt.items], ["Thick Kaya Toast"])

    def test_stage_error_produces_apology(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants kopi c",
            "tool_selection": 'TOOL_CALL: add_item_to_transaction {"item_description": broken}',
            "error_apology": "Aiyo sorry ah, say again?",
        })
        orchestrator = self.build(gateway, max_attempts=1)
        self.assertEqual(orchestrator.process_user_input("kopi c"), "Aiyo sorry ah, say again?")
        self.assertEqual(orchestrator.history[-1].text, "Aiyo sorry ah, say again?")

    def test_apology_falls_back_when_model_is_down(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants kopi c",
            "tool_selection": 'TOOL_CALL: add_item_to_transaction {"item_description": broken}',
        })
        orchestrator = self.build(gateway, max_attempts=1)
        reply = orchestrator.process_user_input("kopi c")
        self.assertEqual(reply, TECHNICAL_ISSUE_RESPONSE)

    def test_kernel_failure_during_payment_is_contained(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants one kopi c",
            "tool_selection": add_call("kopi c"),
            "validation": APPROVE,
            "response": "One Kopi C.",
            "error_apology": "Sorry, machine down. Wait a bit?",
        })
        orchestrator = self.build(gateway)
        orchestrator.process_user_input("kopi c")
        orchestrator.provider.execute = mock.Mock(side_effect=KernelUnavailableError("POS KERNEL SERVICE NOT AVAILABLE"))

        self.assertEqual(orchestrator.process_user_input("cash"), "Sorry, machine down. Wait a bit?")
        self.assertFalse(orchestrator.payment_state.is_completed)
        self.assertEqual(len(orchestrator.receipt.items), 1)

    def test_turn_completes_when_receipt_rebuild_fails(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants one kopi c",
            "tool_selection": add_call("kopi c"),
            "validation": APPROVE,
            "response": "One Kopi C.",
        })
        orchestrator = self.build(gateway)
        orchestrator.provider.lookup_product_name = mock.Mock(
            side_effect=OperationalError("SELECT", {}, Exception("db down"))
        )

        self.assertEqual(orchestrator.process_user_input("kopi c"), "One Kopi C.")
        self.assertEqual(orchestrator.receipt.items, [])
        self.assertEqual(len(orchestrator.provider.get_transaction_snapshot().line_items), 1)
        self.assertEqual(orchestrator.history[-1].text, "One Kopi C.")

    def test_validation_exhausted_reply(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Not sure",
            "tool_selection": add_call("kopi c"),
            "validation": "REJECTED. Feedback: unclear",
        })
        orchestrator = self.build(gateway)
        reply = orchestrator.process_user_input("hmm maybe")
        self.assertEqual(reply, VALIDATION_EXHAUSTED_RESPONSE)
        self.assertIsNone(orchestrator.provider.get_transaction_snapshot())


if __name__ == '__main__':
    unittest.main()
