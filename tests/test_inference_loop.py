#!/usr/bin/env python3
"""Tests for the reason / select / validate / execute / respond loop."""
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fakes import ScriptedGateway, build_catalog, build_provider
from poschat.agents.execution_agent import ExecutionAgent
from poschat.agents.inference_loop import (
    TECHNICAL_ISSUE_RESPONSE,
    VALIDATION_EXHAUSTED_REASON,
    VALIDATION_EXHAUSTED_RESPONSE,
    InferenceLoop,
)
from poschat.agents.reasoning_agent import DEFAULT_SUMMARY, RETRY_NOTICE, ReasoningAgent, summarize
from poschat.agents.response_agent import FALLBACK_RESPONSE, ResponseAgent
from poschat.agents.tool_selection_agent import ToolSelectionAgent
from poschat.agents.validation_agent import ValidationAgent, serialize_invocations
from poschat.app.config import ConfigurationError
from poschat.app.gateway import ModelGatewayError
from poschat.app.prompts import PromptTemplateProvider
from poschat.schemas.inference_models import FailureKind
from poschat.schemas.tool_models import ToolInvocation

ADD_KOPI_C = 'TOOL_CALL: add_item_to_transaction {"item_description": "kopi c", "confidence": 0.95}'
REJECT = '{"decision": "REJECTED", "rationale": "wrong item"}\nFeedback: customer asked for teh, not kopi'
APPROVE = '{"decision": "APPROVED", "rationale": "matches the request"}'

STORE_VARIABLES = {"StoreName": "Toast Boleh", "StaffTitle": "Uncle", "CultureCode": "en-SG"}


class LoopTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.catalog = build_catalog()

    def build_loop(self, gateway, max_attempts=2):
        self.provider = build_provider(catalog=self.catalog)
        args = (gateway, PromptTemplateProvider(), "kopitiam_uncle", STORE_VARIABLES)
        return InferenceLoop(
            reasoning=ReasoningAgent(*args, provider=self.provider),
            selection=ToolSelectionAgent(*args, provider=self.provider),
            validation=ValidationAgent(*args),
            execution=ExecutionAgent(self.provider),
            response=ResponseAgent(*args),
            max_attempts=max_attempts,
        )


class TestInferenceLoop(LoopTestCase):
    def test_approved_first_attempt_uses_one_iteration(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants one kopi c\nThey said it plainly.",
            "tool_selection": "Adding kopi c\n" + ADD_KOPI_C,
            "validation": APPROVE,
            "response": "One kopi c, coming up!",
        })
        result = self.build_loop(gateway).run("one kopi c", "Building: empty order")

        self.assertTrue(result.success)
        self.assertEqual(result.iterations_used, 1)
        self.assertEqual(result.tools_executed, ["add_item_to_transaction"])
        self.assertEqual(result.customer_response, "One kopi c, coming up!")
        self.assertEqual(gateway.stages(), ["reasoning", "tool_selection", "validation", "response"])
        txn = self.provider.get_transaction_snapshot()
        self.assertEqual([l.product_sku for l in txn.line_items], ["KOPI002"])

    def test_rejected_then_approved_uses_max_attempts(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": ["Customer wants kopi", "Customer wants teh"],
            "tool_selection": ['TOOL_CALL: search_products {"search_term": "kopi"}',
                               'TOOL_CALL: search_products {"search_term": "teh"}'],
            "validation": [REJECT, APPROVE],
            "response": "Here are our teh options.",
        })
        result = self.build_loop(gateway, max_attempts=2).run("teh options?", "Building: empty order")

        self.assertTrue(result.success)
        self.assertEqual(result.iterations_used, 2)
        # The retry carries the reviewer's feedback into the second reasoning prompt
        second_reasoning = [p for p in gateway.prompts if "Explain in plain words" in p][1]
        self.assertIn(RETRY_NOTICE, second_reasoning)
        self.assertIn("Feedback: customer asked for teh", second_reasoning)

    def test_never_approved_terminates_with_apology(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants something",
            "tool_selection": ADD_KOPI_C,
            "validation": "I do not concur. Feedback: unclear order",
        })
        result = self.build_loop(gateway, max_attempts=2).run("hmm", "Building: empty order")

        self.assertFalse(result.success)
        self.assertEqual(result.iterations_used, 2)
        self.assertEqual(result.customer_response, VALIDATION_EXHAUSTED_RESPONSE)
        self.assertEqual(result.failure_reason, VALIDATION_EXHAUSTED_REASON)
        self.assertEqual(result.failure_kind, FailureKind.validation_exhausted)
        # Nothing ran against the kernel
        self.assertIsNone(self.provider.get_transaction_snapshot())

    def test_stage_error_on_first_attempt_retries(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": [ModelGatewayError("backend hiccup"), "Customer wants kopi c"],
            "tool_selection": ADD_KOPI_C,
            "validation": APPROVE,
            "response": "Kopi c added.",
        })
        result = self.build_loop(gateway, max_attempts=2).run("kopi c", "Building: empty order")
        self.assertTrue(result.success)
        self.assertEqual(result.iterations_used, 2)

    def test_stage_error_on_final_attempt_reports_failure(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants kopi c",
            "tool_selection": 'TOOL_CALL: add_item_to_transaction {"item_description": broken}',
        })
        result = self.build_loop(gateway, max_attempts=1).run("kopi c", "Building: empty order")
        self.assertFalse(result.success)
        self.assertEqual(result.customer_response, TECHNICAL_ISSUE_RESPONSE)
        self.assertEqual(result.failure_kind, FailureKind.error)
        self.assertIn("malformed JSON", result.failure_reason)

    def test_no_tool_calls_still_responds(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer is greeting",
            "tool_selection": "No action needed, just a greeting.",
            "validation": "APPROVED - nothing to do",
            "response": "Morning! What you want?",
        })
        result = self.build_loop(gateway).run("hello uncle", "Building: empty order")
        self.assertTrue(result.success)
        self.assertEqual(result.tools_executed, [])
        self.assertEqual(result.customer_response, "Morning! What you want?")

    def test_empty_response_falls_back(self):
        gateway = ScriptedGateway(by_stage={
            "reasoning": "Customer wants kopi c",
            "tool_selection": ADD_KOPI_C,
            "validation": APPROVE,
            "response": "   ",
        })
        result = self.build_loop(gateway).run("kopi c", "Building: empty order")
        self.assertEqual(result.customer_response, FALLBACK_RESPONSE)

    def test_missing_attempt_limit_is_design_deficiency(self):
        with self.assertRaises(ConfigurationError):
            self.build_loop(ScriptedGateway(), max_attempts=None)


class TestStages(LoopTestCase):
    def test_summary_rules(self):
        self.assertEqual(summarize("\n\n  Wants kopi  \nmore"), "Wants kopi")
        self.assertEqual(summarize(""), DEFAULT_SUMMARY)
        self.assertEqual(summarize("\n\n\n\nlate line"), DEFAULT_SUMMARY)
        long_line = "x" * 250
        self.assertEqual(summarize(long_line), "x" * 200 + "...")

    def test_inventory_context_loaded_once(self):
        gateway = ScriptedGateway(by_stage={"reasoning": "Wants kopi"})
        provider = build_provider(catalog=self.catalog)
        agent = ReasoningAgent(gateway, PromptTemplateProvider(), "kopitiam_uncle", STORE_VARIABLES, provider=provider)
        agent.run("kopi", "Building: empty order", 1)
        first = agent.inventory_context()
        agent.run("kopi", "Building: empty order", 1)
        self.assertIs(agent.inventory_context(), first)
        self.assertIn("Top 10 popular items:", gateway.prompts[0])

    def test_reasoning_context_carries_store_and_timestamp(self):
        gateway = ScriptedGateway(by_stage={"reasoning": "Wants kopi"})
        provider = build_provider(catalog=self.catalog)
        agent = ReasoningAgent(gateway, PromptTemplateProvider(), "kopitiam_uncle", STORE_VARIABLES, provider=provider)
        result = agent.run("kopi", "Building: empty order", 1)
        self.assertEqual(result.summary, "Wants kopi")
        self.assertIn('"store_name": "Toast Boleh"', gateway.system_messages[0])
        self.assertIn('"culture_code": "en-SG"', gateway.system_messages[0])
        self.assertRegex(gateway.system_messages[0], r'"timestamp": "\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}"')

    def test_empty_inventory_is_design_deficiency(self):
        provider = build_provider(catalog=self.catalog)
        provider.execute = lambda invocation: "ERROR: No products available"
        agent = ReasoningAgent(ScriptedGateway(), PromptTemplateProvider(), "kopitiam_uncle", STORE_VARIABLES,
                               provider=provider)
        with self.assertRaises(ConfigurationError):
            agent.run("kopi", "Building: empty order", 1)

    def test_validation_serializes_invocations(self):
        text = serialize_invocations([ToolInvocation(function_name="search_products", arguments={"search_term": "teh"})])
        self.assertEqual(text, '- search_products: {"search_term": "teh"}')

    def test_execution_collects_failures_without_stopping(self):
        provider = build_provider(catalog=self.catalog)
        original = provider.execute

        def flaky(invocation):
            if invocation.function_name == "search_products":
                raise RuntimeError("catalog offline")
            return original(invocation)

        provider.execute = flaky
        result = ExecutionAgent(provider).run([
            ToolInvocation(function_name="search_products", arguments={"search_term": "kopi"}),
            ToolInvocation(function_name="add_item_to_transaction", arguments={"item_description": "kopi c"}),
        ])
        self.assertFalse(result.success)
        self.assertEqual(result.errors, ["Tool search_products failed: catalog offline"])
        self.assertEqual(result.tools_executed, ["add_item_to_transaction"])
        self.assertEqual(len(provider.get_transaction_snapshot().line_items), 1)


if __name__ == '__main__':
    unittest.main()
