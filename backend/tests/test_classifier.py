"""
Test the intent classifier: LLM path, validation of its output and the keyword fallback.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from cfo_assistant.schemas.agents import ExecutionTrace, TraceEventType
from cfo_assistant.services.agents.classifier import (
    BOOKKEEPING_AGENT,
    FALLBACK_CONFIDENCE,
    INVOICING_AGENT,
    RECEIPTS_AGENT,
    REPORTING_AGENT,
    IntentClassifier,
    get_classification_schema,
)

LLM_CALL = "cfo_assistant.services.agents.classifier.call_gemini_api"


@pytest.fixture
def classifier():
    return IntentClassifier()


class TestFallbackClassifier:
    """Keyword routing used whenever the LLM is unavailable."""

    @pytest.mark.parametrize("message", [
        "create a new invoice for Joakim, 12000 SEK",
        "show me the invoice list",
        "Which INVOICE is overdue?",
        "invoice for the expense report",
        "invoice and cash flow",
        "invoice transactions summary",
    ])
    def test_invoice_without_receipt_routes_to_invoicing(self, classifier, message):
        request = classifier.fallback_classify(message)

        assert request.intent == "invoicing"
        assert INVOICING_AGENT in request.required_agents
        assert request.confidence == FALLBACK_CONFIDENCE
        assert request.source == "fallback"

    def test_receipt_keyword(self, classifier):
        request = classifier.fallback_classify("show me all receipts pending approval")

        assert request.intent == "receipts"
        assert request.required_agents == [RECEIPTS_AGENT]

    def test_swedish_receipt_keyword(self, classifier):
        assert classifier.fallback_classify("nytt kvitto från Clas Ohlson").intent == "receipts"

    def test_receipt_beats_invoice(self, classifier):
        request = classifier.fallback_classify("attach the receipt to the invoice")

        assert request.intent == "receipts"
        assert request.required_agents == [RECEIPTS_AGENT, INVOICING_AGENT]

    def test_bookkeeping_keyword(self, classifier):
        request = classifier.fallback_classify("categorize my transactions")

        assert request.intent == "bookkeeping"
        assert request.required_agents == [BOOKKEEPING_AGENT]

    def test_reporting_keyword(self, classifier):
        request = classifier.fallback_classify("give me a monthly report")

        assert request.intent == "reporting"
        assert request.required_agents == [REPORTING_AGENT]

    def test_analysis_requires_reporting_and_bookkeeping(self, classifier):
        request = classifier.fallback_classify("how is our cash flow?")

        assert request.intent == "analysis"
        assert request.required_agents == [REPORTING_AGENT, BOOKKEEPING_AGENT]

    def test_agents_are_deduplicated(self, classifier):
        request = classifier.fallback_classify("expense report on profit")

        assert request.required_agents == [REPORTING_AGENT, BOOKKEEPING_AGENT]
        assert len(request.required_agents) == len(set(request.required_agents))

    def test_create_client_combo(self, classifier):
        request = classifier.fallback_classify("create something for this client")

        assert request.intent == "invoicing"

    def test_no_keyword_defaults_to_bookkeeping(self, classifier):
        request = classifier.fallback_classify("hello")

        assert request.intent == "general"
        assert request.required_agents == [BOOKKEEPING_AGENT]
        assert request.confidence == 0.5

    def test_entities_extracted(self, classifier):
        request = classifier.fallback_classify("create a new invoice for Joakim, 12000 SEK")

        assert request.entities.client_name == "joakim"
        assert request.entities.amount == 12000.0
        assert request.entities.action == "create"


class TestLLMClassification:
    @pytest.mark.asyncio
    async def test_no_api_key_uses_fallback(self, classifier):
        trace = ExecutionTrace(user_message="hello")

        request = await classifier.classify("hello", trace)

        assert request.source == "fallback"
        assert any(e.event_type == TraceEventType.FALLBACK_TRIGGERED.value for e in trace.events)

    @pytest.mark.asyncio
    async def test_valid_llm_response(self, classifier):
        reply = json.dumps({
            "intent": "invoicing",
            "required_agents": ["Invoicing Agent", "Invoicing Agent", "Unknown Agent"],
            "entities": {"client_name": "Joakim", "amount": 12000, "action": "create", "invoice_number": None},
            "confidence": 0.92,
            "reasoning": "explicit invoice creation",
        })
        with patch(LLM_CALL, new=AsyncMock(return_value=reply)):
            trace = ExecutionTrace(user_message="x")
            request = await classifier.classify("create a new invoice for Joakim, 12000 SEK", trace)

        assert request.source == "llm"
        assert request.intent == "invoicing"
        assert request.required_agents == [INVOICING_AGENT]
        assert request.entities.client_name == "Joakim"
        assert request.entities.invoice_number is None
        assert request.confidence == pytest.approx(0.92)
        assert trace.llm_calls == 1

    @pytest.mark.asyncio
    async def test_code_fenced_response(self, classifier):
        reply = '```json\n{"intent": "reporting", "required_agents": ["Reporting Agent"], "confidence": 0.8}\n```'
        with patch(LLM_CALL, new=AsyncMock(return_value=reply)):
            request = await classifier.classify("quarterly report")

        assert request.intent == "reporting"
        assert request.source == "llm"

    @pytest.mark.asyncio
    async def test_unknown_agents_only_default_to_bookkeeping(self, classifier):
        reply = json.dumps({"intent": "general", "required_agents": ["Travel Agent"], "confidence": 0.4})
        with patch(LLM_CALL, new=AsyncMock(return_value=reply)):
            request = await classifier.classify("book me a flight")

        assert request.required_agents == [BOOKKEEPING_AGENT]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        None,
        "",
        "API error: 500 - backend unavailable",
        "Rate limit exceeded: Wait a minute.",
        "{not json",
        json.dumps({"required_agents": ["Invoicing Agent"], "confidence": 0.9}),
        json.dumps({"intent": "payroll", "required_agents": ["Invoicing Agent"], "confidence": 0.9}),
        json.dumps({"intent": "invoicing", "required_agents": ["Invoicing Agent"], "confidence": 7}),
        json.dumps(["invoicing"]),
        json.dumps({"intent": "invoicing", "required_agents": "Invoicing Agent", "confidence": 0.9}),
        json.dumps({"intent": "invoicing", "required_agents": ["Invoicing Agent"], "entities": "Anna"}),
    ])
    async def test_invalid_llm_output_falls_back(self, classifier, reply):
        with patch(LLM_CALL, new=AsyncMock(return_value=reply)):
            request = await classifier.classify("create an invoice for Anna")

        assert request.source == "fallback"
        assert request.intent == "invoicing"
        assert request.confidence == FALLBACK_CONFIDENCE

    @pytest.mark.asyncio
    async def test_llm_exception_falls_back(self, classifier):
        with patch(LLM_CALL, new=AsyncMock(side_effect=RuntimeError("boom"))):
            request = await classifier.classify("hello")

        assert request.source == "fallback"
        assert request.intent == "general"

    @pytest.mark.asyncio
    async def test_llm_disabled(self):
        mock_call = AsyncMock()
        with patch(LLM_CALL, new=mock_call):
            request = await IntentClassifier(use_llm=False).classify("show receipts")

        mock_call.assert_not_called()
        assert request.intent == "receipts"


def test_classification_schema_lists_all_agents():
    schema = get_classification_schema()
    agents = schema["properties"]["required_agents"]["items"]["enum"]

    assert set(agents) == {BOOKKEEPING_AGENT, INVOICING_AGENT, REPORTING_AGENT, RECEIPTS_AGENT}
    assert "intent" in schema["required"]
