"""Intent classifier: structured LLM call first, keyword rules as fallback.

The classifier never raises. Any failure on the LLM path (no key, HTTP
error, rate limit, bad JSON, schema violation) lands on the fallback.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from ...schemas.agents.task import CFORequest, ExtractedEntities, Intent
from ...schemas.agents.trace import ExecutionTrace, TraceEventType
from .llm import call_gemini_api, is_valid_llm_response, strip_code_fence
from .text import extract_amount, extract_client_name, extract_invoice_number

logger = logging.getLogger(__name__)

BOOKKEEPING_AGENT = "Bookkeeping Agent"
INVOICING_AGENT = "Invoicing Agent"
REPORTING_AGENT = "Reporting Agent"
RECEIPTS_AGENT = "Receipts Agent"
AGENT_NAMES = (BOOKKEEPING_AGENT, INVOICING_AGENT, REPORTING_AGENT, RECEIPTS_AGENT)
DEFAULT_AGENT = BOOKKEEPING_AGENT

FALLBACK_CONFIDENCE = 0.5


@dataclass(frozen=True)
class IntentRule:
    """Keyword rule for the fallback classifier.

    A rule matches when any keyword is a substring of the lower-cased
    message, or when every word of any combo is. The first matching rule
    names the intent; agents from all matching rules accumulate in table
    order.
    """
    intent: Intent
    agents: Tuple[str, ...]
    keywords: Tuple[str, ...]
    combos: Tuple[Tuple[str, ...], ...] = ()

    def matches(self, message: str) -> bool:
        if any(keyword in message for keyword in self.keywords):
            return True
        return any(all(word in message for word in combo) for combo in self.combos)


# Order matters: receipts outrank invoicing, which outranks everything else
FALLBACK_RULES: Tuple[IntentRule, ...] = (
    IntentRule(
        intent=Intent.RECEIPTS,
        agents=(RECEIPTS_AGENT,),
        keywords=("receipt", "kvitto", "kvitton", "expense photo", "upload photo", "scan receipt"),
    ),
    IntentRule(
        intent=Intent.INVOICING,
        agents=(INVOICING_AGENT,),
        keywords=("invoice", "bill", "payment"),
        combos=(("create", "joakim"), ("create", "client")),
    ),
    IntentRule(
        intent=Intent.ANALYSIS,
        agents=(REPORTING_AGENT, BOOKKEEPING_AGENT),
        keywords=("cash flow", "profit", "revenue"),
    ),
    IntentRule(
        intent=Intent.REPORTING,
        agents=(REPORTING_AGENT,),
        keywords=("report", "analysis", "summary"),
    ),
    IntentRule(
        intent=Intent.BOOKKEEPING,
        agents=(BOOKKEEPING_AGENT,),
        keywords=("transaction", "expense", "categorize"),
    ),
)


_ACTION_KEYWORDS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("create", ("create", "generate", "new ", "add ", "skapa")),
    ("delete", ("delete", "remove", "ta bort")),
    ("update", ("update", "change", "edit", "approve")),
    ("analyze", ("analy", "report", "summary", "forecast", "trend")),
    ("view", ("show", "list", "view", "display", "find", "get ", "visa")),
)

CLASSIFIER_INSTRUCTION = """You route messages for an AI CFO assistant serving a Swedish small business.
Pick exactly one intent and the agents that must run.

Agents:
- "Invoicing Agent": invoices, bills, payments, reminders, recurring billing, clients
- "Bookkeeping Agent": transactions, expenses, categorization, reconciliation, validation
- "Reporting Agent": reports, summaries, KPIs, forecasts, cash flow, budget, tax
- "Receipts Agent": receipts (kvitto), receipt photos, scanning, approval of receipts

Keyword hints:
- invoice / bill / payment -> invoicing
- expense / categorize / transaction -> bookkeeping
- report / summary / analysis -> reporting
- receipt / kvitto / photo -> receipts
- cash flow / profit / revenue -> reporting with both "Reporting Agent" and "Bookkeeping Agent"

Entities (all optional): client_name, amount (number in SEK), invoice_number (INV-YYYY-NNN),
action (one of create, view, update, delete, analyze).

Examples:
"create a new invoice for Joakim, 12000 SEK" ->
{"intent": "invoicing", "required_agents": ["Invoicing Agent"], "entities": {"client_name": "Joakim", "amount": 12000, "action": "create"}, "confidence": 0.95, "reasoning": "explicit invoice creation"}
"show me all receipts pending approval" ->
{"intent": "receipts", "required_agents": ["Receipts Agent"], "entities": {"action": "view"}, "confidence": 0.9, "reasoning": "receipt listing"}
"how is our cash flow this quarter?" ->
{"intent": "reporting", "required_agents": ["Reporting Agent", "Bookkeeping Agent"], "entities": {"action": "analyze"}, "confidence": 0.85, "reasoning": "cash flow analysis"}
"hello" ->
{"intent": "general", "required_agents": ["Bookkeeping Agent"], "entities": {}, "confidence": 0.3, "reasoning": "no financial request"}

Output valid JSON only."""


def get_classification_schema() -> Dict[str, Any]:
    """JSON schema for Gemini structured output."""
    return {
        "type": "object",
        "properties": {
            "intent": {
                "type": "string",
                "enum": ["invoicing", "bookkeeping", "reporting", "receipts", "general"],
            },
            "required_agents": {
                "type": "array",
                "items": {"type": "string", "enum": list(AGENT_NAMES)},
            },
            "entities": {
                "type": "object",
                "properties": {
                    "client_name": {"type": "string", "nullable": True},
                    "amount": {"type": "number", "nullable": True},
                    "invoice_number": {"type": "string", "nullable": True},
                    "action": {
                        "type": "string",
                        "enum": ["create", "view", "update", "delete", "analyze"],
                        "nullable": True,
                    },
                },
            },
            "confidence": {"type": "number"},
            "reasoning": {"type": "string"},
        },
        "required": ["intent", "required_agents", "confidence"],
    }


def _dedupe(names: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for name in names:
        if name not in seen:
            seen.add(name)
            ordered.append(name)
    return ordered


def extract_entities(message: str) -> ExtractedEntities:
    """Heuristic entities for the fallback path."""
    lowered = message.lower()
    action = None
    for tag, keywords in _ACTION_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            action = tag
            break
    return ExtractedEntities(
        client_name=extract_client_name(message),
        amount=extract_amount(message),
        invoice_number=extract_invoice_number(message),
        action=action,
    )


class IntentClassifier:
    """Maps a free-text message to intent, required agents and entities."""

    def __init__(self, use_llm: bool = True, rules: Sequence[IntentRule] = FALLBACK_RULES):
        self.use_llm = use_llm
        self.rules = tuple(rules)

    async def classify(self, message: str, trace: Optional[ExecutionTrace] = None) -> CFORequest:
        if self.use_llm:
            request = await self._classify_with_llm(message, trace)
            if request is not None:
                return request
            if trace:
                trace.add_event(
                    TraceEventType.FALLBACK_TRIGGERED,
                    agent="intent_classifier",
                    data={"reason": "llm_unavailable_or_invalid"},
                )
        return self.fallback_classify(message)

    async def _classify_with_llm(self, message: str, trace: Optional[ExecutionTrace]) -> Optional[CFORequest]:
        llm_start = time.time()
        try:
            response = await call_gemini_api(
                f'Classify this message: "{message}"',
                system_instruction=CLASSIFIER_INSTRUCTION,
                response_schema=get_classification_schema(),
                temperature=0,  # Deterministic for structured output
            )
        except Exception as e:
            logger.exception(f"[IntentClassifier] LLM call raised: {e}")
            return None
        llm_duration = (time.time() - llm_start) * 1000

        if trace:
            trace.add_event(
                TraceEventType.LLM_CALL,
                agent="intent_classifier",
                data={"purpose": "classify_intent"},
                duration_ms=llm_duration,
            )

        if not is_valid_llm_response(response):
            logger.warning(f"[IntentClassifier] Unusable LLM response: {(response or 'None')[:200]}")
            return None

        return self._parse_response(message, response)

    def _parse_response(self, message: str, response: str) -> Optional[CFORequest]:
        """Validate the model's JSON against CFORequest; None on any violation."""
        try:
            data = json.loads(strip_code_fence(response))
            if not isinstance(data, dict):
                raise TypeError(f"expected an object, got {type(data).__name__}")

            required = data.get("required_agents") or []
            if not isinstance(required, list):
                raise TypeError(f"required_agents must be a list, got {type(required).__name__}")
            raw_entities = data.get("entities") or {}
            if not isinstance(raw_entities, dict):
                raise TypeError(f"entities must be an object, got {type(raw_entities).__name__}")

            agents = _dedupe(
                name for name in required if isinstance(name, str) and name in AGENT_NAMES
            ) or [DEFAULT_AGENT]

            entities = {k: v for k, v in raw_entities.items() if v is not None}

            request = CFORequest(
                user_message=message,
                intent=data["intent"],
                entities=ExtractedEntities(**entities),
                required_agents=agents,
                reasoning=data.get("reasoning"),
                confidence=data.get("confidence", FALLBACK_CONFIDENCE),
                source="llm",
            )
        except json.JSONDecodeError as e:
            logger.error(f"[IntentClassifier] JSON decode error: {e}")
            return None
        except (KeyError, TypeError, ValidationError) as e:
            logger.error(f"[IntentClassifier] Response violates schema: {e}")
            return None

        logger.info(
            f"[IntentClassifier] LLM intent={request.intent} agents={request.required_agents} "
            f"confidence={request.confidence:.2f}"
        )
        return request

    def fallback_classify(self, message: str) -> CFORequest:
        """Deterministic keyword routing.

        Rules are evaluated independently, so one message may require
        several agents. The returned agent list is already deduplicated.
        """
        lowered = message.lower()
        matched = [rule for rule in self.rules if rule.matches(lowered)]

        if matched:
            intent = matched[0].intent
            agents = _dedupe(agent for rule in matched for agent in rule.agents)
            reasoning = "Keyword match: " + ", ".join(rule.intent.value for rule in matched)
        else:
            intent = Intent.GENERAL
            agents = [DEFAULT_AGENT]
            reasoning = "No keyword matched, defaulting to bookkeeping"

        logger.info(f"[IntentClassifier] Fallback intent={intent.value} agents={agents}")
        return CFORequest(
            user_message=message,
            intent=intent,
            entities=extract_entities(message),
            required_agents=agents,
            reasoning=reasoning,
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
        )
