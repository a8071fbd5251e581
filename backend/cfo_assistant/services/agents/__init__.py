"""Multi-agent CFO assistant.

The LLM only routes; every figure comes from the database through the
domain agents.

Main entry point:
    CFOOrchestrator(db).process_message(message) -> Dict

Architecture:
    CFOOrchestrator
    ├── IntentClassifier (LLM, keyword fallback) → CFORequest
    └── Domain agents (Python)
        ├── BookkeepingAgent
        ├── InvoicingAgent
        ├── ReportingAgent
        └── ReceiptsAgent
"""

from .orchestrator import CFOOrchestrator, get_orchestrator
from .classifier import IntentClassifier
from .llm import get_rate_limit_status

__all__ = [
    "CFOOrchestrator",
    "IntentClassifier",
    "get_orchestrator",
    "get_rate_limit_status",
]
