"""Domain agents, one per financial area."""

from .bookkeeping import BookkeepingAgent
from .invoicing import InvoicingAgent
from .receipts import ReceiptsAgent
from .reporting import ReportingAgent

__all__ = [
    "BookkeepingAgent",
    "InvoicingAgent",
    "ReceiptsAgent",
    "ReportingAgent",
]
