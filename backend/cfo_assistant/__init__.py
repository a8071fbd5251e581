"""AI CFO assistant: chat-driven bookkeeping, invoicing, reporting and receipts."""

__version__ = "0.1.0"
