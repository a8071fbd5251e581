"""Agent system schemas."""

from .task import (
    AgentType,
    TaskStatus,
    Intent,
    AgentTask,
    AgentResponse,
    ExtractedEntities,
    CFORequest,
    AgentActivity,
)
from .trace import (
    TraceEventType,
    TraceEvent,
    ExecutionTrace,
    format_trace_summary,
)

__all__ = [
    "AgentType",
    "TaskStatus",
    "Intent",
    "AgentTask",
    "AgentResponse",
    "ExtractedEntities",
    "CFORequest",
    "AgentActivity",
    "TraceEventType",
    "TraceEvent",
    "ExecutionTrace",
    "format_trace_summary",
]
