"""Execution trace schemas for debugging and observability."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import uuid


class TraceEventType(str, Enum):
    """Types of events recorded while a message is processed."""
    INTENT_CLASSIFIED = "intent_classified"
    FALLBACK_TRIGGERED = "fallback_triggered"
    LLM_CALL = "llm_call"
    AGENT_SKIPPED = "agent_skipped"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"


class TraceEvent(BaseModel):
    """A single event in the execution trace."""
    timestamp: datetime = Field(default_factory=datetime.now)
    event_type: TraceEventType
    agent: Optional[str] = None
    task_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[float] = None

    class Config:
        use_enum_values = True


class ExecutionTrace(BaseModel):
    """Trace of one process_message call. Diagnostic only, never read for control flow."""
    trace_id: str = Field(default_factory=lambda: str(uuid.uuid4())[:12])
    user_message: str
    intent: Optional[str] = None
    events: List[TraceEvent] = Field(default_factory=list)
    total_duration_ms: float = 0
    llm_calls: int = 0
    tasks_executed: int = 0
    tasks_failed: int = 0
    success: bool = False
    started_at: datetime = Field(default_factory=datetime.now)

    def add_event(
        self,
        event_type: TraceEventType,
        agent: Optional[str] = None,
        task_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
    ) -> None:
        """Add an event to the trace."""
        self.events.append(TraceEvent(
            event_type=event_type,
            agent=agent,
            task_id=task_id,
            data=data or {},
            duration_ms=duration_ms,
        ))

        if event_type == TraceEventType.LLM_CALL:
            self.llm_calls += 1
        elif event_type == TraceEventType.TASK_COMPLETED:
            self.tasks_executed += 1
        elif event_type == TraceEventType.TASK_FAILED:
            self.tasks_failed += 1

    def finalize(self, success: bool = False) -> None:
        """Stamp total duration and overall outcome."""
        self.success = success
        self.total_duration_ms = (datetime.now() - self.started_at).total_seconds() * 1000


def format_trace_summary(trace: ExecutionTrace) -> str:
    """Format a trace into a human-readable summary.

    Args:
        trace: ExecutionTrace to summarize

    Returns:
        Formatted summary string, one line per event after the totals
    """
    lines = [
        f"Trace {trace.trace_id} ({trace.user_message[:50]}) intent={trace.intent}",
        f"  Duration: {trace.total_duration_ms:.0f}ms",
        f"  LLM calls: {trace.llm_calls}",
        f"  Tasks: {trace.tasks_executed} completed, {trace.tasks_failed} failed",
        f"  Success: {trace.success}",
    ]
    for event in trace.events:
        agent = f" {event.agent}" if event.agent else ""
        lines.append(f"    - {event.event_type}{agent} {event.data}")

    return "\n".join(lines)
