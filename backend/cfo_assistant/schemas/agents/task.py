"""Task and response schemas shared by the orchestrator and the domain agents."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, model_validator
import uuid


class AgentType(str, Enum):
    """Domain tag carried by every agent and every task."""
    BOOKKEEPING = "bookkeeping"
    INVOICING = "invoicing"
    REPORTING = "reporting"
    RECEIPTS = "receipts"
    ANALYSIS = "analysis"


class TaskStatus(str, Enum):
    """Lifecycle of a task: created pending, processing while the agent runs, then terminal."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Intent(str, Enum):
    """Classified purpose of a user message."""
    INVOICING = "invoicing"
    BOOKKEEPING = "bookkeeping"
    REPORTING = "reporting"
    RECEIPTS = "receipts"
    ANALYSIS = "analysis"
    GENERAL = "general"


class AgentTask(BaseModel):
    """A unit of work submitted to exactly one agent.

    The orchestrator owns the task; an agent only reads it for the
    duration of a single process_task call.
    """
    id: str = Field(default_factory=lambda: f"task_{uuid.uuid4().hex[:12]}")
    type: AgentType
    description: str
    input: Dict[str, Any] = Field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[Any] = None
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class AgentResponse(BaseModel):
    """Uniform result of every agent operation.

    A failed response never carries data; the message names the cause.
    """
    success: bool
    data: Optional[Any] = None
    message: str
    insights: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _no_data_on_failure(self) -> "AgentResponse":
        if not self.success and self.data is not None:
            raise ValueError("A failed AgentResponse must not carry data")
        return self


class ExtractedEntities(BaseModel):
    """Values pulled out of the user's message. All optional."""
    client_name: Optional[str] = None
    amount: Optional[float] = None
    invoice_number: Optional[str] = None
    action: Optional[str] = None  # create, view, update, delete, analyze

    def as_input(self) -> Dict[str, Any]:
        """Non-empty entities, ready to merge into a task input bag."""
        return self.model_dump(exclude_none=True)


class CFORequest(BaseModel):
    """Output of the intent classifier."""
    user_message: str
    intent: Intent
    entities: ExtractedEntities = Field(default_factory=ExtractedEntities)
    required_agents: List[str] = Field(min_length=1)
    reasoning: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    source: str = "fallback"  # "llm" or "fallback"

    class Config:
        use_enum_values = True


class AgentActivity(BaseModel):
    """One entry of the per-request activity log."""
    agent: str
    action: str
    status: TaskStatus
    result: Optional[Any] = None

    class Config:
        use_enum_values = True
