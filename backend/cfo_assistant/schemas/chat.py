from pydantic import BaseModel, Field
from typing import List, Optional

from .agents.task import AgentActivity


class ChatRequest(BaseModel):
    """Request to the chat endpoint."""
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    """Response from the chat endpoint."""
    response: str
    agent_activities: List[AgentActivity] = Field(default_factory=list)
    insights: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    intent: str
    confidence: float
    trace_id: Optional[str] = None


class AgentStatus(BaseModel):
    """Public view of a registered agent."""
    name: str
    type: str
    is_active: bool
    capabilities: List[str] = Field(default_factory=list)
    active_tasks: int = 0


class RateLimitStatus(BaseModel):
    daily_remaining: int
    minute_remaining: int
    daily_limit: int
    minute_limit: int
    error: Optional[str] = None
