"""Orchestrator for the CFO agent system.

The orchestrator coordinates the flow:
1. IntentClassifier turns the message into intent + required agents
2. One AgentTask per required agent, dispatched sequentially in order
3. Activities and insights are merged into a single reply
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ...database import get_db
from ...schemas.agents.task import (
    AgentActivity,
    AgentResponse,
    AgentTask,
    AgentType,
    CFORequest,
    TaskStatus,
)
from ...schemas.agents.trace import ExecutionTrace, TraceEventType, format_trace_summary
from .base import Agent
from .classifier import IntentClassifier
from .domain import BookkeepingAgent, InvoicingAgent, ReceiptsAgent, ReportingAgent

logger = logging.getLogger(__name__)

# Top-level reply per intent, independent of agent outcomes:
# details and failures travel in agent_activities and insights.
RESPONSE_TEMPLATES: Dict[str, str] = {
    "bookkeeping": "I've analyzed your bookkeeping data and found some key insights.",
    "invoicing": "I've reviewed your invoicing and payment information.",
    "reporting": "I've generated comprehensive financial reports and analysis.",
    "receipts": "I've gone through your receipts and expense documentation.",
    "analysis": "I've performed a detailed financial analysis across multiple areas.",
    "general": "I've coordinated with my specialized agents to address your request.",
}

FOLLOW_UP_SUGGESTIONS: Dict[str, List[str]] = {
    "bookkeeping": [
        "Would you like me to categorize recent transactions?",
        "Should I flag any unusual expenses for review?",
        "Want to set up automatic categorization rules?",
    ],
    "invoicing": [
        "Shall I create a recurring invoice template?",
        "Would you like payment reminders set up?",
        "Should I analyze payment patterns?",
    ],
    "reporting": [
        "Want me to schedule monthly financial summaries?",
        "Should I create a cash flow forecast?",
        "Would you like tax preparation insights?",
    ],
    "receipts": [
        "Should I auto-approve small receipts?",
        "Would you like an expense analysis for the last 30 days?",
    ],
}
DEFAULT_SUGGESTIONS = [
    "How else can I help with your financial management?",
    "Would you like me to provide more specific insights?",
]

TASK_DESCRIPTIONS: Dict[str, str] = {
    AgentType.BOOKKEEPING.value: 'Analyzing {intent} request: "{message}"',
    AgentType.INVOICING.value: 'Processing invoice-related request: "{message}"',
    AgentType.REPORTING.value: 'Preparing financial report for: "{message}"',
    AgentType.RECEIPTS.value: 'Handling receipt request: "{message}"',
}


class CFOOrchestrator:
    """Owns the agent registry and turns one user message into one reply.

    Built per request with the request's database session. Agents run
    one after another; a sibling never sees another agent's output.
    """

    def __init__(
        self,
        db: Optional[AsyncSession] = None,
        classifier: Optional[IntentClassifier] = None,
        agents: Optional[Sequence[Agent]] = None,
    ):
        self.db = db
        self.classifier = classifier or IntentClassifier()
        self.agents: Dict[str, Agent] = {}
        self.active_tasks: Dict[str, AgentTask] = {}

        if agents is None:
            agents = self._default_agents()
        for agent in agents:
            self.register_agent(agent)

    def _default_agents(self) -> List[Agent]:
        if self.db is None:
            return []
        return [
            BookkeepingAgent(self.db),
            InvoicingAgent(self.db),
            ReportingAgent(self.db),
            ReceiptsAgent(self.db),
        ]

    def register_agent(self, agent: Agent) -> None:
        """Insert or replace the registry entry for agent.name. Last registration wins."""
        if agent.name in self.agents:
            logger.info(f"[Orchestrator] Replacing agent '{agent.name}'")
        self.agents[agent.name] = agent

    async def process_message(self, user_message: str) -> Dict[str, Any]:
        """Classify, dispatch and aggregate.

        Args:
            user_message: Raw chat input

        Returns:
            Dict with response, agent_activities, insights, suggestions, intent, confidence, trace_id
        """
        trace = ExecutionTrace(user_message=user_message)
        logger.info(f"[Orchestrator] Processing message: {user_message[:100]}")

        request = await self.classifier.classify(user_message, trace)
        trace.intent = request.intent
        trace.add_event(
            TraceEventType.INTENT_CLASSIFIED,
            agent="intent_classifier",
            data={
                "intent": request.intent,
                "required_agents": request.required_agents,
                "confidence": request.confidence,
                "source": request.source,
            },
        )

        activities: List[AgentActivity] = []
        insights: List[str] = []

        for agent_name in dict.fromkeys(request.required_agents):
            agent = self.agents.get(agent_name)
            if agent is None or not agent.is_active:
                reason = "not_registered" if agent is None else "inactive"
                logger.warning(f"[Orchestrator] Skipping agent '{agent_name}' ({reason})")
                trace.add_event(TraceEventType.AGENT_SKIPPED, agent=agent_name, data={"reason": reason})
                continue

            task = self._build_task(agent, request)
            activity, agent_insights = await self._run_task(agent, task, trace)
            activities.append(activity)
            insights.extend(agent_insights)

        failed = sum(1 for activity in activities if activity.status == TaskStatus.FAILED.value)
        trace.finalize(success=failed == 0)
        logger.info(
            f"[Orchestrator] Done intent={request.intent} agents={len(activities)} "
            f"failed={failed} in {trace.total_duration_ms:.0f}ms"
        )
        logger.debug(f"[Orchestrator] {format_trace_summary(trace)}")

        return self._make_response(request, activities, insights, trace)

    def _build_task(self, agent: Agent, request: CFORequest) -> AgentTask:
        agent_type = agent.type.value if isinstance(agent.type, AgentType) else agent.type
        template = TASK_DESCRIPTIONS.get(agent_type)
        if template:
            description = template.format(intent=request.intent, message=request.user_message)
        else:
            description = f"Processing {agent_type} task"

        task = AgentTask(
            type=agent_type,
            description=description,
            input={"user_message": request.user_message, **request.entities.as_input()},
            status=TaskStatus.PROCESSING,
        )
        self.active_tasks[task.id] = task
        return task

    async def _run_task(
        self,
        agent: Agent,
        task: AgentTask,
        trace: ExecutionTrace,
    ) -> Tuple[AgentActivity, List[str]]:
        """Invoke one agent; a raise becomes a failed activity instead of propagating."""
        start_time = time.time()
        trace.add_event(TraceEventType.TASK_STARTED, agent=agent.name, task_id=task.id)

        try:
            response: AgentResponse = await agent.process_task(task)
        except Exception as e:
            logger.exception(f"[Orchestrator] Agent '{agent.name}' raised: {e}")
            self._close_task(task, TaskStatus.FAILED, {"error": str(e)})
            trace.add_event(
                TraceEventType.TASK_FAILED,
                agent=agent.name,
                task_id=task.id,
                data={"error": str(e)},
                duration_ms=(time.time() - start_time) * 1000,
            )
            activity = AgentActivity(
                agent=agent.name,
                action=task.description,
                status=TaskStatus.FAILED,
                result={"error": str(e)},
            )
            return activity, []

        duration_ms = (time.time() - start_time) * 1000
        if response.success:
            result = response.data
            status = TaskStatus.COMPLETED
            event_type = TraceEventType.TASK_COMPLETED
        else:
            result = {"error": response.message}
            status = TaskStatus.FAILED
            event_type = TraceEventType.TASK_FAILED

        self._close_task(task, status, result)
        trace.add_event(
            event_type,
            agent=agent.name,
            task_id=task.id,
            data={"success": response.success},
            duration_ms=duration_ms,
        )

        activity = AgentActivity(agent=agent.name, action=task.description, status=status, result=result)
        return activity, list(response.insights) if response.success else []

    def _close_task(self, task: AgentTask, status: TaskStatus, result: Any) -> None:
        task.status = status.value
        task.result = result
        task.completed_at = datetime.now()

    def get_active_tasks(self) -> List[AgentTask]:
        """Tasks recorded by this orchestrator. Advisory only."""
        return list(self.active_tasks.values())

    def get_agent_status(self) -> List[Dict[str, Any]]:
        statuses = []
        for agent in self.agents.values():
            agent_type = agent.type.value if isinstance(agent.type, AgentType) else agent.type
            statuses.append({
                "name": agent.name,
                "type": agent_type,
                "is_active": agent.is_active,
                "capabilities": list(agent.capabilities),
                "active_tasks": sum(
                    1 for task in self.active_tasks.values()
                    if task.type == agent_type and task.status == TaskStatus.PROCESSING.value
                ),
            })
        return statuses

    def _make_response(
        self,
        request: CFORequest,
        activities: List[AgentActivity],
        insights: List[str],
        trace: ExecutionTrace,
    ) -> Dict[str, Any]:
        """Create a standard response dict matching the ChatResponse schema."""
        return {
            "response": RESPONSE_TEMPLATES.get(request.intent, RESPONSE_TEMPLATES["general"]),
            "agent_activities": [activity.model_dump() for activity in activities],
            "insights": insights,
            "suggestions": FOLLOW_UP_SUGGESTIONS.get(request.intent, DEFAULT_SUGGESTIONS),
            "intent": request.intent,
            "confidence": request.confidence,
            "trace_id": trace.trace_id,
        }


def get_orchestrator(db: AsyncSession = Depends(get_db)) -> CFOOrchestrator:
    """FastAPI dependency: one orchestrator per request, bound to its session."""
    return CFOOrchestrator(db)
