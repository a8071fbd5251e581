"""Agent protocol, shared base class and the operation rule table."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from ...schemas.agents.task import AgentResponse, AgentTask, AgentType

logger = logging.getLogger(__name__)


@runtime_checkable
class Agent(Protocol):
    """Capability contract every registrable agent satisfies."""

    name: str
    type: AgentType
    capabilities: List[str]
    is_active: bool

    async def process_task(self, task: AgentTask) -> AgentResponse:
        """Run one task and return a well-formed response.

        Args:
            task: The task to execute; only task.description and task.input are read

        Returns:
            AgentResponse, failed responses carry no data
        """
        ...


@dataclass(frozen=True)
class OperationRule:
    """One row of an ordered keyword table: any keyword present selects the tag."""
    keywords: Sequence[str]
    tag: str

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


def classify_operation(description: str, rules: Sequence[OperationRule], default: str) -> str:
    """First matching rule wins; no match selects the default operation."""
    text = (description or "").lower()
    for rule in rules:
        if rule.matches(text):
            return rule.tag
    return default


class BaseAgent(ABC):
    """Base class for the domain agents.

    Subclasses declare their rule table and map each tag to a coroutine
    method in `operations`. process_task classifies the task description,
    runs the operation and converts any exception into a failed response.
    """

    name: str = ""
    type: AgentType
    capabilities: List[str] = []
    operation_rules: Sequence[OperationRule] = ()
    default_operation: str = "overview"
    # Localised prefix for failure messages, per operation tag
    error_messages: Dict[str, str] = {}

    def __init__(self, db: AsyncSession, is_active: bool = True):
        self.db = db
        self.is_active = is_active

    @property
    def log_prefix(self) -> str:
        return f"[{self.name.replace(' ', '')}]"

    @abstractmethod
    def operations(self) -> Dict[str, Callable[[AgentTask], Awaitable[AgentResponse]]]:
        """Map of operation tag to handler."""
        pass

    def determine_operation(self, description: str) -> str:
        return classify_operation(description, self.operation_rules, self.default_operation)

    async def process_task(self, task: AgentTask) -> AgentResponse:
        operation = self.determine_operation(task.description)
        handler = self.operations().get(operation)
        if handler is None:
            return self._failure(operation, f"Unknown operation: {operation}")

        start_time = time.time()
        logger.info(f"{self.log_prefix} Running '{operation}' for task {task.id}")
        try:
            response = await handler(task)
        except Exception as e:
            logger.exception(f"{self.log_prefix} Operation '{operation}' failed: {e}")
            await self._rollback()
            return self._failure(operation, str(e))

        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"{self.log_prefix} '{operation}' finished in {duration_ms:.0f}ms (success={response.success})")
        return response

    def _failure(self, operation: str, error: str) -> AgentResponse:
        prefix = self.error_messages.get(operation, "Fel vid bearbetning")
        return AgentResponse(success=False, data=None, message=f"{prefix}: {error}")

    async def _rollback(self) -> None:
        # A failed statement leaves the session unusable until rolled back
        try:
            await self.db.rollback()
        except Exception as e:
            logger.warning(f"{self.log_prefix} Rollback failed: {e}")

    @staticmethod
    def _compact(items: List[Optional[str]]) -> List[str]:
        """Drop the None placeholders used for conditional insights and suggestions."""
        return [item for item in items if item]

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value if isinstance(self.type, AgentType) else self.type,
            "is_active": self.is_active,
            "capabilities": list(self.capabilities),
        }
