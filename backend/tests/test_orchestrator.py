"""
Test the CFO orchestrator: registry, dispatch order, failure isolation and aggregation.
"""

import asyncio
import logging
from unittest.mock import AsyncMock, Mock

import pytest

from cfo_assistant.schemas.agents import AgentResponse, AgentType, CFORequest, Intent
from cfo_assistant.services.agents import CFOOrchestrator, IntentClassifier
from cfo_assistant.services.agents.base import Agent
from cfo_assistant.services.agents.orchestrator import RESPONSE_TEMPLATES


def make_agent(name, agent_type=AgentType.BOOKKEEPING, is_active=True, response=None, delay=0.0, error=None):
    """Mock agent satisfying the Agent protocol."""
    agent = Mock()
    agent.name = name
    agent.type = agent_type
    agent.capabilities = [f"{name} capability"]
    agent.is_active = is_active

    async def process_task(task):
        await asyncio.sleep(delay)
        if error is not None:
            raise error
        return response or AgentResponse(
            success=True,
            data={"agent": name},
            message=f"{name} done",
            insights=[f"{name} insight"],
        )

    agent.process_task = AsyncMock(side_effect=process_task)
    return agent


def classifier_returning(*agent_names, intent=Intent.ANALYSIS, confidence=0.9):
    """Classifier stub whose classify() always yields the given agents."""
    classifier = Mock(spec=IntentClassifier)
    classifier.classify = AsyncMock(side_effect=lambda message, trace=None: CFORequest(
        user_message=message,
        intent=intent,
        required_agents=list(agent_names),
        confidence=confidence,
        source="llm",
    ))
    return classifier


class TestRegistry:
    def test_mock_agent_satisfies_protocol(self):
        assert isinstance(make_agent("A"), Agent)

    def test_registering_same_name_twice_keeps_latest(self):
        first, second = make_agent("A"), make_agent("A")
        orchestrator = CFOOrchestrator(agents=[first])

        orchestrator.register_agent(second)

        assert len(orchestrator.agents) == 1
        assert orchestrator.agents["A"] is second

    def test_no_session_means_no_default_agents(self):
        assert CFOOrchestrator().agents == {}

    def test_default_agents_registered_with_session(self):
        orchestrator = CFOOrchestrator(db=Mock())

        assert set(orchestrator.agents) == {
            "Bookkeeping Agent", "Invoicing Agent", "Reporting Agent", "Receipts Agent",
        }

    def test_agent_status(self):
        orchestrator = CFOOrchestrator(agents=[make_agent("A", AgentType.INVOICING, is_active=False)])

        status = orchestrator.get_agent_status()

        assert status == [{
            "name": "A",
            "type": "invoicing",
            "is_active": False,
            "capabilities": ["A capability"],
            "active_tasks": 0,
        }]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_activities_follow_required_order(self):
        # Slowest first: order must come from the request, not from completion time
        agents = [make_agent("A", delay=0.03), make_agent("B", delay=0.0), make_agent("C", delay=0.01)]
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A", "B", "C"), agents=agents)

        result = await orchestrator.process_message("anything")

        assert [a["agent"] for a in result["agent_activities"]] == ["A", "B", "C"]
        assert result["insights"] == ["A insight", "B insight", "C insight"]

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self):
        agents = [make_agent("A"), make_agent("B", error=RuntimeError("database down")), make_agent("C")]
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A", "B", "C"), agents=agents)

        result = await orchestrator.process_message("anything")

        statuses = {a["agent"]: a["status"] for a in result["agent_activities"]}
        assert statuses == {"A": "completed", "B": "failed", "C": "completed"}
        failed = result["agent_activities"][1]
        assert failed["result"] == {"error": "database down"}
        assert "B insight" not in result["insights"]

    @pytest.mark.asyncio
    async def test_unsuccessful_response_becomes_failed_activity(self):
        failing = make_agent("A", response=AgentResponse(
            success=False, message="Fel vid bearbetning: nope", insights=["ignored"],
        ))
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A"), agents=[failing])

        result = await orchestrator.process_message("anything")

        activity = result["agent_activities"][0]
        assert activity["status"] == "failed"
        assert activity["result"] == {"error": "Fel vid bearbetning: nope"}
        assert result["insights"] == []

    @pytest.mark.asyncio
    async def test_inactive_and_unknown_agents_are_skipped(self):
        inactive = make_agent("B", is_active=False)
        agents = [make_agent("A"), inactive]
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A", "B", "Ghost Agent"), agents=agents)

        result = await orchestrator.process_message("anything")

        assert [a["agent"] for a in result["agent_activities"]] == ["A"]
        inactive.process_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_agents_run_once(self):
        agent = make_agent("A")
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A", "A"), agents=[agent])

        result = await orchestrator.process_message("anything")

        assert len(result["agent_activities"]) == 1
        agent.process_task.assert_called_once()

    @pytest.mark.asyncio
    async def test_task_shape(self):
        agent = make_agent("Invoicing Agent", AgentType.INVOICING)
        classifier = IntentClassifier(use_llm=False)
        orchestrator = CFOOrchestrator(classifier=classifier, agents=[agent])

        await orchestrator.process_message("create a new invoice for Joakim, 12000 SEK")

        task = agent.process_task.call_args.args[0]
        assert task.type == "invoicing"
        assert task.description == 'Processing invoice-related request: "create a new invoice for Joakim, 12000 SEK"'
        assert task.input["user_message"] == "create a new invoice for Joakim, 12000 SEK"
        assert task.input["client_name"] == "joakim"
        assert task.input["amount"] == 12000.0

    @pytest.mark.asyncio
    async def test_tasks_are_closed(self):
        agents = [make_agent("A"), make_agent("B", error=ValueError("bad"))]
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A", "B"), agents=agents)

        await orchestrator.process_message("anything")

        tasks = orchestrator.get_active_tasks()
        assert [t.status for t in tasks] == ["completed", "failed"]
        assert all(t.completed_at is not None for t in tasks)

    @pytest.mark.asyncio
    async def test_response_is_intent_template(self):
        agents = [make_agent("A", error=RuntimeError("x"))]
        orchestrator = CFOOrchestrator(
            classifier=classifier_returning("A", intent=Intent.REPORTING, confidence=0.7), agents=agents,
        )

        result = await orchestrator.process_message("anything")

        assert result["response"] == RESPONSE_TEMPLATES["reporting"]
        assert result["intent"] == "reporting"
        assert result["confidence"] == 0.7
        assert result["trace_id"]
        assert result["suggestions"]

    @pytest.mark.asyncio
    async def test_trace_summary_is_logged_under_trace_id(self, caplog):
        agents = [make_agent("A"), make_agent("B", error=RuntimeError("database down"))]
        orchestrator = CFOOrchestrator(classifier=classifier_returning("A", "B", "Ghost Agent"), agents=agents)
        caplog.set_level(logging.DEBUG, logger="cfo_assistant.services.agents.orchestrator")

        result = await orchestrator.process_message("anything")

        [summary] = [r.getMessage() for r in caplog.records if f"Trace {result['trace_id']}" in r.getMessage()]
        assert "Tasks: 1 completed, 1 failed" in summary
        assert "Success: False" in summary
        assert "agent_skipped Ghost Agent" in summary


class TestFallbackEndToEnd:
    @pytest.mark.asyncio
    async def test_hello_defaults_to_bookkeeping(self):
        bookkeeping = make_agent("Bookkeeping Agent")
        invoicing = make_agent("Invoicing Agent", AgentType.INVOICING)
        orchestrator = CFOOrchestrator(classifier=IntentClassifier(), agents=[bookkeeping, invoicing])

        result = await orchestrator.process_message("hello")

        assert result["intent"] == "general"
        assert result["confidence"] == 0.5
        assert [a["agent"] for a in result["agent_activities"]] == ["Bookkeeping Agent"]
        invoicing.process_task.assert_not_called()
