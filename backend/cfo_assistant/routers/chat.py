from fastapi import APIRouter, Depends
from typing import List

from ..services.agents import CFOOrchestrator, get_orchestrator, get_rate_limit_status
from ..schemas.chat import ChatRequest, ChatResponse, AgentStatus, RateLimitStatus

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.post("/ask", response_model=ChatResponse)
async def ask_cfo(
    chat: ChatRequest,
    orchestrator: CFOOrchestrator = Depends(get_orchestrator)
):
    """
    Send a message to the AI CFO assistant.

    The message is classified into an intent (Gemini with a keyword
    fallback) and dispatched to one or more domain agents. Agent failures
    show up as failed entries in `agent_activities`; the call itself
    does not fail because of them.

    **Example queries:**
    - Invoicing: "Create a new invoice for Joakim, 12000 SEK"
    - Receipts: "Show me all receipts pending approval"
    - Bookkeeping: "Categorize this month's transactions"
    - Reporting: "Give me the KPI dashboard"
    - Analysis: "How is our cash flow and profit?"

    **Response:**
    - `response`: short reply for the classified intent
    - `agent_activities`: one entry per agent that ran, with its result
    - `insights` / `suggestions`: merged from the agents, in dispatch order
    """
    result = await orchestrator.process_message(chat.message)
    return ChatResponse(**result)


@router.get("/agents", response_model=List[AgentStatus])
async def list_agents(orchestrator: CFOOrchestrator = Depends(get_orchestrator)):
    """Registered agents with their capabilities and activity."""
    return [AgentStatus(**status) for status in orchestrator.get_agent_status()]


@router.get("/rate-limit", response_model=RateLimitStatus)
async def get_rate_limit():
    """
    Get current rate limit status for LLM API calls.

    Returns daily and per-minute remaining requests.
    """
    return RateLimitStatus(**get_rate_limit_status())
