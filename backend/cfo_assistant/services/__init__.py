from .agents import CFOOrchestrator, get_orchestrator, get_rate_limit_status
