from .chat import ChatRequest, ChatResponse, AgentStatus, RateLimitStatus
