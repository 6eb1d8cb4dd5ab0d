"""AI agents package."""

from finledger.agents.ai_agents import (
    AgentError,
    CategorizationAgent,
    CategoryPrediction,
    StatementParsingAgent,
    parse_category_response,
    parse_records_response,
)

__all__ = [
    "AgentError",
    "CategorizationAgent",
    "CategoryPrediction",
    "StatementParsingAgent",
    "parse_category_response",
    "parse_records_response",
]
