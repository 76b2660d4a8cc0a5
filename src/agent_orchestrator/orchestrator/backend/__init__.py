"""Executor implementations.

``CliAgentExecutor`` depends on application settings and is imported from
``agent_orchestrator.orchestrator.backend.cli_backend`` directly.
"""

from agent_orchestrator.orchestrator.backend.base import AgentExecutor
from agent_orchestrator.orchestrator.backend.echo import EchoExecutor

__all__ = [
    "AgentExecutor",
    "EchoExecutor",
]
