"""Upstream integrations.

Modules:
    agent_upstream: the upstream protocol and native tool registration
    http_agent: aiohttp upstream for SSE/NDJSON agent endpoints
"""

from .agent_upstream import AgentUpstream, NativeToolRegistration
from .http_agent import HttpAgentUpstream

__all__ = [
    "AgentUpstream",
    "NativeToolRegistration",
    "HttpAgentUpstream",
]
