# Expert chat agent
"""
Tool-augmented streaming chat for farmers.

Exports:
- Registry: tool definitions and argument validation
- ToolExecutor: weather, mandi prices, schemes and crop advice tools
- ExpertChatOrchestrator: first call, concurrent tools, streamed answer
"""
from .registry import ToolName, ToolRegistry, UnknownTool, InvalidArguments, default_registry
from .tools import ToolCall, ToolResult, ToolExecutor
from .orchestrator import (
    AgentReply,
    ExpertChatOrchestrator,
    TurnTimeout,
    create_orchestrator,
)

__all__ = [
    'ToolName',
    'ToolRegistry',
    'UnknownTool',
    'InvalidArguments',
    'default_registry',
    'ToolCall',
    'ToolResult',
    'ToolExecutor',
    'AgentReply',
    'ExpertChatOrchestrator',
    'TurnTimeout',
    'create_orchestrator',
]
