"""Agents: the tool loop engine and its manager and worker configurations."""

from lysis.agents.manager import Manager
from lysis.agents.tool_loop import LoopSpec, ToolLoop, synthesize_file_call
from lysis.agents.tools import (
    MANAGER_TOOLS,
    WORKER_TOOLS,
    ToolDispatcher,
    parse_tool_call,
)
from lysis.agents.worker import Worker

__all__ = [
    "ToolLoop",
    "LoopSpec",
    "synthesize_file_call",
    "ToolDispatcher",
    "parse_tool_call",
    "MANAGER_TOOLS",
    "WORKER_TOOLS",
    "Manager",
    "Worker",
]
