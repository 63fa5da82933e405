"""
Lysis - Orchestration core for a manager agent and two coding workers.

Serializes every upstream generation call through one scheduler, survives
per-key rate limiting with multi-key rotation and an emergency-key recovery
protocol, and drives bounded, self-healing tool-calling loops.

Basic Usage:
    from lysis import Lysis

    async with Lysis() as app:
        await app.handle_user_message("Build a todo app", on_text=print)
        await app.wait_idle()
"""

from lysis.core.config import LysisConfig
from lysis.core.events import EventType
from lysis.core.orchestrator import Lysis
from lysis.core.types import LoopOutcome, LoopStatus, Priority, ProjectMode, Role, WorkerId
from lysis.keys.recovery import RecoverySuspension

__version__ = "0.1.0"
__all__ = [
    # Main class
    "Lysis",
    # Config
    "LysisConfig",
    # Types
    "Role",
    "WorkerId",
    "ProjectMode",
    "Priority",
    "LoopStatus",
    "LoopOutcome",
    "EventType",
    "RecoverySuspension",
    # Version
    "__version__",
]
