"""
Integration tests for Lysis.

This package contains end-to-end tests that run the full Lysis service
over a provider that routes requests by system instruction.

Test Modules:
    - test_orchestrator_pipeline: Delegation, recovery and runtime signals
"""

__all__ = [
    "test_orchestrator_pipeline",
]
