"""
Unit tests for Lysis core modules.

This package contains unit tests for:
- scheduler: priority ordering, pacing and failure isolation
- keypool / retry / recovery: rotation, backoff and suspensions
- tool_loop / tools: the model-tool conversation engine
- agents: manager and worker tool handlers
- workspace: filesystems, processes and progress
- providers: Gemini conversion and error mapping
- config, events, cli
"""
