"""Multi-agent orchestration core for the narrative adventure game.

This package contains the deterministic rules engine, the structured-output
recovery parser, the agent loop and role policies, the message bus and
orchestrator, the interaction log collector, and the thin HTTP surface.
"""
