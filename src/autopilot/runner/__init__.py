"""Execution engine: per-agent polling loop, planning and step execution."""

from .engine import AgentRunner, RunnerConfig

__all__ = ["AgentRunner", "RunnerConfig"]
