"""Autonomous agent task scheduling: persistent queue, provider failover, execution loop."""

__version__ = "0.1.0"
