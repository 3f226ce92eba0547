"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, Recurrence, TaskRun, AgentState)
- recurrence.py: next-run computation for recurring tasks
- task_store.py: SQLite-backed storage + atomic claim + crash recovery
- task_api.py: small high-level helpers used by the rest of the app
"""
