"""
Task subsystem.

Components:
- task_store.py: SQLite-backed storage with soft delete, restore and subtasks
- staging.py: undoable destructive mutations (MutationStaging, StagedDelete)
"""
