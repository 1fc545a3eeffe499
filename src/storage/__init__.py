"""
Storage Module

SQLite persistence for tasks, evaluations, experiments and flow traces.
"""

from .store import SQLiteStore

__all__ = ["SQLiteStore"]
