"""
TaskFlow - Core Package
=======================

Configuration, persistence, and the workflow engine.
"""

from taskflow.core.config import settings
from taskflow.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]
