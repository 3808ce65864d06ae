"""storyindex database layer.

SqliteRepository and SqliteVecIndex are imported from their modules
directly; they depend on storyindex.services.interfaces, which in turn
imports storyindex.db.models.
"""

from storyindex.db.connection import Database
from storyindex.db.migrations import MIGRATIONS, run_migrations
from storyindex.db.schema import initialize

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
