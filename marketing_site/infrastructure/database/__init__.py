"""Database infrastructure with migrations."""

from .service import ProductionDatabaseService
from .migrations import MigrationManager, Migration

__all__ = [
    "ProductionDatabaseService",
    "MigrationManager",
    "Migration"
]
