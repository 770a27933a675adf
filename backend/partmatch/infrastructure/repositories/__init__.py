"""SQLAlchemy implementations of the matching ports."""

from .catalog_repository import SqlCatalogProvider
from .training_repository import SqlTrainingStore

__all__ = [
    "SqlCatalogProvider",
    "SqlTrainingStore",
]
