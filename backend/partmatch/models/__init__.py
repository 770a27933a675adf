"""SQLAlchemy Models for partmatch"""

from .base import Base
from .catalog_entry import CatalogEntry
from .training_example import TrainingExample
from .competitor_alias import CompetitorAlias
from .match_decision import MatchDecisionEvent

__all__ = [
    "Base",
    "CatalogEntry",
    "TrainingExample",
    "CompetitorAlias",
    "MatchDecisionEvent",
]
