"""partmatch: tiered hybrid matching of line-item text to catalog entries."""

__version__ = "0.1.0"
