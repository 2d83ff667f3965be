"""
Meta sync package for metasync.

This package provides:
- Diffing of the catalog against a live schema
- Ordered application of the detected changes
- Invalidation of virtual columns that depend on removed columns
- Many to many derivation from junction tables
"""

from .applier import ChangeApplier
from .changes import MetaDiff, MetaDiffChange, MetaDiffType
from .diff import DiffComputer
from .hooks import AppEvent, AppHooks, SyncEvent
from .invalidation import DependentInvalidator
from .m2m import ManyToManyDeriver
from .service import MetaDiffService, SyncResult, SyncStatus

__all__ = [
    "ChangeApplier",
    "MetaDiff",
    "MetaDiffChange",
    "MetaDiffType",
    "DiffComputer",
    "AppEvent",
    "AppHooks",
    "SyncEvent",
    "DependentInvalidator",
    "ManyToManyDeriver",
    "MetaDiffService",
    "SyncResult",
    "SyncStatus",
]
