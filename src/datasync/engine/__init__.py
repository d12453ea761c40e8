"""
Sync engine for executing data synchronization runs.
"""

from .baseline import BaselineStore, InMemoryBaselineStore, JsonFileBaselineStore
from .comparator import Comparator
from .executor import TransferExecutor, classify_transfer_error
from .filters import KeyFilter
from .sync import EngineState, SyncEngine

__all__ = [
    "SyncEngine",
    "EngineState",
    "Comparator",
    "TransferExecutor",
    "classify_transfer_error",
    "KeyFilter",
    "BaselineStore",
    "InMemoryBaselineStore",
    "JsonFileBaselineStore",
]
