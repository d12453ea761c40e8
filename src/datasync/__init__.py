"""
datasync: reconcile a source data set against a destination in discrete runs.
"""

from .engine import SyncEngine
from .models import SyncConfig, SyncResult
from .version import __version__


def run_sync(config: SyncConfig, **engine_options) -> SyncResult:
    """Run one sync with a fresh engine and return its result."""
    return SyncEngine(**engine_options).run_sync(config)


__all__ = [
    "SyncEngine",
    "SyncConfig",
    "SyncResult",
    "run_sync",
    "__version__",
]
