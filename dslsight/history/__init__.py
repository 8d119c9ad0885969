"""Rolling SNR and error counter histories with binary snapshots."""

from .bins import BinsConfig, BinsHistoryEngine
from .errors import ErrorsConfig, ErrorsHistoryEngine, counter_diff
from .storage import SnapshotError, truncate

__all__ = [
    "BinsConfig",
    "BinsHistoryEngine",
    "ErrorsConfig",
    "ErrorsHistoryEngine",
    "SnapshotError",
    "counter_diff",
    "truncate",
]
