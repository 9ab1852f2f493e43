"""Deferred self-correction of rejected responses."""

from .store import PendingCorrectionStore, get_correction_store

__all__ = [
    "PendingCorrectionStore",
    "get_correction_store",
]
