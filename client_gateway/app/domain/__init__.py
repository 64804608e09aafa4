"""
Cross-cutting domain helpers (optimistic mutations).
"""

from .optimistic import OptimisticUpdater, VersionedState, perform_optimistic_update

__all__ = ["OptimisticUpdater", "VersionedState", "perform_optimistic_update"]
