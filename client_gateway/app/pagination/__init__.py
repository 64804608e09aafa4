"""
Pagination helpers layered on the caching gateway.
"""

from .aggregator import AggregatedResult, PagedResult, PaginationAggregator

__all__ = ["AggregatedResult", "PagedResult", "PaginationAggregator"]
