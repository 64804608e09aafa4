"""
HTTP adapters for the backend REST API.
"""

from .dispatcher import ApiResponse, RequestDispatcher, TokenProvider

__all__ = ["ApiResponse", "RequestDispatcher", "TokenProvider"]
