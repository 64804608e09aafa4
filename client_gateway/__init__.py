"""
Session-aware, TTL-based caching API gateway for the social app's backend.
"""

__version__ = "1.0.0"
