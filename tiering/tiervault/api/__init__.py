"""
API module for TierVault.

This module provides the HTTP read API (aiohttp):
- GET /records/{record_id}/{created_date}
- Health and dead-letter listing endpoints

Invariants:
    - Read responses are 200, 404 or 500 only (400 for malformed dates)
    - Internal tier distinctions are logged, never exposed
"""

from .http_server import HttpServer, create_http_app

__all__ = ["HttpServer", "create_http_app"]
