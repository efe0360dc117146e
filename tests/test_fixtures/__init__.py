"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .cache_factory import CacheTestFactory, GatedRemoteTier, quota_table
from .request_factory import RequestFactory, make_request

__all__ = ["CacheTestFactory", "GatedRemoteTier", "RequestFactory", "make_request", "quota_table"]
