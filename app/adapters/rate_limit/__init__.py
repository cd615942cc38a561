"""Rate limit storage adapters.

This package provides a small abstraction layer over the persistent store
holding sliding window records, so the limiter can run against an
in-memory store in tests and Redis in shared deployments without changes.
"""
