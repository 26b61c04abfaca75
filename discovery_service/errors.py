"""
Error taxonomy for the discovery engine.

  DataAccessError   — a repository query failed. Caught by each recommendation
                      strategy, which then falls back to the next one.
  CacheUnavailable  — the cache store is missing or unreachable. Always read
                      as a cache miss.
  InvalidInput      — malformed direct input from the caller. The only error
                      that reaches the HTTP client (as a 400).
"""


class DiscoveryError(Exception):
    """Base class for errors raised inside the discovery service."""


class DataAccessError(DiscoveryError):
    pass


class CacheUnavailable(DiscoveryError, RuntimeError):
    pass


class InvalidInput(DiscoveryError, ValueError):
    pass
