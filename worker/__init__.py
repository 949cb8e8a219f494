"""
Offline caching worker for the FindBook book-search application.

This package contains:
- Request classification into versioned cache partitions
- Cache-first, stale-while-revalidate and network-first strategies
- Cache lifecycle management (install, activate, cleanup)
- Background sync queue for offline mutations
- Push notification relay
"""

__version__ = "1.2.0"
