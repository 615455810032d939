"""Handler layer for HTTP endpoints.

Handlers depend on services (business logic), not directly on repositories,
except where an operational check has to bypass the service.

Architecture:
    Handler -> Service -> Repository
    (HTTP)  -> (Business) -> (Data Access)
"""

from .cache_handler import CacheHandler
from .health_handler import HealthHandler

__all__ = [
    "CacheHandler",
    "HealthHandler",
]
