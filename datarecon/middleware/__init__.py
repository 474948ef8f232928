"""
Middleware Module
ASGI middleware for request processing
"""

from datarecon.middleware.correlation_id import CorrelationIdMiddleware, get_correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]
