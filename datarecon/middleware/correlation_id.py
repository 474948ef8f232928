"""
Correlation ID Middleware
Tags every request (and the runs it triggers) with a correlation ID
"""

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from request context.

    Returns:
        str: The correlation ID or 'none' if not available
    """
    return correlation_id.get() or 'none'
