"""
Middleware package for request/response processing.
"""
from .performance import PerformanceMonitoringMiddleware
from .request_logging import RequestLoggingMiddleware

__all__ = ["PerformanceMonitoringMiddleware", "RequestLoggingMiddleware"]
