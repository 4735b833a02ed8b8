"""管理后台 HTTP 客户端。"""
from .query_client import ApiError, QueryClient, RetryPolicy, is_retryable

__all__ = ["ApiError", "QueryClient", "RetryPolicy", "is_retryable"]
