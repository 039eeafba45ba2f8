"""XnScore API middleware package."""

from xnscore.api.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
