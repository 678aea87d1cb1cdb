"""Middleware package for the ShiftGuard API."""

from shiftguard.middleware.correlation import (
    CORRELATION_ID_HEADER,
    ORGANIZATION_ID_HEADER,
    CorrelationIdMiddleware,
)

__all__ = ["CORRELATION_ID_HEADER", "CorrelationIdMiddleware", "ORGANIZATION_ID_HEADER"]
