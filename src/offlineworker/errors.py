from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    STORE_OPEN_FAILED = "STORE_OPEN_FAILED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    VERSION_FETCH_FAILED = "VERSION_FETCH_FAILED"
    INSTALL_BATCH_FAILED = "INSTALL_BATCH_FAILED"
    RESOURCE_CACHE_FAILED = "RESOURCE_CACHE_FAILED"
    INVALID_STATE = "INVALID_STATE"


class WorkerError(Exception):
    """Raised by worker components for all expected failure conditions.

    Only ``INSTALL_BATCH_FAILED`` is allowed to escape the lifecycle hooks:
    it aborts installation and leaves the previous generation in control.
    Every other code is caught at the component boundary that raised it
    (store, version gate, interceptor) and degraded to an absent result.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable
