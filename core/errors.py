from __future__ import annotations


class MemoryServiceError(Exception):
    """Base class for errors raised by the memory service."""


class ValidationError(MemoryServiceError):
    """Malformed or out-of-policy input. The caller can fix it."""

    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(MemoryServiceError):
    """A required context, entry or alias does not exist."""

    code = "not_found"


class StoreUnavailableError(MemoryServiceError):
    """The backing database could not be reached."""

    code = "store_unavailable"


class ProtocolError(MemoryServiceError):
    """A JSON-RPC level failure with an explicit error code."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
