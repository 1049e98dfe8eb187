from __future__ import annotations


class ReconcilerError(RuntimeError):
    pass


class DecodeError(ReconcilerError):
    """A document body could not be turned into text (corrupt PDF, unreadable image)."""


class AuthenticationError(ReconcilerError):
    """A provider rejected our credentials; the rest of the batch cannot succeed."""


class LedgerError(ReconcilerError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LedgerAuthError(AuthenticationError, LedgerError):
    pass


class SourceError(ReconcilerError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceAuthError(AuthenticationError, SourceError):
    pass


class InvalidSyncTransition(ReconcilerError):
    pass
