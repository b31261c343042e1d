"""Error taxonomy shared by services, routers and the streaming driver.

Every failure the service reports to a client is a ServiceError carrying an
ErrorKind. Routers and the exception handler branch on the kind, never on the
message text.
"""

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


# HTTP status used when the error is raised before a response is committed
ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.INTERNAL: 500,
}


class ServiceError(Exception):
    """Base class for all errors surfaced to API clients.

    Attributes:
        kind (ErrorKind): Category of the failure.
        message (str): Client-facing message, safe in every environment.
        detail (str | None): Diagnostic detail, only exposed outside production.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES[self.kind]

    def to_payload(self, include_detail: bool) -> dict:
        """Render the structured error body returned to clients."""
        payload = {"error": self.message, "kind": self.kind.value}
        if include_detail and self.detail:
            payload["detail"] = self.detail
        return payload


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION


class AuthorizationError(ServiceError):
    """The conversation does not belong to the requesting user (or does not exist)."""

    kind = ErrorKind.AUTHORIZATION

    def __init__(self, message: str = "Not authorized to access this conversation", detail: str | None = None) -> None:
        super().__init__(message, detail)


class UpstreamError(ServiceError):
    """An embedding, completion, vector-store or database call failed."""

    kind = ErrorKind.UPSTREAM


class RetrievalError(UpstreamError):
    pass


class CompletionError(UpstreamError):
    pass


class IngestionError(UpstreamError):
    """Document ingestion failed part-way.

    Ingestion is not atomic: batches upserted before the failure stay in the
    vector index. chunks_committed tells the caller how far it got.
    """

    def __init__(self, message: str, detail: str | None = None, chunks_committed: int = 0) -> None:
        super().__init__(message, detail)
        self.chunks_committed = chunks_committed


class InternalError(ServiceError):
    kind = ErrorKind.INTERNAL
