"""Exception taxonomy for intake and ingestion."""


class IngestionError(Exception):
    """Base class for ingestion failures. `code` is the stable, persisted reason prefix."""

    code = "IngestionError"


class EmptyDocumentError(IngestionError):
    code = "EmptyDocument"


class ExtractionError(IngestionError):
    code = "ExtractionFailed"


class EmbeddingServiceError(IngestionError):
    code = "EmbeddingServiceError"


class StorageError(IngestionError):
    code = "StorageError"


class VectorStoreError(IngestionError):
    code = "VectorStoreError"


class NotFoundError(IngestionError):
    code = "NotFound"


class InvalidStateError(IngestionError):
    code = "InvalidState"


def format_failure_reason(exc: BaseException) -> str:
    """Human-readable reason persisted on the job and the upload record."""
    message = str(exc) or type(exc).__name__
    if isinstance(exc, IngestionError):
        return f"{exc.code}: {message}"
    return message
