"""Error taxonomy for the resource API.

Each error carries the HTTP status the routes report it with.
``IndexingFailure`` never leaves the indexing pipeline.
"""

from fastapi import status


class FhirServerError(Exception):
    """Base class for errors raised by the resource service layer."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FhirServerError):
    """Malformed or mismatched input."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(FhirServerError):
    """No resource with the requested type and id."""

    status_code = status.HTTP_404_NOT_FOUND


class StorageError(FhirServerError):
    """The resource store failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class SearchError(FhirServerError):
    """The search index is unreachable or answered with an error."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class IndexingFailure(FhirServerError):
    """A document could not be written to the search index."""
