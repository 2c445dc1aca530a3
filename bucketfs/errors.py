from typing import List, Optional
from bucketfs.models.files import ErrorKind, ObjectSummary


class FilesError(Exception):
    """Base class of the errors raised when managing files."""
    kind = ErrorKind.internal


class ValidationError(FilesError):
    """Exception raised when a key or request field is missing or unsafe."""
    kind = ErrorKind.validation


class NotFoundError(FilesError):
    """Exception raised when the object to read or copy does not exist."""
    kind = ErrorKind.not_found


class StoreUnavailableError(FilesError):
    """Exception raised when the object store cannot be reached or is misconfigured."""
    kind = ErrorKind.store_unavailable


class PartialBatchFailure(FilesError):
    """Exception raised when some keys of a batch delete or copy failed.

    Keys already processed are not rolled back.
    """
    kind = ErrorKind.partial_failure

    def __init__(self, message: str, done: Optional[List[str]] = None, failed: Optional[List[str]] = None,
                 objects: Optional[List[ObjectSummary]] = None):
        super().__init__(message)
        self.done = done or []
        self.failed = failed or []
        # objects written before the failure, when the operation creates objects
        self.objects = objects or []


class CatalogDesyncError(FilesError):
    """Exception raised when the object store was mutated but the catalog could not follow."""
    kind = ErrorKind.catalog_desync


class AuthenticationError(FilesError):
    """Exception raised on invalid login credentials."""
    kind = ErrorKind.unauthorized
