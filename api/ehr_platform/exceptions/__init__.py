"""
Platform exception hierarchy.

Every error raised by the versioning, patch and search layer derives from
EHRPlatformException and carries a discriminable ErrorKind, a stable error
code and the HTTP status a caller should answer with. Storage driver errors
(asyncpg) are never wrapped and propagate unchanged.
"""
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorKind(str, Enum):
    """Error discriminator used by callers to pick a response status."""
    MALFORMED_DOCUMENT = "malformed_document"
    MALFORMED_PATCH = "malformed_patch"
    PATH_NOT_FOUND = "path_not_found"
    TEST_FAILED = "test_failed"
    INVALID_PATH = "invalid_path"
    UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"
    CONFLICT = "conflict"
    VERSION_CONFLICT = "version_conflict"
    NOT_FOUND = "not_found"
    GONE = "gone"
    SEARCH_CONFIGURATION = "search_configuration"
    STORAGE_UNAVAILABLE = "storage_unavailable"


class EHRPlatformException(Exception):
    """Base class of all platform errors."""

    kind: ErrorKind = ErrorKind.MALFORMED_DOCUMENT
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str = "E000",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        http_status: Optional[int] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.recoverable = recoverable
        if http_status is not None:
            self.http_status = http_status
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "http_status": self.http_status,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self):
        return f"[{self.error_code}] {self.message}"

    def __repr__(self):
        return f"{self.__class__.__name__}(code={self.error_code}, message={self.message})"


# ============================================
# Document / patch errors (P000-P099)
# ============================================

class DocumentException(EHRPlatformException):
    """Errors raised while parsing or patching documents."""
    pass


class MalformedDocumentError(DocumentException):
    """Request body is not a well-formed JSON document."""
    kind = ErrorKind.MALFORMED_DOCUMENT
    http_status = 400

    def __init__(self, reason: str):
        super().__init__(
            message=f"Malformed JSON document: {reason}",
            error_code="P000",
            details={"reason": reason},
        )


class MalformedPatchError(DocumentException):
    """Patch payload is not a well-formed list of operations."""
    kind = ErrorKind.MALFORMED_PATCH
    http_status = 400

    def __init__(self, reason: str, operation_index: Optional[int] = None):
        location = f" (operation {operation_index})" if operation_index is not None else ""
        super().__init__(
            message=f"Malformed patch{location}: {reason}",
            error_code="P001",
            details={"reason": reason, "operation_index": operation_index},
        )
        self.operation_index = operation_index


class PatchOperationError(DocumentException):
    """A single patch operation failed; the document was left untouched."""
    http_status = 422

    def __init__(self, message: str, error_code: str, operation_index: int, op: str, path: str):
        super().__init__(
            message=f"Patch operation {operation_index} ({op} {path!r}) failed: {message}",
            error_code=error_code,
            details={"operation_index": operation_index, "op": op, "path": path, "reason": message},
        )
        self.operation_index = operation_index
        self.op = op
        self.path = path


class PatchPathNotFoundError(PatchOperationError):
    kind = ErrorKind.PATH_NOT_FOUND

    def __init__(self, operation_index: int, op: str, path: str, reason: str = "path does not exist"):
        super().__init__(reason, "P002", operation_index, op, path)


class PatchTestFailedError(PatchOperationError):
    kind = ErrorKind.TEST_FAILED

    def __init__(self, operation_index: int, path: str):
        super().__init__("value does not match", "P003", operation_index, "test", path)


class InvalidPatchPathError(PatchOperationError):
    kind = ErrorKind.INVALID_PATH

    def __init__(self, operation_index: int, op: str, path: str, reason: str):
        super().__init__(reason, "P004", operation_index, op, path)


class UnsupportedMediaTypeError(DocumentException):
    """PATCH body declared a content type neither engine accepts."""
    kind = ErrorKind.UNSUPPORTED_MEDIA_TYPE
    http_status = 415

    def __init__(self, content_type: Optional[str]):
        super().__init__(
            message=(
                "PATCH requires Content-Type: application/json-patch+json "
                "or application/merge-patch+json"
            ),
            error_code="P005",
            details={"content_type": content_type},
        )


# ============================================
# Version log errors (V001-V099)
# ============================================

class VersioningException(EHRPlatformException):
    """Errors raised by the version tracker."""
    pass


class ResourceConflictError(VersioningException):
    """Resource already exists in the version log (duplicate creation)."""
    kind = ErrorKind.CONFLICT
    http_status = 409

    def __init__(self, resource_type: str, resource_id: str, latest_version: Optional[int] = None):
        super().__init__(
            message=f"{resource_type}/{resource_id} already exists",
            error_code="V001",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "latest_version": latest_version,
            },
        )


class VersionConflictError(VersioningException):
    """Expected version is stale; safe to re-read and retry."""
    kind = ErrorKind.VERSION_CONFLICT
    http_status = 409

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        expected_version: int,
        current_version: Optional[int],
    ):
        super().__init__(
            message=(
                f"Version conflict on {resource_type}/{resource_id}: "
                f"expected version {expected_version}, current version {current_version}"
            ),
            error_code="V002",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "expected_version": expected_version,
                "current_version": current_version,
            },
            recoverable=True,
        )
        self.expected_version = expected_version
        self.current_version = current_version


class ResourceNotFoundError(VersioningException):
    kind = ErrorKind.NOT_FOUND
    http_status = 404

    def __init__(self, resource_type: str, resource_id: str, version_id: Optional[int] = None):
        target = f"{resource_type}/{resource_id}"
        if version_id is not None:
            target += f"/_history/{version_id}"
        super().__init__(
            message=f"{target} not found",
            error_code="V003",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "version_id": version_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.version_id = version_id


class ResourceGoneError(VersioningException):
    """Latest version of the resource is a delete tombstone."""
    kind = ErrorKind.GONE
    http_status = 410

    def __init__(self, resource_type: str, resource_id: str, version_id: Optional[int] = None):
        super().__init__(
            message=f"{resource_type}/{resource_id} has been deleted",
            error_code="V004",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
                "version_id": version_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


# ============================================
# Search errors (S001-S099)
# ============================================

class SearchConfigurationError(EHRPlatformException):
    """Search parameter configuration names an unsafe identifier."""
    kind = ErrorKind.SEARCH_CONFIGURATION
    http_status = 500

    def __init__(self, identifier: str, reason: str = "not a valid SQL identifier"):
        super().__init__(
            message=f"Invalid search configuration {identifier!r}: {reason}",
            error_code="S001",
            details={"identifier": identifier, "reason": reason},
        )


# ============================================
# Storage errors (D001-D099)
# ============================================

class StorageUnavailableError(EHRPlatformException):
    kind = ErrorKind.STORAGE_UNAVAILABLE
    http_status = 503

    def __init__(self, backend: str, reason: str = "not connected"):
        super().__init__(
            message=f"History storage '{backend}' is unavailable: {reason}",
            error_code="D001",
            details={"backend": backend, "reason": reason},
            recoverable=True,
        )


# ============================================
# Utilities
# ============================================

def is_recoverable(error_code: str) -> bool:
    """Whether a caller may re-read and retry after this error."""
    return error_code in {"V002", "D001"}


def http_status_for(exc: Exception, if_match: bool = False) -> int:
    """
    HTTP status for an exception; non-platform errors map to 500.

    A version conflict raised for a request carrying If-Match is a failed
    precondition (412) rather than a plain conflict.
    """
    if if_match and isinstance(exc, VersionConflictError):
        return 412
    if isinstance(exc, EHRPlatformException):
        return exc.http_status
    return 500


__all__ = [
    # Base
    "EHRPlatformException",
    "ErrorKind",
    # Document / patch
    "DocumentException",
    "MalformedDocumentError",
    "MalformedPatchError",
    "PatchOperationError",
    "PatchPathNotFoundError",
    "PatchTestFailedError",
    "InvalidPatchPathError",
    "UnsupportedMediaTypeError",
    # Versioning
    "VersioningException",
    "ResourceConflictError",
    "VersionConflictError",
    "ResourceNotFoundError",
    "ResourceGoneError",
    # Search
    "SearchConfigurationError",
    # Storage
    "StorageUnavailableError",
    # Utilities
    "is_recoverable",
    "http_status_for",
]
