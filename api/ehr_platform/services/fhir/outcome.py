"""
OperationOutcome documents for error and status reporting.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ehr_platform.exceptions import EHRPlatformException, ErrorKind


class IssueSeverity(str, Enum):
    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    INFORMATION = "information"


class OutcomeIssue(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    severity: IssueSeverity
    code: str
    diagnostics: Optional[str] = None


class OperationOutcome(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resource_type: str = Field(default="OperationOutcome", alias="resourceType")
    issue: List[OutcomeIssue] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# FHIR issue-type code per error kind
_ISSUE_CODES = {
    ErrorKind.MALFORMED_DOCUMENT: "structure",
    ErrorKind.MALFORMED_PATCH: "structure",
    ErrorKind.PATH_NOT_FOUND: "processing",
    ErrorKind.TEST_FAILED: "processing",
    ErrorKind.INVALID_PATH: "processing",
    ErrorKind.UNSUPPORTED_MEDIA_TYPE: "not-supported",
    ErrorKind.CONFLICT: "duplicate",
    ErrorKind.VERSION_CONFLICT: "conflict",
    ErrorKind.NOT_FOUND: "not-found",
    ErrorKind.GONE: "deleted",
    ErrorKind.SEARCH_CONFIGURATION: "exception",
    ErrorKind.STORAGE_UNAVAILABLE: "transient",
}


def _outcome(severity: IssueSeverity, code: str, diagnostics: Optional[str]) -> OperationOutcome:
    return OperationOutcome(issue=[OutcomeIssue(severity=severity, code=code, diagnostics=diagnostics)])


def not_found_outcome(resource_type: str, resource_id: str) -> OperationOutcome:
    return _outcome(IssueSeverity.ERROR, "not-found", f"{resource_type}/{resource_id} not found")


def gone_outcome(resource_type: str, resource_id: str) -> OperationOutcome:
    return _outcome(IssueSeverity.ERROR, "deleted", f"{resource_type}/{resource_id} has been deleted")


def error_outcome(message: str, code: str = "processing") -> OperationOutcome:
    return _outcome(IssueSeverity.ERROR, code, message)


def version_conflict_outcome(
    resource_type: str, resource_id: str, expected_version: int, current_version: Optional[int]
) -> OperationOutcome:
    return _outcome(
        IssueSeverity.ERROR,
        "conflict",
        f"Version conflict on {resource_type}/{resource_id}: "
        f"expected version {expected_version}, current version {current_version}",
    )


def success_outcome(message: str) -> OperationOutcome:
    return _outcome(IssueSeverity.INFORMATION, "informational", message)


def warning_outcome(message: str, code: str = "informational") -> OperationOutcome:
    return _outcome(IssueSeverity.WARNING, code, message)


def outcome_for_exception(exc: Exception, include_details: bool = True) -> OperationOutcome:
    """
    Render any exception as an OperationOutcome.

    Platform errors keep their message; anything else becomes a generic
    "exception" issue whose text is hidden unless include_details is set.
    """
    if isinstance(exc, EHRPlatformException):
        return _outcome(IssueSeverity.ERROR, _ISSUE_CODES.get(exc.kind, "processing"), exc.message)
    diagnostics = str(exc) if include_details else "Internal server error"
    return _outcome(IssueSeverity.FATAL, "exception", diagnostics)


def has_errors(outcome: OperationOutcome) -> bool:
    """True if any issue is error or fatal."""
    return any(
        IssueSeverity(issue.severity) in (IssueSeverity.ERROR, IssueSeverity.FATAL)
        for issue in outcome.issue
    )
