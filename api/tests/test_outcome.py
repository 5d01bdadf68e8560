"""
OperationOutcome builder tests
"""

from ehr_platform.exceptions import (
    PatchTestFailedError,
    ResourceGoneError,
    UnsupportedMediaTypeError,
    VersionConflictError,
)
from ehr_platform.services.fhir.outcome import (
    error_outcome,
    gone_outcome,
    has_errors,
    not_found_outcome,
    outcome_for_exception,
    success_outcome,
    version_conflict_outcome,
    warning_outcome,
)


class TestOutcomes:

    def test_not_found(self):
        assert not_found_outcome("Patient", "123").to_dict() == {
            "resourceType": "OperationOutcome",
            "issue": [{"severity": "error", "code": "not-found", "diagnostics": "Patient/123 not found"}],
        }

    def test_error(self):
        issue = error_outcome("something failed").to_dict()["issue"][0]
        assert issue == {"severity": "error", "code": "processing", "diagnostics": "something failed"}

    def test_gone(self):
        issue = gone_outcome("Patient", "456").to_dict()["issue"][0]
        assert issue["code"] == "deleted"
        assert issue["diagnostics"] == "Patient/456 has been deleted"

    def test_version_conflict(self):
        issue = version_conflict_outcome("Patient", "1", 2, 3).to_dict()["issue"][0]
        assert issue["code"] == "conflict"
        assert "expected version 2" in issue["diagnostics"]

    def test_success_and_warning(self):
        assert success_outcome("ok").to_dict()["issue"][0]["severity"] == "information"
        assert warning_outcome("hmm").to_dict()["issue"][0]["severity"] == "warning"

    def test_has_errors(self):
        assert has_errors(error_outcome("x"))
        assert not has_errors(success_outcome("ok"))
        assert not has_errors(warning_outcome("careful"))


class TestOutcomeForException:

    def test_platform_errors(self):
        cases = [
            (VersionConflictError("Patient", "1", 1, 2), "conflict"),
            (ResourceGoneError("Patient", "1"), "deleted"),
            (PatchTestFailedError(2, "/status"), "processing"),
            (UnsupportedMediaTypeError("text/plain"), "not-supported"),
        ]
        for exc, code in cases:
            issue = outcome_for_exception(exc).to_dict()["issue"][0]
            assert issue["severity"] == "error"
            assert issue["code"] == code
            assert issue["diagnostics"] == exc.message

    def test_unexpected_error_details_hidden(self):
        issue = outcome_for_exception(RuntimeError("db password leaked"), include_details=False).to_dict()["issue"][0]
        assert issue["severity"] == "fatal"
        assert issue["code"] == "exception"
        assert "password" not in issue["diagnostics"]

    def test_unexpected_error_details_shown(self):
        issue = outcome_for_exception(RuntimeError("boom")).to_dict()["issue"][0]
        assert issue["diagnostics"] == "boom"
