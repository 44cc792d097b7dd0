"""
Error types for the compliance screening core.

Every error carries a machine-readable ``code`` plus the ``field`` that
triggered it and an optional ``suggestion`` for the caller, so the API
layer can render them without inspecting message text.
"""

from typing import Any, Dict, List, Optional


class ComplianceError(Exception):
    """Base class for all compliance-core errors

    Attributes:
        field: The field that triggered the error
        code: Error code for programmatic handling
        suggestion: Optional suggestion for fixing the error
    """
    default_code = "COMPLIANCE_ERROR"

    def __init__(self, message: str, field: str = "unknown", code: Optional[str] = None, suggestion: str = ""):
        self.message = message
        self.field = field
        self.code = code or self.default_code
        self.suggestion = suggestion
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'message': self.message,
            'field': self.field,
            'suggestion': self.suggestion
        }


class ConfigurationError(ComplianceError):
    """Raised when configuration is invalid or a component is not ready"""
    default_code = "CONFIGURATION_ERROR"


class ValidationError(ComplianceError, ValueError):
    """Raised when input validation fails"""
    default_code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """Raised when a status change is not allowed by the workflow graph"""
    default_code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str = ""):
        self.from_status = from_status
        self.to_status = to_status
        message = f"Transition from '{from_status}' to '{to_status}' is not allowed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, field="status", suggestion=reason)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['from_status'] = self.from_status
        data['to_status'] = self.to_status
        return data


class ChecklistIssue:
    """One unmet gate of the approval / denial checklist"""

    __slots__ = ('code', 'message')

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {'code': self.code, 'message': self.message}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ChecklistIssue):
            return NotImplemented
        return self.code == other.code and self.message == other.message

    def __repr__(self) -> str:
        return f"ChecklistIssue({self.code!r}, {self.message!r})"


class IncompleteChecklistError(ComplianceError):
    """Raised when a terminal decision is attempted with unmet gates

    All missing items are reported at once.
    """
    default_code = "INCOMPLETE_CHECKLIST"

    def __init__(self, missing_items: List[ChecklistIssue], target_status: str = ""):
        self.missing_items = list(missing_items)
        self.target_status = target_status
        codes = ", ".join(item.code for item in self.missing_items)
        message = f"Checklist incomplete for '{target_status}': {codes}" if target_status \
            else f"Checklist incomplete: {codes}"
        super().__init__(message, field="checklist",
                         suggestion="Complete every listed item before retrying")

    @property
    def missing_codes(self) -> List[str]:
        return [item.code for item in self.missing_items]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['missing_items'] = [item.to_dict() for item in self.missing_items]
        return data


class StaleWriteError(ComplianceError):
    """Raised when a write is based on an outdated record version"""
    default_code = "STALE_WRITE"

    def __init__(self, record_id: str, expected_version: int, actual_version: int):
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Record '{record_id}' was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            field="version",
            suggestion="Reload the record and retry the change"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['expected_version'] = self.expected_version
        data['actual_version'] = self.actual_version
        return data


class LookupFailure(ComplianceError):
    """Raised by a watchlist lookup that could not produce an answer

    The screener records it as a failed per-list result, never as 'no match'.
    """
    default_code = "LOOKUP_FAILED"

    def __init__(self, list_name: str, reason: str):
        self.list_name = list_name
        self.reason = reason
        super().__init__(f"Lookup against '{list_name}' failed: {reason}", field="list_name")


class NoSuggestionError(ComplianceError):
    """Raised when applying a field for which no suggestion exists"""
    default_code = "NO_SUGGESTION"

    def __init__(self, field_name: str):
        super().__init__(f"No suggestion available for field '{field_name}'", field=field_name)


class RecordNotFoundError(ComplianceError):
    """Raised when a screening record does not exist"""
    default_code = "RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"Screening record '{record_id}' not found", field="record_id")
