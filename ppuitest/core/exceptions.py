"""
Base exception classes for the Power Platform UI test task.

Provides a hierarchy of exceptions for the failures that can occur while
provisioning the test user, preparing the test framework and running tests.
"""

from typing import Optional, Dict, Any, List


class UITestTaskError(Exception):
    """Base exception class for all task errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        remediation: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.remediation = remediation or []

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "remediation": self.remediation,
        }


class ValidationError(UITestTaskError):
    """Raised when task inputs or settings are invalid."""

    def __init__(
        self,
        message: str,
        validation_type: Optional[str] = None,
        violations: Optional[list] = None,
    ):
        super().__init__(message, "VALIDATION_FAILED")
        self.validation_type = validation_type
        self.violations = violations or []
        self.context.update(
            {
                "validation_type": validation_type,
                "violations": violations,
            }
        )


class AuthError(UITestTaskError):
    """Raised when an access token cannot be acquired."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        oauth_error: Optional[str] = None,
        token_url: Optional[str] = None,
        remediation: Optional[List[str]] = None,
    ):
        super().__init__(message, "AUTH_FAILED", remediation=remediation)
        self.status_code = status_code
        self.oauth_error = oauth_error
        self.token_url = token_url
        self.context.update(
            {
                "status_code": status_code,
                "oauth_error": oauth_error,
                "url": token_url,
            }
        )


class ApiError(UITestTaskError):
    """Raised when a Dataverse Web API call returns a non-2xx response."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
        remediation: Optional[List[str]] = None,
        error_code: str = "API_CALL_FAILED",
    ):
        super().__init__(message, error_code, remediation=remediation)
        self.status_code = status_code
        self.body = body or ""
        self.method = method
        self.url = url
        self.context.update(
            {
                "status_code": status_code,
                "method": method,
                "url": url,
            }
        )

    @property
    def is_duplicate(self) -> bool:
        """Whether the response signals that the record or link already exists."""
        if self.status_code not in (400, 409, 412):
            return False
        body = self.body.lower()
        return (
            "duplicate" in body
            or "already exists" in body
            or "0x80040237" in body
        )


class ApplicationUserError(ApiError):
    """Raised on 401: the client id is not registered as an application user."""

    def __init__(
        self,
        message: str,
        body: Optional[str] = None,
        method: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(
            message,
            status_code=401,
            body=body,
            method=method,
            url=url,
            remediation=[
                "Register the app registration as an Application User in the "
                "Power Platform admin center for this environment",
                "Assign the application user a security role that can manage "
                "users, roles and teams (e.g. System Administrator)",
                "Grant admin consent for the Dynamics CRM user_impersonation "
                "permission on the app registration",
                "Confirm the Dataverse URL points at the same environment",
            ],
            error_code="APPLICATION_USER_MISSING",
        )


class NotFoundError(UITestTaskError):
    """Raised when a directory lookup returns no records."""

    def __init__(self, entity_kind: str, name: str):
        super().__init__(
            f"No {entity_kind} found matching '{name}'",
            "NOT_FOUND",
            remediation=[
                f"Check the {entity_kind} name for typos; lookups are exact-match",
                f"Confirm the {entity_kind} exists in the target environment",
            ],
        )
        self.entity_kind = entity_kind
        self.name = name
        self.context.update({"entity_kind": entity_kind, "name": name})


class RoleAssignmentError(UITestTaskError):
    """Raised when every role assignment strategy has failed."""

    def __init__(
        self,
        message: str,
        last_status: Optional[int] = None,
        attempts: Optional[List[Dict[str, Any]]] = None,
        remediation: Optional[List[str]] = None,
    ):
        super().__init__(message, "ROLE_ASSIGNMENT_FAILED", remediation=remediation)
        self.last_status = last_status
        self.attempts = attempts or []
        self.context.update(
            {
                "status_code": last_status,
                "attempts": self.attempts,
            }
        )


class BootstrapError(UITestTaskError):
    """Raised when the runtime or test framework cannot be prepared."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        exit_code: Optional[int] = None,
        remediation: Optional[List[str]] = None,
    ):
        super().__init__(message, "BOOTSTRAP_FAILED", remediation=remediation)
        self.step = step
        self.exit_code = exit_code
        self.context.update(
            {
                "step": step,
                "exit_code": exit_code,
            }
        )


class TestExecutionError(UITestTaskError):
    """Raised when the test runner cannot be launched or staged."""

    __test__ = False

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, "TEST_EXECUTION_FAILED")
        self.command = command or []
        self.exit_code = exit_code
        self.context.update(
            {
                "command": " ".join(self.command),
                "exit_code": exit_code,
            }
        )


class FileOperationError(UITestTaskError):
    """Raised when copying tests or results fails."""

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message, "FILE_OPERATION_FAILED")
        self.file_path = file_path
        self.operation = operation
        self.context.update(
            {
                "file_path": file_path,
                "operation": operation,
            }
        )
