"""Custom exceptions for the Issue Memo MCP server.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Not found (1xxx)
    MEMO_NOT_FOUND = 1001
    COMMENT_NOT_FOUND = 1002
    ATTACHMENT_NOT_FOUND = 1003
    SHORTCUT_NOT_FOUND = 1004
    FILE_NOT_FOUND = 1005
    LABEL_NOT_FOUND = 1006
    RESOURCE_NOT_FOUND = 1099

    # Concurrency (2xxx)
    WRITE_CONFLICT = 2001
    CONFLICT_RETRIES_EXHAUSTED = 2002

    # Malformed input (3xxx)
    MALFORMED_NAME = 3001
    MALFORMED_FILTER = 3002
    MALFORMED_FRONTMATTER = 3003

    # State machine (4xxx)
    INVALID_STATE_TRANSITION = 4001
    MEMO_DELETED = 4002

    # Upstream (5xxx)
    UPSTREAM_FAILED = 5001
    UPSTREAM_UNREACHABLE = 5002
    UPSTREAM_BAD_RESPONSE = 5003

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_VISIBILITY = 7002
    INVALID_REACTION = 7003


class MemosError(Exception):
    """Base exception for all Issue Memo errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(MemosError):
    """Raised when a backing item, file, label or list entry is absent."""

    def __init__(
        self,
        kind: str,
        identifier: str,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND
    ):
        super().__init__(
            message or f"{kind} '{identifier}' not found",
            code=code,
            details={"kind": kind, "identifier": identifier}
        )
        self.kind = kind
        self.identifier = identifier


class ConflictError(MemosError):
    """Raised when a write carried a stale content token."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        token: Optional[str] = None,
        code: ErrorCode = ErrorCode.WRITE_CONFLICT
    ):
        details = {}
        if path:
            details["path"] = path
        if token:
            details["token"] = token[:7]

        super().__init__(message, code=code, details=details)
        self.path = path
        self.token = token


class MalformedInputError(MemosError):
    """Raised for unparsable names, filters or metadata blocks in strict mode."""

    def __init__(
        self,
        message: str,
        value: Optional[str] = None,
        code: ErrorCode = ErrorCode.MALFORMED_NAME
    ):
        details = {}
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.value = value


class InvalidStateError(MemosError):
    """Raised when a memo state transition is not allowed."""

    def __init__(
        self,
        message: str,
        memo_name: Optional[str] = None,
        current_state: Optional[str] = None,
        code: ErrorCode = ErrorCode.INVALID_STATE_TRANSITION
    ):
        details = {}
        if memo_name:
            details["memo"] = memo_name
        if current_state:
            details["state"] = current_state

        super().__init__(message, code=code, details=details)
        self.memo_name = memo_name
        self.current_state = current_state


class UpstreamError(MemosError):
    """Raised for any other failure reported by (or reaching) the tracker."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.UPSTREAM_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if status_code is not None:
            details["status_code"] = status_code
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.status_code = status_code
        self.operation = operation
        self.original_error = original_error


class ConfigurationError(MemosError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_MISSING
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(MemosError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
