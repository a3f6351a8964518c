"""
Typed failures raised by the conversation core.

Every failure propagates up to the orchestration boundary (the engine), which
alone decides whether to retry. The caller decides how to present the rest.
"""

from typing import Any, Dict, Optional


class KindredError(Exception):
    """Base exception for conversation core failures."""

    def __init__(self, message: str, error_code: str = "KINDRED_ERROR") -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and callers."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.error_code,
        }


class MessageNotFoundError(KindredError):
    """Raised when an identifier is absent from the conversation store."""

    def __init__(self, message: str, identifier: Optional[Any] = None) -> None:
        super().__init__(message, "MESSAGE_NOT_FOUND")
        self.identifier = identifier


class NoUserPromptError(MessageNotFoundError):
    """Raised when a regeneration has no prior user text to re-prompt with."""

    def __init__(self, message: str = "No user text messages found for prompting", identifier: Optional[Any] = None) -> None:
        super().__init__(message, identifier)
        self.error_code = "NO_USER_PROMPT"


class DuplicateIdentifierError(KindredError):
    """Raised when inserting or re-keying onto an identifier already in use."""

    def __init__(self, message: str, identifier: Optional[Any] = None) -> None:
        super().__init__(message, "DUPLICATE_IDENTIFIER")
        self.identifier = identifier


class ProviderError(KindredError):
    """Raised when a completion or embedding provider call fails."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message, "PROVIDER_ERROR")
        self.provider = provider


class RetryBudgetExhaustedError(KindredError):
    """Raised when a turn runs out of retries without a final message."""

    def __init__(self, message: str = "too many retries", attempts: int = 0, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message, "RETRY_BUDGET_EXHAUSTED")
        self.attempts = attempts
        self.last_error = last_error


class ToolDispatchError(KindredError):
    """Base exception for tool-call dispatch failures."""

    def __init__(self, message: str, tool_name: Optional[str] = None, error_code: str = "TOOL_DISPATCH_ERROR") -> None:
        super().__init__(message, error_code)
        self.tool_name = tool_name


class UnknownToolError(ToolDispatchError):
    """Raised when the provider asks for a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"tool not found: {tool_name}", tool_name, "UNKNOWN_TOOL")


class ToolArgumentsError(ToolDispatchError):
    """Raised when tool-call arguments fail validation."""

    def __init__(self, message: str, tool_name: Optional[str] = None, errors: Optional[list] = None) -> None:
        super().__init__(message, tool_name, "TOOL_ARGUMENTS_INVALID")
        self.errors = errors or []


class PersistenceError(KindredError):
    """Raised when a conversation snapshot cannot be read or written."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message, "PERSISTENCE_ERROR")
        self.path = path


class HealthCheckError(KindredError):
    """Raised when a collaborator fails its startup health check."""

    def __init__(self, message: str, expected: Optional[int] = None, actual: Optional[int] = None) -> None:
        super().__init__(message, "HEALTH_CHECK_FAILED")
        self.expected = expected
        self.actual = actual


class EngineConstructionError(KindredError):
    """Raised when a user's engine cannot be constructed."""

    def __init__(self, message: str, user_id: Optional[int] = None) -> None:
        super().__init__(message, "ENGINE_CONSTRUCTION_FAILED")
        self.user_id = user_id
