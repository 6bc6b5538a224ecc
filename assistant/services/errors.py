from __future__ import annotations


class AssistantError(Exception):
    status_code = 400
    code = "assistant_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ActorValidationError(AssistantError):
    code = "invalid_actor"


class RequestValidationFailed(AssistantError):
    code = "invalid_request"


class ToolArgumentError(AssistantError):
    code = "invalid_tool_arguments"


class AuthorizationError(AssistantError):
    status_code = 403
    code = "access_denied"


class ScopeConfigurationError(AuthorizationError):
    """An actor carries a scope that is defined but empty."""

    code = "empty_scope"


class ToolExecutionError(AssistantError):
    code = "tool_failed"


class ProviderError(AssistantError):
    code = "provider_error"


class TransientProviderError(ProviderError):
    """Provider failure worth retrying (timeouts, 5xx, rate limits)."""


class AuditWriteError(AssistantError):
    status_code = 500
    code = "audit_write_failed"


class DuplicateToolError(ValueError):
    pass
