"""Error taxonomy for the bridge.

Each error carries the code and identifier reported downstream in an
errors event, so the orchestrator can surface any failure uniformly.
"""

from __future__ import annotations

from agent_bridge.models import ErrorEntry


class BridgeError(Exception):
    """Base class for failures that end a bridged request."""

    code = "PROCESSING_ERROR"
    identifier = "processing_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_entry(self) -> ErrorEntry:
        return ErrorEntry(message=self.message, code=self.code, identifier=self.identifier)


class MissingTokenError(BridgeError):
    code = "MISSING_GITHUB_TOKEN"
    identifier = "missing_github_token"


class InvalidPayloadError(BridgeError):
    code = "INVALID_PAYLOAD"
    identifier = "invalid_payload"


class IdentityResolutionError(BridgeError):
    code = "IDENTITY_RESOLUTION_FAILED"
    identifier = "identity_resolution_failed"


class SessionCreationError(BridgeError):
    code = "SESSION_CREATION_FAILED"
    identifier = "session_creation_failed"


class RunOpenError(BridgeError):
    code = "RUN_FAILED"
    identifier = "run_failed"


class RunTimeoutError(RunOpenError):
    code = "RUN_TIMEOUT"
    identifier = "run_timeout"


def error_entry_for(exc: BaseException) -> ErrorEntry:
    """Build the downstream error entry for any exception."""
    if isinstance(exc, BridgeError):
        return exc.to_entry()
    return ErrorEntry(
        message=str(exc) or "Unknown error occurred",
        code=BridgeError.code,
        identifier=BridgeError.identifier,
    )
