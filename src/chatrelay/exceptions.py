"""Custom exceptions for ChatRelay."""

from typing import Optional


class ChatRelayError(Exception):
    """Base class for all ChatRelay errors."""


class StorageError(ChatRelayError):
    """Raised when the store is unreachable or a constraint is violated."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Storage operation '{operation}' failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)


class SessionNotFound(ChatRelayError):
    """Raised when a session or exchange identifier does not resolve."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Session {identifier} not found")


class PromptAlreadyRecorded(ChatRelayError):
    """Raised when a write-once prompt field is written a second time."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        super().__init__(f"Prompt for {identifier} has already been recorded")


class EngineError(ChatRelayError):
    """Raised when the reasoning engine fails or returns a malformed result."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        self.exit_code = exit_code
        if exit_code is not None:
            message = f"{message} (exit code {exit_code})"
        super().__init__(message)


class QueueRaceError(ChatRelayError):
    """
    Raised when concurrent enqueues keep colliding on the same order number.

    Admission itself cannot race: claiming a channel is one conditional
    upsert, so two callers never both observe an idle channel.
    """

    def __init__(self, channel_id: str, attempts: int):
        self.channel_id = channel_id
        self.attempts = attempts
        super().__init__(
            f"Could not assign a queue position for channel {channel_id} "
            f"after {attempts} attempts"
        )


class InvalidPermissionMode(ChatRelayError):
    """Raised when a channel is given an unknown permission mode."""

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(f"Invalid permission mode: {mode}")
