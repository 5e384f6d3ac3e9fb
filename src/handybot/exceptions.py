"""Domain exception hierarchy for the HandyBot repair assistant."""

from __future__ import annotations


class HandyBotError(RuntimeError):
    """Base class for all domain-level errors."""


class ConfigurationError(HandyBotError):
    """Raised when the provider credential is missing."""


class ConfigValidationError(HandyBotError):
    """Raised when configuration cannot be validated safely."""


class EncodingError(HandyBotError):
    """Raised when an image cannot be transcoded to JPEG."""


class TransportError(HandyBotError):
    """Raised when the completion endpoint cannot be reached."""


class InvalidResponseError(HandyBotError):
    """Raised when a successful reply does not match the expected schema."""


class ProviderError(HandyBotError):
    """Raised for a non-2xx reply from the completion endpoint."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(HandyBotError):
    """Raised when project persistence operations fail."""


class PersistenceFormatError(PersistenceError):
    """Raised when a persisted payload cannot be decoded safely."""


class SecretStoreError(HandyBotError):
    """Raised when the credential store cannot be read or written."""


class ConversationError(HandyBotError):
    """Base class for failures surfaced by the send-message protocol."""

    prefix = "Conversation update failed"

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"{self.prefix}: {cause}")
        self.cause = cause


class SendFailedError(ConversationError):
    """Raised when the user turn could not be sent or answered."""

    prefix = "Failed to send message"


class SaveFailedError(ConversationError):
    """Raised when the project could not be saved."""

    prefix = "Failed to save project"
