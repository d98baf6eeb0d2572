"""Exception types shared across the classification and labelling pipeline."""


class MailsortError(Exception):
    """Base exception for all mailsort errors."""


class InvalidRequestError(MailsortError):
    """Raised when a bulk analysis request is rejected before any processing."""


class ProviderError(MailsortError):
    """Raised when a classifier call fails or returns unparsable output.

    Attributes:
        provider: value of the Provider that failed ("primary", "secondary", ...)
    """

    def __init__(self, message: str, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class LabelCreationError(MailsortError):
    """Raised when the one-time label-existence pass fails. Fatal to the run."""


class LabelApplicationError(MailsortError):
    """Raised when a label cannot be applied to a single message."""

    def __init__(self, message: str, message_id: str | None = None) -> None:
        super().__init__(message)
        self.message_id = message_id


class MessageProcessingError(MailsortError):
    """Raised for any other failure while processing a single message."""
