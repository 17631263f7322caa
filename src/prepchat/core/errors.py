from typing import Optional


class ChatError(Exception):
    """Base class for chat client failures."""


class MissingCredential(ChatError):
    """No API key supplied for a provider that requires one."""


class MissingConfiguration(ChatError):
    """Custom provider used without an endpoint or model."""


class UnsupportedProvider(ChatError):
    """Provider id has no registry entry and is not the custom provider."""


class ApiError(ChatError):
    """
    Non-2xx answer from a provider or the proxy, or a body we cannot read.
    The message is the provider's own error text when it sent one.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StreamProcessingError(ChatError):
    """Reader or decoder failure in the middle of a stream."""


class StreamCancelled(ChatError):
    """The caller cancelled an in-flight stream."""


class ConnectionTestError(ChatError):
    pass


class ConversationBusy(ChatError):
    """A stream is already writing into this conversation."""


class HeaderParseError(ValueError):
    """
    Custom headers text was not a JSON object. Never raised to callers:
    the header builder falls back to default headers and reports it as a warning.
    """
