import re


class CompletionError(Exception):
    """Base class for failures talking to the completion provider."""


class TransportError(CompletionError):
    """The request never produced an HTTP response (connection error, timeout)."""


class ApiStatusError(CompletionError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"API request failed with status {status_code}: {message}")
        self.status_code = status_code


class ProviderError(CompletionError):
    """The provider answered with a success status but an error payload."""

    def __init__(self, message: str, code: str | int | None = None) -> None:
        super().__init__(f"API error: {message}")
        self.code = code


class StructureError(CompletionError):
    """The response envelope is not a chat completion."""


class ResponseParseError(CompletionError):
    def __init__(self, message: str, content: str) -> None:
        super().__init__(message)
        self.content = content


class TruncatedResponseError(ResponseParseError):
    pass


class MalformedJsonError(ResponseParseError):
    pass


_SCHEMA_UNSUPPORTED = re.compile(r"\b(?:not supported|json_schema|strict)\b", re.IGNORECASE)


def indicates_schema_unsupported(error: Exception) -> bool:
    """True when the provider rejected the request because the model cannot do json_schema."""
    if not isinstance(error, (ApiStatusError, ProviderError)):
        return False
    return _SCHEMA_UNSUPPORTED.search(str(error)) is not None
