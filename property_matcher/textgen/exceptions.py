"""Custom exceptions for the text-generation client."""


class TextGenerationError(Exception):
    """Base exception for all text-generation errors.

    Callers that only need to know "no draft is available" catch this class.
    """

    pass


class TextGenerationHTTPError(TextGenerationError):
    """The text-generation endpoint answered with a 4xx/5xx status or could not be reached."""

    def __init__(self, message: str, status_code: int, url: str) -> None:
        """Initialize HTTP error with status code and URL.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (0 when no response was received)
            url: Endpoint that failed
        """
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class TextGenerationTimeoutError(TextGenerationError):
    """The request did not complete within the configured timeout."""

    def __init__(self, message: str, url: str) -> None:
        super().__init__(message)
        self.url = url


class TextGenerationResponseError(TextGenerationError):
    """The response could not be parsed or lacks a subject and body."""

    pass
