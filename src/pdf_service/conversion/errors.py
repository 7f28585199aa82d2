"""Error taxonomy for the conversion workflow.

Every error carries the HTTP status it is surfaced with and a
human-readable message that is returned to the caller as plain text.
"""


class ConversionError(Exception):
    """Base error for a failed conversion request."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class MalformedRequest(ConversionError):
    status_code = 400


class SourceNotFound(ConversionError):
    status_code = 404

    def __init__(self, message: str = "Source file not found") -> None:
        super().__init__(message)


class DownloadFailed(ConversionError):
    """The source document could not be downloaded.

    `status` is the upstream HTTP status, or None for network-level failures.
    """

    status_code = 400

    def __init__(self, status: int | None, reason: str) -> None:
        self.status = status
        self.reason = reason
        if status is None:
            message = f"Cannot download source file: {reason}"
        else:
            message = f"Cannot download source file: {status} {reason}"
        super().__init__(message)


class CircuitOpen(DownloadFailed):
    status_code = 503

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        self.status = None
        self.reason = "circuit open"
        ConversionError.__init__(self, "Source downloads temporarily suspended")


class ConversionFailed(ConversionError):
    status_code = 400

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        message = "Error converting file to PDF"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class StorageFailure(ConversionError):
    status_code = 502

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail
        super().__init__("Error storing converted file")
