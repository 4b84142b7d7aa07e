from enum import Enum

from fastapi import status


class ErrorKind(str, Enum):
    UPLOAD_FAILED = "UploadFailed"
    PROCESSING_FAILED = "ProcessingFailed"
    MALFORMED_RESPONSE = "MalformedResponse"
    INVALID_AMOUNT = "InvalidAmount"
    INVALID_DATE = "InvalidDate"
    SAVE_FAILED = "SaveFailed"
    AUTH_ERROR = "AuthError"
    NOT_FOUND = "NotFound"
    UNEXPECTED_ERROR = "UnexpectedError"


_STATUS_CODES = {
    ErrorKind.UPLOAD_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PROCESSING_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.MALFORMED_RESPONSE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INVALID_AMOUNT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.INVALID_DATE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.SAVE_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.AUTH_ERROR: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNEXPECTED_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class AppError(Exception):
    """An error raised at a boundary call site, tagged with its kind.

    The kind is decided where the failure happens (upload, AI call, insert, ...)
    so handlers never have to guess an error's origin from its shape.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        raw_text: str | None = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.raw_text = raw_text
        self.timed_out = timed_out

    @property
    def status_code(self) -> int:
        if self.kind is ErrorKind.PROCESSING_FAILED and self.timed_out:
            return status.HTTP_504_GATEWAY_TIMEOUT
        return _STATUS_CODES[self.kind]

    def to_dict(self) -> dict:
        body = {"kind": self.kind.value, "detail": self.message}
        if self.raw_text is not None:
            body["raw_text"] = self.raw_text
        return body


class ParseError(AppError):
    """The AI response could not be parsed as a receipt candidate."""

    def __init__(self, raw_text: str, message: str = "Failed to parse the analyzed receipt data"):
        super().__init__(ErrorKind.MALFORMED_RESPONSE, message, raw_text=raw_text)


class ReceiptValidationError(AppError):
    """A candidate field could not be coerced into its canonical form."""


class CaptureConflict(Exception):
    """The requested capture action is not allowed in the capture's current state."""

    def __init__(self, action: str, state: str):
        super().__init__(f"Cannot {action} a capture in state {state}")
        self.action = action
        self.state = state
