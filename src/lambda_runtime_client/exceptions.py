from typing import Mapping, Optional, Sequence

from .reports import ErrorReport


class RuntimeApiError(RuntimeError):
    def __init__(self, message: str, *, unrecoverable: bool = False) -> None:
        super().__init__(message)
        self.unrecoverable = unrecoverable

    @property
    def recoverable(self) -> bool:
        return not self.unrecoverable

    def mark_unrecoverable(self) -> "RuntimeApiError":
        self.unrecoverable = True
        return self

    def to_error_report(self) -> ErrorReport:
        return ErrorReport(error_message=str(self), error_type=type(self).__name__)


class ConfigurationError(RuntimeApiError):
    pass


class TransportError(RuntimeApiError):
    pass


class InvalidEndpointError(TransportError):
    pass


class HeaderDecodeError(RuntimeApiError):
    def __init__(self, message: str, *, header: str, unrecoverable: bool = False) -> None:
        super().__init__(message, unrecoverable=unrecoverable)
        self.header = header


class MissingHeaderError(HeaderDecodeError):
    def __init__(self, header: str) -> None:
        super().__init__(f"missing {header} header", header=header)


class InvalidHeaderError(HeaderDecodeError):
    def __init__(self, header: str, reason: str) -> None:
        super().__init__(f"invalid {header} header: {reason}", header=header)
        self.reason = reason


class InvalidJsonError(HeaderDecodeError):
    def __init__(self, header: str, reason: str) -> None:
        super().__init__(f"malformed json in {header} header: {reason}", header=header)
        self.reason = reason


class HTTPStatusError(RuntimeApiError):
    def __init__(
        self,
        operation: str,
        status_code: int,
        *,
        response_text: Optional[str] = None,
        response_headers: Optional[Mapping[str, str]] = None,
        unrecoverable: bool = False,
    ) -> None:
        super().__init__(f"Error {status_code} while {operation}", unrecoverable=unrecoverable)
        self.operation = operation
        self.status_code = status_code
        self.response_text = response_text
        self.response_headers = dict(response_headers or {})

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600


class HandlerError(Exception):
    """An application failure to report through ``post_error``.

    Handlers may raise or return one of these; ``error_type`` is the tag shown
    by the host next to the message.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: str = "HandlerError",
        stack_trace: Optional[Sequence[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        if isinstance(stack_trace, str):
            stack_trace = [stack_trace]
        self.stack_trace = list(stack_trace) if stack_trace is not None else None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "HandlerError":
        report = ErrorReport.from_exception(exc)
        return cls(report.error_message, error_type=report.error_type, stack_trace=report.stack_trace)

    def to_error_report(self) -> ErrorReport:
        return ErrorReport(
            error_message=self.message,
            error_type=self.error_type,
            stack_trace=tuple(self.stack_trace) if self.stack_trace is not None else None,
        )
