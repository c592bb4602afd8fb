import json
import traceback
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, runtime_checkable


@dataclass(frozen=True)
class ErrorReport:
    error_message: str
    error_type: str
    stack_trace: Optional[Tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if isinstance(self.stack_trace, str):
            object.__setattr__(self, "stack_trace", (self.stack_trace,))
        elif self.stack_trace is not None:
            object.__setattr__(self, "stack_trace", tuple(str(line) for line in self.stack_trace))

    @classmethod
    def from_exception(cls, exc: BaseException, *, include_trace: bool = True) -> "ErrorReport":
        stack_trace: Optional[Sequence[str]] = None
        if include_trace and exc.__traceback__ is not None:
            stack_trace = [line.rstrip("\n") for line in traceback.format_tb(exc.__traceback__)]
        return cls(
            error_message=str(exc),
            error_type=type(exc).__name__,
            stack_trace=tuple(stack_trace) if stack_trace is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "errorMessage": self.error_message,
            "errorType": self.error_type,
        }
        if self.stack_trace is not None:
            payload["stackTrace"] = list(self.stack_trace)
        return payload

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8")


@runtime_checkable
class ReportableError(Protocol):
    def to_error_report(self) -> ErrorReport:
        ...


def build_error_report(error: object) -> ErrorReport:
    """Render ``error`` as the report sent to the Runtime API.

    Values exposing ``to_error_report()`` are passed through as-is; any other
    exception is described by its class name, message and traceback.
    """
    if isinstance(error, ReportableError):
        return error.to_error_report()
    if isinstance(error, BaseException):
        return ErrorReport.from_exception(error)
    raise TypeError(f"cannot build an error report from {type(error).__name__}")
