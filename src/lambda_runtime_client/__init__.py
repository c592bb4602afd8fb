from .client import (
    API_CONTENT_TYPE,
    API_ERROR_CONTENT_TYPE,
    RUNTIME_ERROR_HEADER,
    AsyncRuntimeClient,
    RuntimeClient,
    exit_process,
)
from .config import DEFAULT_API_VERSION, RuntimeClientConfig
from .context import ClientApplication, ClientContext, CognitoIdentity, EventContext
from .exceptions import (
    ConfigurationError,
    HandlerError,
    HeaderDecodeError,
    HTTPStatusError,
    InvalidEndpointError,
    InvalidHeaderError,
    InvalidJsonError,
    MissingHeaderError,
    RuntimeApiError,
    TransportError,
)
from .headers import LambdaHeader, decode_event_context, encode_event_context
from .http_client import AsyncRuntimeHttpClient, RuntimeHttpClient
from .reports import ErrorReport, ReportableError, build_error_report

__all__ = [
    "API_CONTENT_TYPE",
    "API_ERROR_CONTENT_TYPE",
    "AsyncRuntimeClient",
    "AsyncRuntimeHttpClient",
    "ClientApplication",
    "ClientContext",
    "CognitoIdentity",
    "ConfigurationError",
    "DEFAULT_API_VERSION",
    "ErrorReport",
    "EventContext",
    "HandlerError",
    "HeaderDecodeError",
    "HTTPStatusError",
    "InvalidEndpointError",
    "InvalidHeaderError",
    "InvalidJsonError",
    "LambdaHeader",
    "MissingHeaderError",
    "RUNTIME_ERROR_HEADER",
    "ReportableError",
    "RuntimeApiError",
    "RuntimeClient",
    "RuntimeClientConfig",
    "RuntimeHttpClient",
    "TransportError",
    "build_error_report",
    "decode_event_context",
    "encode_event_context",
    "exit_process",
]
