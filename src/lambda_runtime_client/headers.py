import json
import logging
import re
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .context import ClientContext, CognitoIdentity, EventContext
from .exceptions import InvalidHeaderError, InvalidJsonError, MissingHeaderError

LOGGER = logging.getLogger(__name__)

HeaderValue = Union[str, bytes]
HeaderSource = Union[Mapping[Any, HeaderValue], Iterable[Tuple[Any, HeaderValue]]]

_DEADLINE_PATTERN = re.compile(r"[+-]?[0-9]+")
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


class LambdaHeader(str, Enum):
    REQUEST_ID = "Lambda-Runtime-Aws-Request-Id"
    FUNCTION_ARN = "Lambda-Runtime-Invoked-Function-Arn"
    TRACE_ID = "Lambda-Runtime-Trace-Id"
    DEADLINE = "Lambda-Runtime-Deadline-Ms"
    CLIENT_CONTEXT = "Lambda-Runtime-Client-Context"
    COGNITO_IDENTITY = "Lambda-Runtime-Cognito-Identity"

    def __str__(self) -> str:
        return self.value


def decode_event_context(headers: HeaderSource) -> EventContext:
    lookup = _normalize(headers)

    request_id = _required(lookup, LambdaHeader.REQUEST_ID)
    function_arn = _required(lookup, LambdaHeader.FUNCTION_ARN)
    trace_id = _required(lookup, LambdaHeader.TRACE_ID)
    deadline_raw = _required(lookup, LambdaHeader.DEADLINE)
    if not _DEADLINE_PATTERN.fullmatch(deadline_raw):
        raise InvalidHeaderError(LambdaHeader.DEADLINE.value, f"not an integer: {deadline_raw!r}")
    digits = deadline_raw.lstrip("+-").lstrip("0") or "0"
    if len(digits) > 19:
        raise InvalidHeaderError(LambdaHeader.DEADLINE.value, f"out of range: {deadline_raw!r}")
    deadline_ms = -int(digits) if deadline_raw.startswith("-") else int(digits)
    if not _I64_MIN <= deadline_ms <= _I64_MAX:
        raise InvalidHeaderError(LambdaHeader.DEADLINE.value, f"out of range: {deadline_raw!r}")

    client_context = None
    client_context_raw = _optional(lookup, LambdaHeader.CLIENT_CONTEXT)
    if client_context_raw is not None:
        LOGGER.debug("found client context in response headers: %s", client_context_raw)
        client_context = _parse_json(LambdaHeader.CLIENT_CONTEXT, client_context_raw, ClientContext.from_dict)

    identity = None
    identity_raw = _optional(lookup, LambdaHeader.COGNITO_IDENTITY)
    if identity_raw is not None:
        LOGGER.debug("found cognito identity in response headers: %s", identity_raw)
        identity = _parse_json(LambdaHeader.COGNITO_IDENTITY, identity_raw, CognitoIdentity.from_dict)

    return EventContext(
        request_id=request_id,
        function_arn=function_arn,
        trace_id=trace_id,
        deadline_ms=deadline_ms,
        client_context=client_context,
        identity=identity,
    )


def encode_event_context(context: EventContext) -> Dict[str, str]:
    headers = {
        LambdaHeader.REQUEST_ID.value: context.request_id,
        LambdaHeader.FUNCTION_ARN.value: context.function_arn,
        LambdaHeader.TRACE_ID.value: context.trace_id,
        LambdaHeader.DEADLINE.value: str(context.deadline_ms),
    }
    if context.client_context is not None:
        headers[LambdaHeader.CLIENT_CONTEXT.value] = json.dumps(context.client_context.to_dict(), separators=(",", ":"))
    if context.identity is not None:
        headers[LambdaHeader.COGNITO_IDENTITY.value] = json.dumps(context.identity.to_dict(), separators=(",", ":"))
    return headers


def _normalize(headers: HeaderSource) -> Dict[str, HeaderValue]:
    items = headers.items() if isinstance(headers, Mapping) else headers
    lookup: Dict[str, HeaderValue] = {}
    for key, value in items:
        name = key.decode("latin-1") if isinstance(key, bytes) else str(key)
        lookup.setdefault(name.lower(), value)
    return lookup


def _optional(lookup: Mapping[str, HeaderValue], header: LambdaHeader) -> Optional[str]:
    value = lookup.get(header.value.lower())
    if value is None:
        return None
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidHeaderError(header.value, "value is not valid utf-8") from exc
    return value


def _required(lookup: Mapping[str, HeaderValue], header: LambdaHeader) -> str:
    value = _optional(lookup, header)
    if value is None:
        LOGGER.error("response headers do not contain %s header", header.value)
        raise MissingHeaderError(header.value)
    return value


def _parse_json(header: LambdaHeader, raw: str, parser: Any) -> Any:
    try:
        document = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        raise InvalidJsonError(header.value, str(exc)) from exc
    if not isinstance(document, Mapping):
        raise InvalidJsonError(header.value, "expected a json object")
    try:
        return parser(document)
    except ValueError as exc:
        raise InvalidJsonError(header.value, str(exc)) from exc
