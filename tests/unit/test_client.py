import asyncio
import json
from typing import Any, Callable, Optional

import httpx
import pytest

from lambda_runtime_client.client import AsyncRuntimeClient, RuntimeClient
from lambda_runtime_client.exceptions import (
    HandlerError,
    HTTPStatusError,
    InvalidJsonError,
    MissingHeaderError,
    TransportError,
)
from lambda_runtime_client.reports import ErrorReport

_EVENT_HEADERS = {
    "Lambda-Runtime-Aws-Request-Id": "8476a536-e9f4-11e8-9739-2dfe598c3fcd",
    "Lambda-Runtime-Invoked-Function-Arn": "arn:aws:lambda:us-east-2:123456789012:function:custom-runtime",
    "Lambda-Runtime-Trace-Id": "Root=1-5bef4de7-ad49b0e87f6ef6c87fc2e700;Parent=9a9197af755a6419;Sampled=1",
    "Lambda-Runtime-Deadline-Ms": "1542409706888",
}


class _Recorder:
    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]) -> None:
        self._responder = responder
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._responder(request)


class _Terminated(Exception):
    pass


def _fatal(messages: list[str]) -> Callable[[str], Any]:
    def handler(message: str) -> Any:
        messages.append(message)
        raise _Terminated(message)

    return handler


def _client(recorder: _Recorder, *, fatal_handler: Optional[Callable[[str], Any]] = None) -> RuntimeClient:
    session = httpx.Client(transport=httpx.MockTransport(recorder))
    return RuntimeClient("127.0.0.1:9001", session=session, fatal_handler=fatal_handler)


def _async_client(recorder: _Recorder, *, fatal_handler: Optional[Callable[[str], Any]] = None) -> AsyncRuntimeClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return AsyncRuntimeClient("127.0.0.1:9001", client=client, fatal_handler=fatal_handler)


def test_poll_next_event_returns_payload_and_context():
    body = b'{"key1": "value1", "key2": "value2"}'
    recorder = _Recorder(lambda _request: httpx.Response(200, headers=_EVENT_HEADERS, content=body))
    client = _client(recorder)

    payload, context = client.poll_next_event()

    assert payload == body
    assert context.request_id == "8476a536-e9f4-11e8-9739-2dfe598c3fcd"
    assert context.function_arn == "arn:aws:lambda:us-east-2:123456789012:function:custom-runtime"
    assert context.deadline_ms == 1542409706888
    request = recorder.requests[0]
    assert request.method == "GET"
    assert str(request.url) == "http://127.0.0.1:9001/2018-06-01/runtime/invocation/next"


def test_poll_next_event_preserves_empty_and_binary_bodies():
    for body in (b"", bytes(range(256))):
        recorder = _Recorder(lambda _request, body=body: httpx.Response(200, headers=_EVENT_HEADERS, content=body))
        payload, _context = _client(recorder).poll_next_event()
        assert payload == body


def test_poll_next_event_client_error_is_recoverable():
    recorder = _Recorder(lambda _request: httpx.Response(404, text="not found"))
    client = _client(recorder)

    with pytest.raises(HTTPStatusError) as exc_info:
        client.poll_next_event()

    assert exc_info.value.status_code == 404
    assert exc_info.value.unrecoverable is False
    assert "404" in str(exc_info.value)
    assert len(recorder.requests) == 1


def test_poll_next_event_server_error_is_unrecoverable():
    recorder = _Recorder(lambda _request: httpx.Response(500, text="internal"))
    client = _client(recorder)

    with pytest.raises(HTTPStatusError) as exc_info:
        client.poll_next_event()

    assert exc_info.value.status_code == 500
    assert exc_info.value.unrecoverable is True
    assert len(recorder.requests) == 1


def test_poll_next_event_missing_header_short_circuits():
    headers = dict(_EVENT_HEADERS)
    del headers["Lambda-Runtime-Deadline-Ms"]
    recorder = _Recorder(lambda _request: httpx.Response(200, headers=headers, content=b"{}"))

    with pytest.raises(MissingHeaderError) as exc_info:
        _client(recorder).poll_next_event()

    assert exc_info.value.header == "Lambda-Runtime-Deadline-Ms"
    assert exc_info.value.unrecoverable is False


def test_poll_next_event_malformed_identity_header():
    headers = dict(_EVENT_HEADERS)
    headers["Lambda-Runtime-Cognito-Identity"] = "{"
    recorder = _Recorder(lambda _request: httpx.Response(200, headers=headers, content=b"{}"))

    with pytest.raises(InvalidJsonError):
        _client(recorder).poll_next_event()



class _TrackedStream(httpx.SyncByteStream):
    def __init__(self) -> None:
        self.closed = False

    def __iter__(self):
        yield b"{}"

    def close(self) -> None:
        self.closed = True


def test_poll_next_event_deeply_nested_header_closes_response():
    headers = dict(_EVENT_HEADERS)
    headers["Lambda-Runtime-Client-Context"] = '{"client":' + "[" * 1_000_000 + "]" * 1_000_000 + "}"
    stream = _TrackedStream()
    recorder = _Recorder(lambda _request: httpx.Response(200, headers=headers, stream=stream))

    with pytest.raises(InvalidJsonError) as exc_info:
        _client(recorder).poll_next_event()

    assert exc_info.value.header == "Lambda-Runtime-Client-Context"
    assert exc_info.value.unrecoverable is False
    assert stream.closed is True

def test_poll_next_event_network_failure_is_transport_error():
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError) as exc_info:
        _client(_Recorder(responder)).poll_next_event()

    assert exc_info.value.unrecoverable is False
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


def test_post_response_accepted():
    recorder = _Recorder(lambda _request: httpx.Response(202, json={"status": "OK"}))
    client = _client(recorder)

    client.post_response("req-1", b'{"message": "hello"}')

    request = recorder.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "http://127.0.0.1:9001/2018-06-01/runtime/invocation/req-1/response"
    assert request.headers["Content-Type"] == "application/json"
    assert request.content == b'{"message": "hello"}'


def test_post_response_payload_too_large_is_recoverable():
    recorder = _Recorder(lambda _request: httpx.Response(413, text="payload too large"))
    client = _client(recorder)

    with pytest.raises(HTTPStatusError) as exc_info:
        client.post_response("req-1", b"x" * 1024)

    assert "413" in str(exc_info.value)
    assert exc_info.value.unrecoverable is False
    assert exc_info.value.response_text == "payload too large"


def test_post_response_server_error_is_still_recoverable():
    recorder = _Recorder(lambda _request: httpx.Response(502))

    with pytest.raises(HTTPStatusError) as exc_info:
        _client(recorder).post_response("req-1", b"{}")

    assert exc_info.value.unrecoverable is False


def test_post_response_quotes_request_id():
    recorder = _Recorder(lambda _request: httpx.Response(202))

    _client(recorder).post_response("a/b", b"{}")

    assert recorder.requests[0].url.raw_path == b"/2018-06-01/runtime/invocation/a%2Fb/response"


def test_post_error_sends_error_envelope():
    recorder = _Recorder(lambda _request: httpx.Response(202))
    client = _client(recorder)

    client.post_error("req-2", HandlerError("bad input", error_type="ValidationError"))

    request = recorder.requests[0]
    assert str(request.url) == "http://127.0.0.1:9001/2018-06-01/runtime/invocation/req-2/error"
    assert request.headers["Content-Type"] == "application/vnd.aws.lambda.error+json"
    assert request.headers["Lambda-Runtime-Function-Error-Type"] == "RuntimeError"
    assert json.loads(request.content) == {"errorMessage": "bad input", "errorType": "ValidationError"}


def test_post_error_bad_request_is_recoverable_and_serializes_once():
    calls: list[int] = []

    class _CountingError:
        def to_error_report(self) -> ErrorReport:
            calls.append(1)
            return ErrorReport(error_message="handler failed", error_type="AppError")

    recorder = _Recorder(lambda _request: httpx.Response(400, text="bad request"))

    with pytest.raises(HTTPStatusError) as exc_info:
        _client(recorder).post_error("req-3", _CountingError())

    assert exc_info.value.status_code == 400
    assert exc_info.value.unrecoverable is False
    assert calls == [1]
    assert json.loads(recorder.requests[0].content) == {"errorMessage": "handler failed", "errorType": "AppError"}


def test_post_error_accepts_plain_exception():
    recorder = _Recorder(lambda _request: httpx.Response(202))

    _client(recorder).post_error("req-4", ValueError("unexpected"))

    body = json.loads(recorder.requests[0].content)
    assert body["errorType"] == "ValueError"
    assert body["errorMessage"] == "unexpected"


def test_post_init_failure_success_returns():
    messages: list[str] = []
    recorder = _Recorder(lambda _request: httpx.Response(202))
    client = _client(recorder, fatal_handler=_fatal(messages))

    client.post_init_failure(HandlerError("config missing", error_type="InitError"))

    request = recorder.requests[0]
    assert str(request.url) == "http://127.0.0.1:9001/2018-06-01/runtime/init/error"
    assert request.headers["Content-Type"] == "application/vnd.aws.lambda.error+json"
    assert request.headers["Lambda-Runtime-Function-Error-Type"] == "RuntimeError"
    assert json.loads(request.content) == {"errorMessage": "config missing", "errorType": "InitError"}
    assert messages == []


def test_post_init_failure_network_failure_terminates():
    messages: list[str] = []

    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(_Recorder(responder), fatal_handler=_fatal(messages))

    with pytest.raises(_Terminated):
        client.post_init_failure(HandlerError("config missing"))

    assert len(messages) == 1
    assert "init failed" in messages[0]


def test_post_init_failure_error_status_terminates():
    messages: list[str] = []
    recorder = _Recorder(lambda _request: httpx.Response(500))
    client = _client(recorder, fatal_handler=_fatal(messages))

    with pytest.raises(_Terminated):
        client.post_init_failure(HandlerError("config missing"))

    assert "500" in messages[0]


def test_post_init_failure_never_returns_when_hook_returns():
    messages: list[str] = []

    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadError("reset", request=request)

    client = _client(_Recorder(responder), fatal_handler=messages.append)

    with pytest.raises(SystemExit) as exc_info:
        client.post_init_failure(HandlerError("config missing"))

    assert exc_info.value.code == 1
    assert len(messages) == 1


def test_client_accepts_url_endpoint_and_custom_version():
    recorder = _Recorder(lambda _request: httpx.Response(202))
    session = httpx.Client(transport=httpx.MockTransport(recorder))
    client = RuntimeClient("https://runtime.internal:8443/", api_version="2020-01-01", session=session)

    client.post_response("req-1", b"{}")

    assert str(recorder.requests[0].url) == "https://runtime.internal:8443/2020-01-01/runtime/invocation/req-1/response"
    assert client.endpoint == "https://runtime.internal:8443"


def test_sequential_invocations_reuse_client():
    counter = {"n": 0}

    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/next"):
            counter["n"] += 1
            headers = dict(_EVENT_HEADERS)
            headers["Lambda-Runtime-Aws-Request-Id"] = f"req-{counter['n']}"
            return httpx.Response(200, headers=headers, content=b"{}")
        return httpx.Response(202)

    recorder = _Recorder(responder)
    with _client(recorder) as client:
        for _ in range(3):
            _payload, context = client.poll_next_event()
            client.post_response(context.request_id, b"null")

    paths = [request.url.path for request in recorder.requests]
    assert paths == [
        "/2018-06-01/runtime/invocation/next",
        "/2018-06-01/runtime/invocation/req-1/response",
        "/2018-06-01/runtime/invocation/next",
        "/2018-06-01/runtime/invocation/req-2/response",
        "/2018-06-01/runtime/invocation/next",
        "/2018-06-01/runtime/invocation/req-3/response",
    ]


def test_async_poll_and_respond():
    body = b'{"hello": "world"}'

    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/next"):
            return httpx.Response(200, headers=_EVENT_HEADERS, content=body)
        return httpx.Response(202)

    recorder = _Recorder(responder)

    async def run() -> None:
        async with _async_client(recorder) as client:
            payload, context = await client.poll_next_event()
            assert payload == body
            await client.post_response(context.request_id, b'"ok"')

    asyncio.run(run())

    assert recorder.requests[1].url.path == (
        "/2018-06-01/runtime/invocation/8476a536-e9f4-11e8-9739-2dfe598c3fcd/response"
    )
    assert recorder.requests[1].content == b'"ok"'


def test_async_poll_status_classification():
    statuses = {"status": 404}
    recorder = _Recorder(lambda _request: httpx.Response(statuses["status"]))

    async def run() -> None:
        client = _async_client(recorder)
        with pytest.raises(HTTPStatusError) as client_error:
            await client.poll_next_event()
        assert client_error.value.unrecoverable is False

        statuses["status"] = 503
        with pytest.raises(HTTPStatusError) as server_error:
            await client.poll_next_event()
        assert server_error.value.unrecoverable is True
        await client.aclose()

    asyncio.run(run())


def test_async_post_error_and_init_failure():
    messages: list[str] = []

    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/init/error"):
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(400)

    recorder = _Recorder(responder)

    async def run() -> None:
        client = _async_client(recorder, fatal_handler=_fatal(messages))
        with pytest.raises(HTTPStatusError) as exc_info:
            await client.post_error("req-5", HandlerError("nope"))
        assert exc_info.value.unrecoverable is False
        with pytest.raises(_Terminated):
            await client.post_init_failure(HandlerError("init broke"))
        await client.aclose()

    asyncio.run(run())

    assert json.loads(recorder.requests[0].content) == {"errorMessage": "nope", "errorType": "HandlerError"}
    assert len(messages) == 1
