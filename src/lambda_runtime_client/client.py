import logging
import os
from typing import Any, Callable, Dict, NoReturn, Optional, Tuple
from urllib.parse import quote

import httpx

from .config import DEFAULT_API_VERSION, RuntimeClientConfig
from .context import EventContext
from .exceptions import HTTPStatusError, RuntimeApiError
from .headers import decode_event_context
from .http_client import AsyncRuntimeHttpClient, RuntimeHttpClient
from .reports import build_error_report

LOGGER = logging.getLogger(__name__)

API_CONTENT_TYPE = "application/json"
API_ERROR_CONTENT_TYPE = "application/vnd.aws.lambda.error+json"
RUNTIME_ERROR_HEADER = "Lambda-Runtime-Function-Error-Type"
RUNTIME_ERROR_TYPE = "RuntimeError"

_RESPONSE_HEADERS: Dict[str, str] = {"Content-Type": API_CONTENT_TYPE}
_ERROR_HEADERS: Dict[str, str] = {
    "Content-Type": API_ERROR_CONTENT_TYPE,
    RUNTIME_ERROR_HEADER: RUNTIME_ERROR_TYPE,
}

FatalHandler = Callable[[str], Any]


def exit_process(message: str) -> NoReturn:
    """Default fatal handler: flush logging and stop the process immediately.

    Used when the init failure cannot be reported, so that the supervisor
    restarts the worker instead of leaving it half initialized.
    """
    LOGGER.critical("terminating runtime process: %s", message)
    logging.shutdown()
    os._exit(1)


class RuntimeClient:
    """Blocking client for the Lambda Runtime API.

    The underlying ``httpx.Client`` has timeouts disabled and keeps connections
    alive between calls. Every method except ``post_init_failure`` raises a
    ``RuntimeApiError`` subclass on failure; callers should stop polling when
    ``exc.unrecoverable`` is set.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        api_version: str = DEFAULT_API_VERSION,
        session: Optional[httpx.Client] = None,
        http_client: Optional[RuntimeHttpClient] = None,
        fatal_handler: Optional[FatalHandler] = None,
    ) -> None:
        self._config = RuntimeClientConfig(endpoint=endpoint, api_version=api_version)
        self._http = http_client or RuntimeHttpClient(session=session)
        self._fatal_handler = fatal_handler or exit_process
        LOGGER.debug("starting runtime client for %s", self._config.base_url)

    @classmethod
    def from_config(cls, config: RuntimeClientConfig, **kwargs: Any) -> "RuntimeClient":
        return cls(config.endpoint, api_version=config.api_version, **kwargs)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "RuntimeClient":
        return cls.from_config(RuntimeClientConfig.from_env(), **kwargs)

    @property
    def config(self) -> RuntimeClientConfig:
        return self._config

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    @property
    def api_version(self) -> str:
        return self._config.api_version

    def poll_next_event(self) -> Tuple[bytes, EventContext]:
        url = _next_url(self._config)
        LOGGER.debug("polling for next event")
        try:
            response = self._http.send("GET", url, stream=True)
        except RuntimeApiError as exc:
            LOGGER.error("error when fetching next event from runtime api: %s", exc)
            raise
        if not response.is_success:
            response.close()
            raise _poll_status_error(response)
        try:
            context = decode_event_context(response.headers.raw)
        except BaseException:
            response.close()
            raise
        payload = self._http.read(response)
        LOGGER.debug(
            "received new event for request id %s, event length %d bytes",
            context.request_id,
            len(payload),
        )
        return payload, context

    def post_response(self, request_id: str, output: bytes) -> None:
        url = _invocation_url(self._config, request_id, "response")
        LOGGER.debug(
            "posting response for request %s to runtime api, response length %d bytes",
            request_id,
            len(output),
        )
        response = self._post(url, request_id, headers=_RESPONSE_HEADERS, content=output)
        if not response.is_success:
            raise _post_status_error(response, request_id, "sending response")
        LOGGER.debug("posted response to runtime api for request %s", request_id)

    def post_error(self, request_id: str, error: object) -> None:
        report = build_error_report(error)
        url = _invocation_url(self._config, request_id, "error")
        LOGGER.debug("posting error to runtime api for request %s: %s", request_id, report.error_message)
        response = self._post(url, request_id, headers=_ERROR_HEADERS, content=report.to_json())
        if not response.is_success:
            raise _post_status_error(response, request_id, "sending error response")
        LOGGER.debug("posted error response for request id %s", request_id)

    def post_init_failure(self, error: object) -> None:
        report = build_error_report(error)
        url = _init_error_url(self._config)
        LOGGER.error("calling init error runtime api: %s", report.error_message)
        try:
            response = self._http.send("POST", url, headers=_ERROR_HEADERS, content=report.to_json())
        except RuntimeApiError as exc:
            self._terminate(f"error while sending init failed message: {exc}")
        if not response.is_success:
            self._terminate(f"runtime api returned status {response.status_code} for init failed message")
        LOGGER.info("successfully sent init error to the runtime api: %s", response.status_code)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RuntimeClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _post(
        self,
        url: str,
        request_id: str,
        *,
        headers: Dict[str, str],
        content: bytes,
    ) -> httpx.Response:
        try:
            return self._http.send("POST", url, headers=headers, content=content)
        except RuntimeApiError as exc:
            LOGGER.error("error when calling runtime api for request %s: %s", request_id, exc)
            raise

    def _terminate(self, message: str) -> NoReturn:
        LOGGER.critical(message)
        self._fatal_handler(message)
        raise SystemExit(1)


class AsyncRuntimeClient:
    def __init__(
        self,
        endpoint: str,
        *,
        api_version: str = DEFAULT_API_VERSION,
        client: Optional[httpx.AsyncClient] = None,
        http_client: Optional[AsyncRuntimeHttpClient] = None,
        fatal_handler: Optional[FatalHandler] = None,
    ) -> None:
        self._config = RuntimeClientConfig(endpoint=endpoint, api_version=api_version)
        self._http = http_client or AsyncRuntimeHttpClient(client=client)
        self._fatal_handler = fatal_handler or exit_process
        LOGGER.debug("starting async runtime client for %s", self._config.base_url)

    @classmethod
    def from_config(cls, config: RuntimeClientConfig, **kwargs: Any) -> "AsyncRuntimeClient":
        return cls(config.endpoint, api_version=config.api_version, **kwargs)

    @classmethod
    def from_env(cls, **kwargs: Any) -> "AsyncRuntimeClient":
        return cls.from_config(RuntimeClientConfig.from_env(), **kwargs)

    @property
    def config(self) -> RuntimeClientConfig:
        return self._config

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    @property
    def api_version(self) -> str:
        return self._config.api_version

    async def poll_next_event(self) -> Tuple[bytes, EventContext]:
        url = _next_url(self._config)
        LOGGER.debug("polling for next event")
        try:
            response = await self._http.send("GET", url, stream=True)
        except RuntimeApiError as exc:
            LOGGER.error("error when fetching next event from runtime api: %s", exc)
            raise
        if not response.is_success:
            await response.aclose()
            raise _poll_status_error(response)
        try:
            context = decode_event_context(response.headers.raw)
        except BaseException:
            await response.aclose()
            raise
        payload = await self._http.read(response)
        LOGGER.debug(
            "received new event for request id %s, event length %d bytes",
            context.request_id,
            len(payload),
        )
        return payload, context

    async def post_response(self, request_id: str, output: bytes) -> None:
        url = _invocation_url(self._config, request_id, "response")
        LOGGER.debug(
            "posting response for request %s to runtime api, response length %d bytes",
            request_id,
            len(output),
        )
        response = await self._post(url, request_id, headers=_RESPONSE_HEADERS, content=output)
        if not response.is_success:
            raise _post_status_error(response, request_id, "sending response")
        LOGGER.debug("posted response to runtime api for request %s", request_id)

    async def post_error(self, request_id: str, error: object) -> None:
        report = build_error_report(error)
        url = _invocation_url(self._config, request_id, "error")
        LOGGER.debug("posting error to runtime api for request %s: %s", request_id, report.error_message)
        response = await self._post(url, request_id, headers=_ERROR_HEADERS, content=report.to_json())
        if not response.is_success:
            raise _post_status_error(response, request_id, "sending error response")
        LOGGER.debug("posted error response for request id %s", request_id)

    async def post_init_failure(self, error: object) -> None:
        report = build_error_report(error)
        url = _init_error_url(self._config)
        LOGGER.error("calling init error runtime api: %s", report.error_message)
        try:
            response = await self._http.send("POST", url, headers=_ERROR_HEADERS, content=report.to_json())
        except RuntimeApiError as exc:
            self._terminate(f"error while sending init failed message: {exc}")
        if not response.is_success:
            self._terminate(f"runtime api returned status {response.status_code} for init failed message")
        LOGGER.info("successfully sent init error to the runtime api: %s", response.status_code)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AsyncRuntimeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _post(
        self,
        url: str,
        request_id: str,
        *,
        headers: Dict[str, str],
        content: bytes,
    ) -> httpx.Response:
        try:
            return await self._http.send("POST", url, headers=headers, content=content)
        except RuntimeApiError as exc:
            LOGGER.error("error when calling runtime api for request %s: %s", request_id, exc)
            raise

    def _terminate(self, message: str) -> NoReturn:
        LOGGER.critical(message)
        self._fatal_handler(message)
        raise SystemExit(1)


def _runtime_url(config: RuntimeClientConfig, *segments: str) -> str:
    path = "/".join(segments)
    return f"{config.base_url}/{config.api_version}/runtime/{path}"


def _next_url(config: RuntimeClientConfig) -> str:
    return _runtime_url(config, "invocation", "next")


def _invocation_url(config: RuntimeClientConfig, request_id: str, action: str) -> str:
    return _runtime_url(config, "invocation", quote(request_id, safe=""), action)


def _init_error_url(config: RuntimeClientConfig) -> str:
    return _runtime_url(config, "init", "error")


def _poll_status_error(response: httpx.Response) -> HTTPStatusError:
    status = response.status_code
    if response.is_server_error:
        LOGGER.error("runtime api returned server error when polling for new events: %s", status)
        return HTTPStatusError(
            "polling for events",
            status,
            response_headers=dict(response.headers),
            unrecoverable=True,
        )
    LOGGER.error("runtime api returned error status when polling for new events: %s", status)
    return HTTPStatusError("polling for events", status, response_headers=dict(response.headers))


def _post_status_error(response: httpx.Response, request_id: str, operation: str) -> HTTPStatusError:
    LOGGER.error(
        "error from runtime api when %s for request %s: %s",
        operation,
        request_id,
        response.status_code,
    )
    return HTTPStatusError(
        operation,
        response.status_code,
        response_text=response.text,
        response_headers=dict(response.headers),
    )
