from typing import Mapping, Optional

import httpx

from .exceptions import InvalidEndpointError, TransportError


def _default_timeout() -> httpx.Timeout:
    # long polls on /next may wait indefinitely for an event
    return httpx.Timeout(None)


def _default_limits() -> httpx.Limits:
    return httpx.Limits(max_keepalive_connections=4, keepalive_expiry=None)


class RuntimeHttpClient:
    def __init__(self, *, session: Optional[httpx.Client] = None) -> None:
        self._session = session or httpx.Client(timeout=_default_timeout(), limits=_default_limits())

    def send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        content: Optional[bytes] = None,
        stream: bool = False,
    ) -> httpx.Response:
        try:
            request = self._session.build_request(
                method.upper(),
                url,
                headers=dict(headers or {}),
                content=content,
            )
            return self._session.send(request, stream=stream)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidEndpointError(f"invalid runtime api url {url!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method.upper()} {url} failed: {exc}") from exc

    def read(self, response: httpx.Response) -> bytes:
        try:
            return response.read()
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to read response body: {exc}") from exc
        finally:
            response.close()

    def close(self) -> None:
        self._session.close()


class AsyncRuntimeHttpClient:
    def __init__(self, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=_default_timeout(), limits=_default_limits())

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        content: Optional[bytes] = None,
        stream: bool = False,
    ) -> httpx.Response:
        try:
            request = self._client.build_request(
                method.upper(),
                url,
                headers=dict(headers or {}),
                content=content,
            )
            return await self._client.send(request, stream=stream)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidEndpointError(f"invalid runtime api url {url!r}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method.upper()} {url} failed: {exc}") from exc

    async def read(self, response: httpx.Response) -> bytes:
        try:
            return await response.aread()
        except httpx.HTTPError as exc:
            raise TransportError(f"failed to read response body: {exc}") from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()
