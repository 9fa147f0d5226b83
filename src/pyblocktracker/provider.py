"""Block number providers: the query capability polled by the tracker."""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any, Protocol

import aiohttp
from pydantic import ValidationError

from pyblocktracker._redact import redact_url
from pyblocktracker.exceptions import RpcResponseError, RpcTransportError
from pyblocktracker.models import JsonRpcRequest, JsonRpcResponse

_logger = logging.getLogger(__name__)


class BlockNumberProvider(Protocol):
    """Structural provider interface used by the tracker.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (`JsonRpcProvider`) concrete.
    Any failure (network error, error payload, transport exception) is
    raised; the tracker treats them all alike.
    """

    async def fetch_block_number(self, *, skip_cache: bool = False) -> str:
        ...


class JsonRpcProvider:
    """Fetch ``eth_blockNumber`` from an Ethereum JSON-RPC endpoint over HTTP.

    Usage::

        async with JsonRpcProvider("https://rpc.example.org") as provider:
            number = await provider.fetch_block_number()
    """

    def __init__(
        self,
        url: str,
        *,
        http_session: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._external_session = http_session is not None
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> JsonRpcProvider:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http is not None:
            await self._http.close()
            self._http = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
        return self._http

    async def fetch_block_number(self, *, skip_cache: bool = False) -> str:
        request = JsonRpcRequest(
            id=secrets.randbits(32),
            method="eth_blockNumber",
            skip_cache=True if skip_cache else None,
        )
        response = await self._post(request)
        if response.error is not None:
            raise RpcResponseError(
                f"BlockTracker - encountered error fetching block:\n{response.error.message}",
                code=response.error.code,
                data=response.error.data,
            )
        if not isinstance(response.result, str):
            raise RpcResponseError(f"eth_blockNumber returned a non-string result: {response.result!r}")
        return response.result

    async def _post(self, request: JsonRpcRequest) -> JsonRpcResponse:
        http = self._require_session()
        safe_url = redact_url(self._url)
        _logger.debug("POST %s %s id=%s", safe_url, request.method, request.id)

        try:
            async with http.post(self._url, json=request.to_payload(), timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise RpcTransportError(
                        f"HTTP {resp.status} from {safe_url}: {text[:200]}",
                        status_code=resp.status,
                        url=safe_url,
                    )
        except RpcTransportError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise RpcTransportError(
                f"Request to {safe_url} failed: {exc!r}",
                url=safe_url,
            ) from exc

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise RpcTransportError(
                f"Invalid JSON from {safe_url}: {text[:200]}",
                url=safe_url,
            ) from exc

        try:
            return JsonRpcResponse.model_validate(body)
        except ValidationError as exc:
            raise RpcTransportError(
                f"Malformed JSON-RPC response from {safe_url}: {text[:200]}",
                url=safe_url,
            ) from exc
