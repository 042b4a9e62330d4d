from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from time import monotonic
from typing import Any

import httpx

from bridgecore.adapters.bridge_api import ApiEnvelope
from bridgecore.adapters.retry import BackoffPolicy, call_with_backoff, parse_retry_after
from bridgecore.domain.errors import TransportError
from bridgecore.security.redaction import sanitize_mapping, sanitize_text

logger = logging.getLogger(__name__)

_ERROR_SNIPPET_LIMIT = 240


class RestErrorKind(StrEnum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    CLIENT = "client"
    PAYLOAD = "payload"


_RETRYABLE_KINDS = {RestErrorKind.NETWORK, RestErrorKind.RATE_LIMIT, RestErrorKind.SERVER}


@dataclass(frozen=True)
class RestReliabilityConfig:
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 10.0
    write_timeout_seconds: float = 10.0
    pool_timeout_seconds: float = 5.0
    max_attempts: int = 3
    base_delay_seconds: float = 0.4
    max_delay_seconds: float = 4.0

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.base_delay_seconds,
            max_delay_seconds=self.max_delay_seconds,
        )


class BridgeHttpClient:
    """Signed JSON client for the exchange engine's v2 API.

    Every endpoint is a POST to ``/api/v2/<method>``; the body is signed with
    HMAC-SHA256 of the API secret and sent with ``X-API-KEY`` / ``X-API-SIGN``.
    Order creation, status checks and emergency actions are never retried here:
    creation is not idempotent, and polling relies on its own schedule.
    """

    BASE_URL = "https://ff.io"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_secret: str | None = None,
        base_url: str | None = None,
        reliability: RestReliabilityConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_key = api_key or ""
        self.api_secret = api_secret or ""
        self.reliability = reliability or RestReliabilityConfig()
        self._sleep_fn = sleep_fn
        timeout = httpx.Timeout(
            connect=self.reliability.connect_timeout_seconds,
            read=self.reliability.read_timeout_seconds,
            write=self.reliability.write_timeout_seconds,
            pool=self.reliability.pool_timeout_seconds,
        )
        self._client = client or httpx.AsyncClient(
            base_url=base_url or self.BASE_URL, timeout=timeout
        )

    async def __aenter__(self) -> BridgeHttpClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_currencies(self) -> ApiEnvelope:
        return await self.request("ccies", {})

    async def calculate_price(
        self,
        from_currency: str,
        to_currency: str,
        amount: str,
        order_type: str,
    ) -> ApiEnvelope:
        return await self.request(
            "price",
            {
                "fromCcy": from_currency,
                "toCcy": to_currency,
                "amount": amount,
                "direction": "from",
                "type": order_type,
            },
        )

    async def create_order(
        self,
        from_currency: str,
        to_currency: str,
        amount: str,
        destination_address: str,
        order_type: str,
        rate: str,
    ) -> ApiEnvelope:
        body: dict[str, Any] = {
            "fromCcy": from_currency,
            "toCcy": to_currency,
            "amount": amount,
            "direction": "from",
            "type": order_type,
            "toAddress": destination_address,
        }
        if rate:
            body["rate"] = rate
        return await self.request("create", body, retry=False)

    async def check_order_status(self, order_id: str, token: str) -> ApiEnvelope:
        return await self.request("order", {"id": order_id, "token": token}, retry=False)

    async def emergency_action(
        self,
        order_id: str,
        token: str,
        choice: str,
        address: str | None = None,
    ) -> ApiEnvelope:
        body: dict[str, Any] = {"id": order_id, "token": token, "choice": choice}
        if address:
            body["address"] = address
        return await self.request("emergency", body, retry=False)

    async def request(
        self,
        method: str,
        body: dict[str, Any],
        *,
        retry: bool = True,
    ) -> ApiEnvelope:
        path = f"/api/v2/{method}"
        content = json.dumps(body, separators=(",", ":"), sort_keys=True).encode("utf-8")

        async def _send() -> ApiEnvelope:
            started = monotonic()
            try:
                response = await self._client.post(
                    path, content=content, headers=self._signed_headers(content)
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                raise self._failure(RestErrorKind.NETWORK, path, str(exc)) from exc

            logger.debug(
                "bridge_request_completed",
                extra={
                    "extra": {
                        "path": path,
                        "status_code": response.status_code,
                        "latency_ms": round((monotonic() - started) * 1000, 1),
                        "request": sanitize_mapping(body),
                    }
                },
            )
            if response.status_code >= 400:
                raise self._http_failure(response, path)

            try:
                payload = response.json()
            except ValueError as exc:
                raise self._failure(
                    RestErrorKind.PAYLOAD,
                    path,
                    "engine response is not JSON",
                    status_code=response.status_code,
                ) from exc
            if not isinstance(payload, dict):
                raise self._failure(
                    RestErrorKind.PAYLOAD,
                    path,
                    "engine payload must be an object",
                    status_code=response.status_code,
                )
            return payload

        return await call_with_backoff(
            _send,
            policy=self.reliability.backoff,
            max_attempts=None if retry else 1,
            sleep_fn=self._sleep_fn,
        )

    def _signed_headers(self, content: bytes) -> dict[str, str]:
        signature = hmac.new(
            self.api_secret.encode("utf-8"), content, hashlib.sha256
        ).hexdigest()
        return {
            "Accept": "application/json",
            "Content-Type": "application/json; charset=UTF-8",
            "X-API-KEY": self.api_key,
            "X-API-SIGN": signature,
        }

    def _failure(
        self,
        kind: RestErrorKind,
        path: str,
        detail: str,
        *,
        status_code: int | None = None,
        retry_after_seconds: float | None = None,
    ) -> TransportError:
        detail = sanitize_text(detail, known_secrets=(self.api_key, self.api_secret))
        return TransportError(
            f"bridge request {path} failed kind={kind.value}: {detail}",
            status_code=status_code,
            request_path=path,
            retryable=kind in _RETRYABLE_KINDS,
            retry_after_seconds=retry_after_seconds,
        )

    def _http_failure(self, response: httpx.Response, path: str) -> TransportError:
        kind = RestErrorKind.CLIENT
        if response.status_code == 429:
            kind = RestErrorKind.RATE_LIMIT
        elif response.status_code >= 500:
            kind = RestErrorKind.SERVER
        snippet = response.text.strip().replace("\n", " ")[:_ERROR_SNIPPET_LIMIT]
        return self._failure(
            kind,
            path,
            snippet,
            status_code=response.status_code,
            retry_after_seconds=parse_retry_after(response.headers.get("retry-after")),
        )
