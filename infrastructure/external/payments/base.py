"""
Shared HTTP plumbing for gateway adapters: pooled httpx client, connect-error
retries, BOM-tolerant JSON decoding and provider response-code mapping.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Optional

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from application.ports.payment_gateway import (
    GatewayTimeoutError,
    GatewayTransportError,
    PaymentGateway,
)
from shared.codes.payment_codes import GATEWAY_RESPONSE_CODES, OUTCOME_ERROR


logger = get_logger(__name__)


class BasePaymentClient(PaymentGateway):
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 5.0, "read": 30.0, "write": 10.0, "total": 30.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    def _http(self) -> httpx.AsyncClient:
        # One pooled client per gateway instance, closed by aclose() on shutdown
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def _retry(self, fn: Callable[[], Any]):
        # Connection setup failures only; the request never reached the gateway
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _post_json(self, url: str, payload: dict[str, Any], *, retry: bool) -> dict[str, Any]:
        """POST a JSON body and decode the JSON reply.

        httpx failures are translated to GatewayTransportError / GatewayTimeoutError.
        """
        async def _send() -> httpx.Response:
            return await self._http().post(
                url,
                content=json.dumps(payload),
                headers={"Content-Type": "application/json"},
            )

        try:
            resp = await (self._retry(_send) if retry else _send())
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise GatewayTransportError(f"Could not connect to {self.provider}", cause=e) from e
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"Timed out waiting for {self.provider}", cause=e) from e
        except httpx.HTTPError as e:
            raise GatewayTransportError(f"HTTP error talking to {self.provider}: {e}", cause=e) from e

        if resp.status_code >= 400:
            raise GatewayTransportError(
                f"{self.provider} returned HTTP {resp.status_code}"
            )
        return self._decode(resp.content)

    def _decode(self, raw: bytes) -> dict[str, Any]:
        # utf-8-sig drops a leading byte-order mark when present
        try:
            data = json.loads(raw.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise GatewayTransportError(f"Unreadable reply from {self.provider}", cause=e) from e
        if not isinstance(data, dict):
            raise GatewayTransportError(f"Unexpected reply shape from {self.provider}")
        return data

    # Helpers
    def _map_outcome(self, response_code: Optional[str]) -> str:
        mapping = GATEWAY_RESPONSE_CODES.get(self.provider, {})
        return mapping.get(str(response_code), OUTCOME_ERROR)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
