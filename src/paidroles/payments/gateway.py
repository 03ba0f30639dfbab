"""Midtrans payment gateway client (Snap checkout and Core API status)."""

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from paidroles.config.settings import AppConfig, get_config
from paidroles.errors import CallResult

logger = logging.getLogger(__name__)

SNAP_URLS = {
    "sandbox": "https://app.sandbox.midtrans.com/snap/v1",
    "production": "https://app.midtrans.com/snap/v1",
}
CORE_API_URLS = {
    "sandbox": "https://api.sandbox.midtrans.com/v2",
    "production": "https://api.midtrans.com/v2",
}


class MidtransClient:
    """Thin async client for the two gateway calls this service needs.

    Every call is bounded by the configured timeout. Network errors, timeouts
    and 5xx responses are retried with linear backoff; anything else is
    returned as a failed ``CallResult`` without retrying.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
        snap_url: Optional[str] = None,
        core_api_url: Optional[str] = None,
        backoff_seconds: float = 1.0,
    ):
        self.config = config or get_config()
        self._session = session
        self.snap_url = snap_url or SNAP_URLS[self.config.midtrans_environment]
        self.core_api_url = core_api_url or CORE_API_URLS[self.config.midtrans_environment]
        self.backoff_seconds = backoff_seconds

    def _auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.config.midtrans_server_key.get_secret_value(), "")

    async def create_transaction(
        self,
        order_id: str,
        amount: int,
        customer_email: Optional[str],
        item_name: str,
        member_id: Optional[str] = None,
    ) -> CallResult:
        """Create a Snap checkout.

        Returns:
            CallResult with ``redirect_url`` and ``token`` in ``data`` on success
        """
        if not self.config.midtrans_server_key.get_secret_value():
            return CallResult.fail("midtrans_server_key not configured")

        body: dict[str, Any] = {
            "transaction_details": {"order_id": order_id, "gross_amount": amount},
            "item_details": [
                {"id": item_name, "price": amount, "quantity": 1, "name": item_name}
            ],
        }
        if customer_email:
            body["customer_details"] = {"email": customer_email}
        if member_id:
            body["custom_field1"] = member_id

        result = await self._request("POST", f"{self.snap_url}/transactions", json=body)
        if not result.success:
            logger.error(f"Gateway create_transaction failed for {order_id}: {result.error}")
            return result

        redirect_url = result.data.get("redirect_url")
        if not redirect_url:
            return CallResult.fail("Gateway response missing redirect_url", result.status)

        logger.info(f"Created gateway transaction for order {order_id}")
        return CallResult.ok(redirect_url=redirect_url, token=result.data.get("token"))

    async def get_transaction_status(self, order_id: str) -> CallResult:
        """Fetch the current status of an order.

        Returns:
            CallResult whose ``data`` is the gateway's status document
            (``transaction_status``, ``status_code``, ``gross_amount`` ...)
        """
        if not self.config.midtrans_server_key.get_secret_value():
            return CallResult.fail("midtrans_server_key not configured")

        result = await self._request("GET", f"{self.core_api_url}/{order_id}/status")
        if result.success and "transaction_status" not in result.data:
            return CallResult.fail("Gateway response missing transaction_status", result.status)
        return result

    async def _request(self, method: str, url: str, **kwargs: Any) -> CallResult:
        attempts = self.config.gateway_max_retries + 1
        last = CallResult.fail("no attempt made")

        for attempt in range(1, attempts + 1):
            last = await self._request_once(method, url, **kwargs)
            transient = not last.success and (last.status is None or last.status >= 500)
            if last.success or not transient or attempt == attempts:
                return last

            delay = attempt * self.backoff_seconds
            logger.warning(
                f"Gateway {method} {url} failed ({last.error}), "
                f"retry {attempt}/{attempts - 1} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

        return last

    async def _request_once(self, method: str, url: str, **kwargs: Any) -> CallResult:
        timeout = aiohttp.ClientTimeout(total=self.config.gateway_request_timeout_seconds)
        headers = {"Accept": "application/json", "Content-Type": "application/json"}

        try:
            if self._session is not None:
                return await self._send(self._session, method, url, headers, timeout, **kwargs)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                return await self._send(session, method, url, headers, timeout, **kwargs)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return CallResult.fail(f"Gateway request failed: {e!r}")

    async def _send(
        self,
        session: aiohttp.ClientSession,
        method: str,
        url: str,
        headers: dict[str, str],
        timeout: aiohttp.ClientTimeout,
        **kwargs: Any,
    ) -> CallResult:
        async with session.request(
            method, url, headers=headers, auth=self._auth(), timeout=timeout, **kwargs
        ) as resp:
            if resp.status >= 400:
                text = await resp.text()
                return CallResult.fail(f"Gateway API error: {resp.status} {text}", resp.status)
            data = await resp.json(content_type=None)
            return CallResult(success=True, status=resp.status, data=data or {})
