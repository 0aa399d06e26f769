"""SideShift client: creates fixed-rate quotes and shifts over the v2 REST API."""

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any

from swap_scheduler.execution.base import ExchangeError, Quote, QuoteError, ShiftOrder

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://sideshift.ai/api/v2"


class SideShiftClient:
    """Create quotes and orders on SideShift.

    An error payload on a quote response is returned in :attr:`Quote.error`;
    every other failure (network error, timeout, HTTP error on order creation,
    undecodable body) raises :class:`ExchangeError`.
    """

    def __init__(
        self,
        *,
        api_secret: str | None = None,
        affiliate_id: str = "",
        base_url: str = DEFAULT_BASE_URL,
        client_ip: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._api_secret = api_secret
        self._affiliate_id = affiliate_id
        self._base_url = base_url.rstrip("/")
        self._client_ip = client_ip
        self._timeout = timeout

    def create_quote(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: str,
    ) -> Quote:
        """Request a fixed-rate quote for depositing ``amount`` of ``from_asset``."""
        body: dict[str, Any] = {
            "depositCoin": from_asset,
            "depositNetwork": from_network,
            "settleCoin": to_asset,
            "settleNetwork": to_network,
            "depositAmount": str(amount),
        }
        if self._affiliate_id:
            body["affiliateId"] = self._affiliate_id
        try:
            data = self._post("/quotes", body)
        except urllib.error.HTTPError as exc:
            message = self._error_message(exc)
            logger.warning("Quote %s/%s -> %s/%s rejected: %s", from_asset, from_network, to_asset, to_network, message)
            return Quote(id="", error=QuoteError(code=str(exc.code), message=message))
        return Quote.from_api(data)

    def create_order(self, quote_id: str, settle_address: str, refund_address: str) -> ShiftOrder:
        """Create a fixed shift from a quote."""
        body: dict[str, Any] = {
            "quoteId": quote_id,
            "settleAddress": settle_address,
            "refundAddress": refund_address,
        }
        if self._affiliate_id:
            body["affiliateId"] = self._affiliate_id
        try:
            data = self._post("/shifts/fixed", body)
        except urllib.error.HTTPError as exc:
            msg = f"Order creation failed for quote {quote_id}: {self._error_message(exc)}"
            raise ExchangeError(msg) from exc
        order = ShiftOrder.from_api(data)
        if not order.id:
            msg = f"Order creation for quote {quote_id} returned no order id"
            raise ExchangeError(msg)
        return order

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_secret:
            headers["x-sideshift-secret"] = self._api_secret
        if self._client_ip:
            headers["x-user-ip"] = self._client_ip
        return headers

    def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        """POST JSON and decode the response.

        :class:`urllib.error.HTTPError` propagates so callers can read the
        error body; all other failures become :class:`ExchangeError`.
        """
        req = urllib.request.Request(
            f"{self._base_url}{path}",
            data=json.dumps(body).encode(),
            headers=self._headers(),
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:  # noqa: S310
                payload = json.loads(resp.read().decode())
        except urllib.error.HTTPError:
            raise
        except Exception as exc:
            msg = f"SideShift request to {path} failed: {exc}"
            raise ExchangeError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"Unexpected SideShift response for {path}"
            raise ExchangeError(msg)
        return payload

    @staticmethod
    def _error_message(exc: urllib.error.HTTPError) -> str:
        try:
            data = json.loads(exc.read().decode("utf-8", errors="replace"))
        except (ValueError, OSError):
            return f"HTTP {exc.code}"
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return f"HTTP {exc.code}"

    @staticmethod
    def from_env(
        *,
        api_key_env: str = "SIDESHIFT_SECRET",
        affiliate_id_env: str = "SIDESHIFT_AFFILIATE_ID",
        base_url: str = DEFAULT_BASE_URL,
        client_ip: str | None = None,
        timeout: float = 15.0,
    ) -> "SideShiftClient":
        """Create a client from environment variables."""
        api_secret = os.environ.get(api_key_env)
        if not api_secret:
            msg = f"{api_key_env} environment variable is required for live swaps"
            raise ValueError(msg)
        return SideShiftClient(
            api_secret=api_secret,
            affiliate_id=os.environ.get(affiliate_id_env, ""),
            base_url=base_url,
            client_ip=client_ip,
            timeout=timeout,
        )
