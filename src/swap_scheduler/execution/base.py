"""Exchange client protocol and the quote/order models it returns."""

from typing import Any, Protocol

from pydantic import BaseModel


class ExchangeError(RuntimeError):
    """Raised when a quote or order request fails (network, timeout, HTTP or payload error)."""


class QuoteError(BaseModel):
    """Error payload returned in place of a usable quote."""

    code: str = ""
    message: str


def _parse_error(raw: Any) -> QuoteError | None:
    if not raw:
        return None
    if isinstance(raw, dict):
        return QuoteError(code=str(raw.get("code") or ""), message=str(raw.get("message") or "unknown error"))
    return QuoteError(message=str(raw))


class Quote(BaseModel):
    """A fixed-rate quote for a swap."""

    id: str
    deposit_coin: str = ""
    deposit_network: str = ""
    settle_coin: str = ""
    settle_network: str = ""
    deposit_amount: str = ""
    settle_amount: str = ""
    rate: str = ""
    expires_at: str = ""
    error: QuoteError | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Quote":
        """Parse a quote from the exchange's JSON response."""
        error = data.get("error")
        return cls(
            id=str(data.get("id") or ""),
            deposit_coin=str(data.get("depositCoin") or ""),
            deposit_network=str(data.get("depositNetwork") or ""),
            settle_coin=str(data.get("settleCoin") or ""),
            settle_network=str(data.get("settleNetwork") or ""),
            deposit_amount=str(data.get("depositAmount") or ""),
            settle_amount=str(data.get("settleAmount") or ""),
            rate=str(data.get("rate") or ""),
            expires_at=str(data.get("expiresAt") or ""),
            error=_parse_error(error),
        )


class ShiftOrder(BaseModel):
    """An order created on the exchange from a quote."""

    id: str
    deposit_address: str = ""
    deposit_memo: str | None = None
    deposit_coin: str = ""
    deposit_amount: str = ""
    settle_address: str = ""
    settle_amount: str = ""
    status: str = "pending"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ShiftOrder":
        """Parse an order; ``depositAddress`` may be a plain string or ``{address, memo}``."""
        deposit = data.get("depositAddress")
        if isinstance(deposit, dict):
            address = str(deposit.get("address") or "")
            memo = deposit.get("memo") or None
        else:
            address = str(deposit or "")
            memo = data.get("depositMemo") or None
        settle = data.get("settleAddress")
        if isinstance(settle, dict):
            settle = settle.get("address")
        return cls(
            id=str(data.get("id") or ""),
            deposit_address=address,
            deposit_memo=memo,
            deposit_coin=str(data.get("depositCoin") or ""),
            deposit_amount=str(data.get("depositAmount") or ""),
            settle_address=str(settle or ""),
            settle_amount=str(data.get("settleAmount") or ""),
            status=str(data.get("status") or "pending"),
        )


class ExchangeClient(Protocol):
    """Structural protocol for the swap provider."""

    def create_quote(
        self,
        from_asset: str,
        from_network: str,
        to_asset: str,
        to_network: str,
        amount: str,
    ) -> Quote: ...

    def create_order(self, quote_id: str, settle_address: str, refund_address: str) -> ShiftOrder: ...
