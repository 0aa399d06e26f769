"""PriceOracle protocol for the price lookup layer.

The CoinGecko oracle and any test double satisfy this protocol via
structural typing.  Implementations return ``None`` for an asset they cannot
price instead of raising, so callers can skip the affected orders.
"""

from typing import Protocol


class PriceOracle(Protocol):
    """Structural protocol for current-price lookups (USD)."""

    def get_current_price(self, asset: str) -> float | None: ...

    def get_multiple_prices(self, assets: list[str]) -> dict[str, float | None]: ...
