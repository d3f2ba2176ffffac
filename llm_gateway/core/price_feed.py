"""
Price feeds for refreshing the pricing table.

A feed returns fresh per-1K-token prices keyed by model. The pricing table
only depends on the ``PriceFeed`` protocol, so any source can be plugged in.
"""

import logging
from typing import Dict, Mapping, Protocol, Tuple

import httpx

logger = logging.getLogger(__name__)

ModelPrices = Dict[str, Tuple[float, float]]


class PriceFeedError(Exception):
    """Raised when a feed cannot produce prices."""


class PriceFeed(Protocol):
    """Source of fresh model prices."""

    def fetch_prices(self) -> ModelPrices:
        """Return (input_price, output_price) per 1K tokens keyed by model.

        Raises:
            PriceFeedError: If prices cannot be fetched or parsed
        """
        ...


class StaticPriceFeed:
    """Feed that always returns the same prices."""

    def __init__(self, prices: Mapping[str, Tuple[float, float]]):
        self._prices = dict(prices)

    def fetch_prices(self) -> ModelPrices:
        return dict(self._prices)


class HttpPriceFeed:
    """Feed that downloads a JSON price document over HTTP.

    Accepted documents are either ``{"prices": {model: entry}}`` or the
    ``{model: entry}`` mapping itself, where each entry carries
    ``inputPrice``/``outputPrice`` (or ``input_price``/``output_price``)
    in currency units per 1K tokens.
    """

    def __init__(self, url: str, timeout: float = 10.0):
        """Initialize the feed.

        Args:
            url: Location of the JSON price document
            timeout: Request timeout in seconds

        Raises:
            ValueError: If url is empty or timeout is not positive
        """
        if not url or not url.strip():
            raise ValueError("url is required and cannot be empty")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.url = url
        self.timeout = timeout

    def fetch_prices(self) -> ModelPrices:
        logger.debug("Fetching prices from %s", self.url)
        try:
            response = httpx.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPError as e:
            raise PriceFeedError(f"Price feed request failed: {e}") from e
        except ValueError as e:
            raise PriceFeedError(f"Price feed returned invalid JSON: {e}") from e

        return parse_price_document(document)


def parse_price_document(document) -> ModelPrices:
    """Parse a price document into (input, output) tuples keyed by model.

    Raises:
        PriceFeedError: If the document does not have the expected shape
    """
    if isinstance(document, dict) and "prices" in document:
        document = document["prices"]
    if not isinstance(document, dict):
        raise PriceFeedError("Price document must be a JSON object")

    prices: ModelPrices = {}
    for model, entry in document.items():
        if not isinstance(entry, dict):
            raise PriceFeedError(f"Price entry for '{model}' must be an object")

        input_price = entry.get("inputPrice", entry.get("input_price"))
        output_price = entry.get("outputPrice", entry.get("output_price"))
        for value in (input_price, output_price):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise PriceFeedError(f"Invalid price for '{model}': {value!r}")

        prices[model] = (float(input_price), float(output_price))

    return prices
