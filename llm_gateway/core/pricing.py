"""
Pricing calculations and rate management.

Holds per-model unit prices, computes request costs, and refreshes the
table from a price feed once it has gone stale.
"""

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Dict, Optional

from ..storage.blobs import BlobStore
from .errors import PersistenceError
from .price_feed import PriceFeed, PriceFeedError

logger = logging.getLogger(__name__)

PRICES_KEY = "llmPrices"
REFRESH_INTERVAL = timedelta(hours=24)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PricingEntry:
    """Per-1K-token pricing for a specific model."""
    model: str
    input_price: float  # Cost per 1K prompt tokens
    output_price: float  # Cost per 1K completion tokens
    last_updated: datetime

    def __post_init__(self):
        """Validate prices are non-negative."""
        if not self.model:
            raise ValueError("model is required")
        if self.input_price < 0:
            raise ValueError("input_price must be >= 0")
        if self.output_price < 0:
            raise ValueError("output_price must be >= 0")

    def to_dict(self) -> Dict:
        return {
            "model": self.model,
            "inputPrice": self.input_price,
            "outputPrice": self.output_price,
            "lastUpdated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PricingEntry":
        last_updated = datetime.fromisoformat(data["lastUpdated"])
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return cls(
            model=data["model"],
            input_price=float(data["inputPrice"]),
            output_price=float(data["outputPrice"]),
            last_updated=last_updated,
        )


# Built-in price list seeded on first use, per 1K tokens
DEFAULT_PRICES: Dict[str, tuple] = {
    "gpt-4": (0.03, 0.06),
    "gpt-4-32k": (0.06, 0.12),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-3.5-turbo": (0.0015, 0.002),
    "gpt-3.5-turbo-16k": (0.003, 0.004),
    "claude-2": (0.008, 0.024),
    "claude-instant-1": (0.0008, 0.0024),
    "claude-3-opus": (0.015, 0.075),
    "claude-3-5-sonnet": (0.003, 0.015),
    "claude-3-haiku": (0.00025, 0.00125),
}


class PricingTable:
    """Per-model price lookup with a time-gated refresh.

    The table is loaded from the blob store at construction. When nothing
    has been persisted yet, the built-in price list is seeded and written
    back immediately.

    Failed refreshes never move the staleness clock: a refresh is attempted
    on every call to ``refresh_if_stale`` once the interval has elapsed since
    the last successful refresh.
    """

    def __init__(
        self,
        blobs: BlobStore,
        feed: Optional[PriceFeed] = None,
        clock: Callable[[], datetime] = utcnow,
        refresh_interval: timedelta = REFRESH_INTERVAL,
    ):
        """Initialize the pricing table.

        Args:
            blobs: Persistence boundary holding the price snapshot
            feed: Source of fresh prices; refreshes fail softly without one
            clock: Wall-clock source returning aware UTC datetimes
            refresh_interval: Age after which the table is considered stale

        Raises:
            PersistenceError: If the stored snapshot cannot be read or parsed
        """
        if refresh_interval <= timedelta(0):
            raise ValueError("refresh_interval must be positive")

        self._blobs = blobs
        self._feed = feed
        self._clock = clock
        self._refresh_interval = refresh_interval
        self._lock = threading.Lock()
        self._prices: Dict[str, PricingEntry] = {}
        self._last_refreshed: Optional[datetime] = None
        self._load()

    @property
    def last_refreshed(self) -> Optional[datetime]:
        """Time of the last successful refresh (or of the seed)."""
        return self._last_refreshed

    @property
    def refresh_interval(self) -> timedelta:
        return self._refresh_interval

    def get_pricing(self, model: str) -> Optional[PricingEntry]:
        """Get pricing for a model, or None if the model is unknown."""
        return self._prices.get(model)

    def get_all_prices(self) -> Dict[str, PricingEntry]:
        """Return a copy of the whole table keyed by model."""
        return dict(self._prices)

    def calculate_cost(self, model: str, input_tokens: int, output_tokens: int) -> float:
        """Calculate the cost of a request for a model.

        Args:
            model: Model identifier
            input_tokens: Prompt tokens consumed
            output_tokens: Completion tokens generated

        Returns:
            Cost in currency units, or 0.0 if the model has no pricing
        """
        pricing = self._prices.get(model)
        if pricing is None:
            return 0.0

        # Calculate prompt cost: (tokens / 1000) * cost_per_1k
        prompt_cost = (Decimal(input_tokens) / Decimal("1000")) * Decimal(str(pricing.input_price))

        # Calculate completion cost: (tokens / 1000) * cost_per_1k
        completion_cost = (Decimal(output_tokens) / Decimal("1000")) * Decimal(str(pricing.output_price))

        return float(prompt_cost + completion_cost)

    def is_stale(self) -> bool:
        """True if the refresh interval has elapsed since the last successful refresh."""
        if self._last_refreshed is None:
            return True
        return self._clock() - self._last_refreshed > self._refresh_interval

    def refresh_if_stale(self) -> bool:
        """Refresh prices from the feed if the table is stale.

        Failures are logged and leave the table untouched; they are never
        raised to the caller.

        Returns:
            True if a refresh happened and succeeded, False otherwise
        """
        if not self.is_stale():
            logger.debug("Pricing table is fresh, last refreshed at %s", self._last_refreshed)
            return False

        if self._feed is None:
            logger.warning("Pricing table is stale but no price feed is configured")
            return False

        try:
            fetched = self._feed.fetch_prices()
        except PriceFeedError as e:
            logger.warning("Failed to fetch latest LLM prices: %s", e)
            return False

        if not fetched:
            logger.warning("Price feed returned no prices, keeping current table")
            return False

        now = self._clock()
        updated = dict(self._prices)
        try:
            for model, (input_price, output_price) in fetched.items():
                updated[model] = PricingEntry(
                    model=model,
                    input_price=float(input_price),
                    output_price=float(output_price),
                    last_updated=now,
                )
        except (TypeError, ValueError) as e:
            logger.warning("Price feed returned invalid prices: %s", e)
            return False

        with self._lock:
            self._prices = updated
            self._last_refreshed = now

        try:
            self._save()
        except PersistenceError:
            # In-memory prices stay in force for this session
            logger.error("Refreshed prices could not be persisted")

        logger.info("Refreshed pricing for %d models", len(fetched))
        return True

    def _load(self) -> None:
        raw = self._blobs.read_blob(PRICES_KEY)
        if raw is None:
            self._seed_defaults()
            return

        try:
            data = json.loads(raw)
            prices = {
                model: PricingEntry.from_dict(entry)
                for model, entry in data.items()
            }
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error("Stored pricing table is unreadable: %s", e)
            raise PersistenceError(f"Invalid pricing snapshot: {e}") from e

        if not prices:
            self._seed_defaults()
            return

        self._prices = prices
        self._last_refreshed = max(entry.last_updated for entry in prices.values())

    def _seed_defaults(self) -> None:
        now = self._clock()
        self._prices = {
            model: PricingEntry(
                model=model,
                input_price=input_price,
                output_price=output_price,
                last_updated=now,
            )
            for model, (input_price, output_price) in DEFAULT_PRICES.items()
        }
        self._last_refreshed = now
        logger.info("Seeded default pricing for %d models", len(self._prices))
        try:
            self._save()
        except PersistenceError:
            logger.error("Default pricing is kept in memory only")

    def _save(self) -> None:
        snapshot = {model: entry.to_dict() for model, entry in self._prices.items()}
        try:
            self._blobs.write_blob(PRICES_KEY, json.dumps(snapshot))
        except PersistenceError as e:
            logger.error("Failed to persist pricing table: %s", e)
            raise

