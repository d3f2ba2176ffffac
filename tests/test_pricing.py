"""
Unit tests for pricing calculations and refresh policy.

Tests cost accuracy, seeding, persistence and staleness handling.
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from llm_gateway.core.errors import PersistenceError
from llm_gateway.core.price_feed import PriceFeedError, StaticPriceFeed
from llm_gateway.core.pricing import (
    DEFAULT_PRICES,
    PRICES_KEY,
    PricingEntry,
    PricingTable,
)
from llm_gateway.core.token_counter import TokenUsage
from llm_gateway.storage.blobs import InMemoryBlobStore

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable wall clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FailingBlobStore(InMemoryBlobStore):
    """Blob store whose writes always fail."""

    def write_blob(self, key: str, text: str) -> None:
        raise PersistenceError("quota exceeded")


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        """Verify zero token handling."""
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0

    def test_negative_tokens_rejected(self):
        """Verify negative counts are rejected."""
        with pytest.raises(ValueError, match="prompt_tokens must be >= 0"):
            TokenUsage(prompt_tokens=-1, completion_tokens=0)


class TestPricingEntry:
    """Test PricingEntry validation."""

    def test_negative_price_rejected(self):
        with pytest.raises(ValueError, match="input_price must be >= 0"):
            PricingEntry(model="gpt-4", input_price=-0.01, output_price=0.06, last_updated=START)

    def test_naive_timestamp_read_as_utc(self):
        entry = PricingEntry.from_dict({
            "model": "gpt-4",
            "inputPrice": 0.03,
            "outputPrice": 0.06,
            "lastUpdated": "2024-01-01T12:00:00",
        })
        assert entry.last_updated == START


class TestSeeding:
    """Test bootstrap of the built-in price list."""

    def test_seeds_defaults_when_nothing_stored(self):
        """Verify an empty store gets the built-in prices, persisted immediately."""
        blobs = InMemoryBlobStore()
        table = PricingTable(blobs, clock=FakeClock())

        assert set(table.get_all_prices()) == set(DEFAULT_PRICES)
        stored = json.loads(blobs.read_blob(PRICES_KEY))
        assert stored["gpt-4"]["inputPrice"] == 0.03
        assert stored["gpt-4"]["outputPrice"] == 0.06
        assert table.last_refreshed == START

    def test_loads_persisted_table_instead_of_seeding(self):
        """Verify a stored table is used as is."""
        blobs = InMemoryBlobStore({
            PRICES_KEY: json.dumps({
                "custom-model": {
                    "model": "custom-model",
                    "inputPrice": 0.5,
                    "outputPrice": 1.0,
                    "lastUpdated": START.isoformat(),
                }
            })
        })
        table = PricingTable(blobs, clock=FakeClock(START + timedelta(hours=1)))

        assert list(table.get_all_prices()) == ["custom-model"]
        assert table.get_pricing("gpt-4") is None
        assert table.last_refreshed == START

    def test_corrupt_snapshot_raises_persistence_error(self):
        blobs = InMemoryBlobStore({PRICES_KEY: "{not json"})

        with pytest.raises(PersistenceError, match="Invalid pricing snapshot"):
            PricingTable(blobs)

    def test_seed_write_failure_keeps_defaults_in_memory(self):
        """Verify a failed seed write leaves the table usable."""
        table = PricingTable(FailingBlobStore(), clock=FakeClock())

        assert table.get_pricing("gpt-4") is not None


class TestCostCalculation:
    """Test cost calculation accuracy."""

    def setup_method(self):
        self.table = PricingTable(InMemoryBlobStore(), clock=FakeClock())

    def test_known_model_cost(self):
        """Verify 1000 input and 500 output tokens on gpt-4."""
        # Prompt: 1000/1000 * 0.03 = 0.03
        # Completion: 500/1000 * 0.06 = 0.03
        assert self.table.calculate_cost("gpt-4", 1000, 500) == pytest.approx(0.06)

    def test_small_request_cost(self):
        """Verify sub-cent costs are not rounded away."""
        assert self.table.calculate_cost("gpt-4", 10, 2) == pytest.approx(0.00042)

    def test_zero_tokens_cost_nothing(self):
        """Verify zero tokens cost zero for known and unknown models."""
        assert self.table.calculate_cost("gpt-4", 0, 0) == 0
        assert self.table.calculate_cost("unknown-model", 0, 0) == 0

    def test_unknown_model_costs_nothing(self):
        """Verify unknown models never error and cost zero."""
        assert self.table.calculate_cost("unknown-model", 100000, 50000) == 0

    def test_get_pricing_unknown_model_returns_none(self):
        assert self.table.get_pricing("unknown-model") is None

    def test_get_all_prices_is_a_copy(self):
        """Verify callers cannot change the table through the returned mapping."""
        prices = self.table.get_all_prices()
        prices.pop("gpt-4")
        prices["fake"] = PricingEntry(model="fake", input_price=0, output_price=0, last_updated=START)

        assert self.table.get_pricing("gpt-4") is not None
        assert self.table.get_pricing("fake") is None

    def test_entries_are_immutable(self):
        entry = self.table.get_pricing("gpt-4")

        with pytest.raises(AttributeError):
            entry.input_price = 0.0


class TestRefreshIfStale:
    """Test the time-gated refresh policy."""

    def setup_method(self):
        self.clock = FakeClock()
        self.blobs = InMemoryBlobStore()
        self.feed = Mock()
        self.feed.fetch_prices.return_value = {"gpt-4": (0.01, 0.02), "new-model": (0.1, 0.2)}
        self.table = PricingTable(self.blobs, feed=self.feed, clock=self.clock)

    def test_fresh_table_does_not_refresh(self):
        """Verify no fetch happens within the interval."""
        self.clock.advance(timedelta(hours=1))

        assert self.table.refresh_if_stale() is False
        assert self.table.refresh_if_stale() is False
        self.feed.fetch_prices.assert_not_called()

    def test_stale_table_refreshes_once(self):
        """Verify a stale table is refreshed and the next call is a no-op."""
        self.clock.advance(timedelta(hours=25))

        assert self.table.refresh_if_stale() is True
        assert self.table.refresh_if_stale() is False
        assert self.feed.fetch_prices.call_count == 1

    def test_refresh_merges_and_persists(self):
        """Verify fetched prices replace and extend the table and are stored."""
        self.clock.advance(timedelta(hours=25))
        self.table.refresh_if_stale()

        gpt4 = self.table.get_pricing("gpt-4")
        assert gpt4.input_price == 0.01
        assert gpt4.output_price == 0.02
        assert gpt4.last_updated == self.clock.now
        assert self.table.get_pricing("new-model").input_price == 0.1
        # Models missing from the feed are kept
        assert self.table.get_pricing("claude-2") is not None
        assert self.table.last_refreshed == self.clock.now

        stored = json.loads(self.blobs.read_blob(PRICES_KEY))
        assert stored["gpt-4"]["inputPrice"] == 0.01
        assert "new-model" in stored

    def test_failed_refresh_leaves_table_and_clock_unchanged(self):
        """Verify failures are reported by return value and retried on the next call."""
        self.feed.fetch_prices.side_effect = PriceFeedError("feed down")
        self.clock.advance(timedelta(hours=25))

        assert self.table.refresh_if_stale() is False
        assert self.table.get_pricing("gpt-4").input_price == 0.03
        assert self.table.last_refreshed == START

        # Still stale, so the next call tries again
        self.feed.fetch_prices.side_effect = None
        assert self.table.refresh_if_stale() is True
        assert self.feed.fetch_prices.call_count == 2

    def test_empty_feed_counts_as_failure(self):
        self.feed.fetch_prices.return_value = {}
        self.clock.advance(timedelta(hours=25))

        assert self.table.refresh_if_stale() is False
        assert self.table.is_stale() is True

    def test_invalid_prices_count_as_failure(self):
        self.feed.fetch_prices.return_value = {"gpt-4": (-1.0, 0.02)}
        self.clock.advance(timedelta(hours=25))

        assert self.table.refresh_if_stale() is False
        assert self.table.get_pricing("gpt-4").input_price == 0.03

    def test_no_feed_fails_softly(self):
        table = PricingTable(InMemoryBlobStore(), clock=self.clock)
        self.clock.advance(timedelta(days=2))

        assert table.refresh_if_stale() is False

    def test_refresh_persistence_failure_keeps_new_prices(self):
        """Verify a failed write after a successful fetch is not raised."""
        blobs = FailingBlobStore()
        table = PricingTable(blobs, feed=StaticPriceFeed({"gpt-4": (1.0, 2.0)}), clock=self.clock)
        self.clock.advance(timedelta(hours=25))

        assert table.refresh_if_stale() is True
        assert table.get_pricing("gpt-4").input_price == 1.0

    def test_custom_interval(self):
        table = PricingTable(
            InMemoryBlobStore(),
            feed=self.feed,
            clock=self.clock,
            refresh_interval=timedelta(hours=1),
        )
        self.clock.advance(timedelta(minutes=61))

        assert table.refresh_if_stale() is True

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError, match="refresh_interval must be positive"):
            PricingTable(InMemoryBlobStore(), refresh_interval=timedelta(0))
