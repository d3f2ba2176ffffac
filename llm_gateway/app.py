"""
Application wiring.

Builds the stores, the pricing table and the gateway once, from settings,
and hands them out together.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from .config.loader import GatewaySettings
from .core.price_feed import HttpPriceFeed, PriceFeed
from .core.pricing import PricingTable
from .sdk.gateway import CompletionGateway
from .storage.blobs import BlobStore, SQLiteBlobStore
from .storage.repository import ConfigStore, SelectionStore

logger = logging.getLogger(__name__)


@dataclass
class GatewayContext:
    """The application's single set of stores and its gateway."""
    settings: GatewaySettings
    configs: ConfigStore
    selection: SelectionStore
    pricing: PricingTable
    gateway: CompletionGateway

    def delete_config(self, config_id: str) -> None:
        """Delete a configuration and drop it from the selection."""
        self.configs.delete(config_id)
        self.selection.discard(config_id)


def create_context(
    settings: GatewaySettings,
    blobs: Optional[BlobStore] = None,
    feed: Optional[PriceFeed] = None,
) -> GatewayContext:
    """Build the application context.

    Args:
        settings: Validated gateway settings
        blobs: Persistence boundary (defaults to SQLite at settings.db_path)
        feed: Price feed (defaults to settings.price_feed_url, if set)

    Returns:
        A fully wired GatewayContext

    Raises:
        PersistenceError: If a stored snapshot cannot be read
    """
    if blobs is None:
        blobs = SQLiteBlobStore(settings.db_path)
    if feed is None and settings.price_feed_url:
        feed = HttpPriceFeed(settings.price_feed_url, timeout=settings.price_feed_timeout)

    configs = ConfigStore(blobs)
    selection = SelectionStore(blobs)
    pricing = PricingTable(
        blobs,
        feed=feed,
        refresh_interval=timedelta(hours=settings.refresh_interval_hours),
    )
    gateway = CompletionGateway(
        configs,
        pricing,
        default_endpoint=settings.default_endpoint,
        timeout=settings.request_timeout,
    )
    logger.debug("Created gateway context with %d configurations", len(configs.get_all()))

    return GatewayContext(
        settings=settings,
        configs=configs,
        selection=selection,
        pricing=pricing,
        gateway=gateway,
    )
