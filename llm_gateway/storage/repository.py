"""
Repository pattern for data access.

Keeps provider configurations and the current selection in memory and
writes a full snapshot to the blob store after every change.
"""

import json
import logging
import threading
from typing import Dict, List, Optional

from ..core.errors import PersistenceError
from .blobs import BlobStore
from .models import ProviderConfig

logger = logging.getLogger(__name__)

CONFIGS_KEY = "llmConfigs"
SELECTION_KEY = "selectedLLMs"


class ConfigStore:
    """Store of provider configurations keyed by id.

    The in-memory map is the source of truth for reads. Writes rewrite the
    whole snapshot and are atomic: if the snapshot cannot be written, the
    previous record is restored and PersistenceError is raised.
    """

    def __init__(self, blobs: BlobStore):
        """Initialize the store and load the persisted snapshot.

        Args:
            blobs: Persistence boundary holding the snapshot

        Raises:
            PersistenceError: If the snapshot cannot be read or parsed
        """
        self._blobs = blobs
        self._configs: Dict[str, ProviderConfig] = {}
        self._lock = threading.RLock()
        self._load()

    def get_all(self) -> List[ProviderConfig]:
        """Return all configurations in insertion order."""
        return list(self._configs.values())

    def get(self, config_id: str) -> Optional[ProviderConfig]:
        """Return a configuration, or None if the id is unknown."""
        return self._configs.get(config_id)

    def upsert(self, config: ProviderConfig) -> None:
        """Insert a configuration or replace the existing record entirely.

        Raises:
            PersistenceError: If the snapshot write fails; the store is
                left as it was before the call
        """
        with self._lock:
            previous = self._configs.get(config.id)
            self._configs[config.id] = config
            try:
                self._save()
            except PersistenceError:
                if previous is None:
                    del self._configs[config.id]
                else:
                    self._configs[config.id] = previous
                raise
        logger.info("Saved configuration %s (%s)", config.id, config.name)

    def delete(self, config_id: str) -> None:
        """Remove a configuration. Deleting an unknown id is a no-op.

        Raises:
            PersistenceError: If the snapshot write fails; the record is
                restored
        """
        with self._lock:
            snapshot = dict(self._configs)
            removed = self._configs.pop(config_id, None)
            try:
                self._save()
            except PersistenceError:
                self._configs = snapshot
                raise
        if removed is not None:
            logger.info("Deleted configuration %s", config_id)

    def _load(self) -> None:
        raw = self._blobs.read_blob(CONFIGS_KEY)
        if raw is None:
            return

        try:
            records = json.loads(raw)
            if not isinstance(records, list):
                raise ValueError("snapshot must be a list")
            configs = [ProviderConfig.from_dict(record) for record in records]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error("Stored configurations are unreadable: %s", e)
            raise PersistenceError(f"Invalid configuration snapshot: {e}") from e

        self._configs = {config.id: config for config in configs}
        logger.debug("Loaded %d configurations", len(self._configs))

    def _save(self) -> None:
        text = json.dumps([config.to_dict() for config in self._configs.values()])
        try:
            self._blobs.write_blob(CONFIGS_KEY, text)
        except PersistenceError as e:
            logger.error("Failed to persist configurations: %s", e)
            raise


class SelectionStore:
    """Ids of the configurations currently selected for use."""

    def __init__(self, blobs: BlobStore):
        self._blobs = blobs
        self._selected: List[str] = []
        self._lock = threading.RLock()
        self._load()

    def selected_ids(self) -> List[str]:
        """Return selected ids in the order they were selected."""
        return list(self._selected)

    def is_selected(self, config_id: str) -> bool:
        return config_id in self._selected

    def toggle(self, config_id: str) -> bool:
        """Select an unselected id or deselect a selected one.

        Returns:
            True if the id is selected after the call
        """
        with self._lock:
            if config_id in self._selected:
                updated = [selected for selected in self._selected if selected != config_id]
            else:
                updated = self._selected + [config_id]
            self._replace(updated)
        return config_id in updated

    def discard(self, config_id: str) -> None:
        """Deselect an id if it is selected."""
        with self._lock:
            if config_id not in self._selected:
                return
            self._replace([selected for selected in self._selected if selected != config_id])

    def _replace(self, updated: List[str]) -> None:
        try:
            self._blobs.write_blob(SELECTION_KEY, json.dumps(updated))
        except PersistenceError as e:
            logger.error("Failed to persist selection: %s", e)
            raise
        self._selected = updated

    def _load(self) -> None:
        raw = self._blobs.read_blob(SELECTION_KEY)
        if raw is None:
            return

        try:
            selected = json.loads(raw)
        except ValueError as e:
            logger.error("Stored selection is unreadable: %s", e)
            raise PersistenceError(f"Invalid selection snapshot: {e}") from e

        if not isinstance(selected, list) or not all(isinstance(i, str) for i in selected):
            logger.error("Stored selection is not a list of ids")
            raise PersistenceError("Invalid selection snapshot: expected a list of ids")

        self._selected = selected
