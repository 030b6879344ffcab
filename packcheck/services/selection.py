from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..config.settings import SettingsStore
from ..models.records import Dataset

"""Current dataset selection shared by every command.

The selection is persisted in the settings store and announced to
subscribers with a typed DatasetChanged message whenever it changes.
"""

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetChanged:
    dataset_id: str | None
    previous: str | None


Listener = Callable[[DatasetChanged], None]


class DatasetSelection:
    def __init__(self, settings: SettingsStore) -> None:
        self._settings = settings
        self._current = settings.load().selected_dataset
        self._listeners: list[Listener] = []

    @property
    def current(self) -> str | None:
        return self._current

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def select(self, dataset_id: str | None) -> bool:
        """Persist and announce a new selection; returns False when unchanged."""
        if dataset_id == self._current:
            return False
        message = DatasetChanged(dataset_id=dataset_id, previous=self._current)
        self._current = dataset_id
        self._settings.set_selected_dataset(dataset_id)
        logger.debug("dataset selection %s -> %s", message.previous, message.dataset_id)
        for listener in list(self._listeners):
            listener(message)
        return True

    def reconcile(self, datasets: Sequence[Dataset]) -> str | None:
        """Keep the saved selection if it still exists, else pick the newest dataset.

        ``datasets`` is expected newest first (RecordStore.list_datasets order).
        """
        ids = [d.id for d in datasets]
        if self._current in ids:
            return self._current
        self.select(ids[0] if ids else None)
        return self._current
