from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from pathlib import Path

"""Persisted user settings (selected dataset).

Read once at startup, written on every change. A missing or unreadable file
yields defaults; it never stops the tool.
"""

__all__ = [
    "Settings",
    "SettingsStore",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settings:
    selected_dataset: str | None = None


class SettingsStore:
    """JSON file backed settings with one typed key."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Settings:
        if not self.path.exists():
            return Settings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("settings file unreadable, using defaults: %s (%s)", self.path, e)
            return Settings()
        if not isinstance(data, dict):
            return Settings()
        selected = data.get("selected_dataset")
        return Settings(selected_dataset=selected if isinstance(selected, str) and selected else None)

    def save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(asdict(settings), ensure_ascii=False), encoding="utf-8")

    def set_selected_dataset(self, dataset_id: str | None) -> Settings:
        settings = replace(self.load(), selected_dataset=dataset_id)
        self.save(settings)
        return settings
