"""Read-only species catalog used to label predictions for display."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Species:
    """Display metadata for one class id."""

    name: str
    is_edible: bool | None


UNKNOWN_SPECIES = Species(name="unknown", is_edible=None)


class SpeciesCatalog:
    """Maps class ids to species. Misses resolve to UNKNOWN_SPECIES."""

    def __init__(self, entries: Mapping[int, Species] | None = None) -> None:
        self._entries: dict[int, Species] = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, class_id: int) -> Species:
        return self._entries.get(class_id, UNKNOWN_SPECIES)

    @classmethod
    def from_items(cls, items: Iterable[Mapping[str, object]]) -> SpeciesCatalog:
        """Build a catalog from ``{"id", "name", "isEdible"}`` items.

        Ids may be strings or ints. Items without a usable id are skipped.
        """
        entries: dict[int, Species] = {}
        for item in items:
            try:
                class_id = int(item["id"])  # type: ignore[call-overload]
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping catalog entry without a numeric id: %r", item)
                continue
            edible = item.get("isEdible")
            entries[class_id] = Species(
                name=str(item.get("name") or UNKNOWN_SPECIES.name),
                is_edible=bool(edible) if edible is not None else None,
            )
        return cls(entries)

    @classmethod
    def load(cls, path: Path) -> SpeciesCatalog:
        """Load the catalog from a JSON file.

        A missing or unreadable file gives an empty catalog, so every species
        shows as unknown instead of the app failing to start.
        """
        if not path.is_file():
            logger.warning("Species catalog %s not found, all species will show as unknown", path)
            return cls()
        try:
            with path.open(encoding="utf-8") as f:
                items = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Species catalog %s is unreadable (%s), all species will show as unknown", path, exc)
            return cls()
        if not isinstance(items, list):
            logger.warning("Species catalog %s is not a JSON list, all species will show as unknown", path)
            return cls()
        catalog = cls.from_items(items)
        logger.info("Loaded %d species from %s", len(catalog), path)
        return catalog
