"""Tests for the species catalog lookup."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from fungiscan.catalog import UNKNOWN_SPECIES, Species, SpeciesCatalog

if TYPE_CHECKING:
    from pathlib import Path


class TestSpeciesCatalog:
    def test_string_and_int_ids(self) -> None:
        catalog = SpeciesCatalog.from_items(
            [
                {"id": "0", "name": "Amanita muscaria", "isEdible": False},
                {"id": 1, "name": "Boletus edulis", "isEdible": True},
            ]
        )
        assert catalog.lookup(0) == Species(name="Amanita muscaria", is_edible=False)
        assert catalog.lookup(1) == Species(name="Boletus edulis", is_edible=True)
        assert len(catalog) == 2

    def test_miss_is_unknown(self) -> None:
        assert SpeciesCatalog().lookup(42) is UNKNOWN_SPECIES

    def test_entries_without_numeric_id_are_skipped(self) -> None:
        catalog = SpeciesCatalog.from_items([{"name": "no id"}, {"id": "x", "name": "bad"}, {"id": 3}])
        assert len(catalog) == 1
        assert catalog.lookup(3) == Species(name="unknown", is_edible=None)

    def test_load_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "species.json"
        path.write_text(json.dumps([{"id": "5", "name": "Cantharellus cibarius", "isEdible": True}]))
        catalog = SpeciesCatalog.load(path)
        assert catalog.lookup(5).name == "Cantharellus cibarius"

    def test_missing_file_gives_empty_catalog(self, tmp_path: Path) -> None:
        catalog = SpeciesCatalog.load(tmp_path / "missing.json")
        assert len(catalog) == 0
        assert catalog.lookup(0) is UNKNOWN_SPECIES

    def test_malformed_file_gives_empty_catalog(self, tmp_path: Path) -> None:
        path = tmp_path / "species.json"
        path.write_text("{not json", encoding="utf-8")
        catalog = SpeciesCatalog.load(path)
        assert len(catalog) == 0
        assert catalog.lookup(1) is UNKNOWN_SPECIES

    def test_non_list_file_gives_empty_catalog(self, tmp_path: Path) -> None:
        path = tmp_path / "species.json"
        path.write_text(json.dumps({"0": "Amanita"}), encoding="utf-8")
        assert len(SpeciesCatalog.load(path)) == 0
