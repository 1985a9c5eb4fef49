"""Tests for the SQLite-backed history store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import inspect, text

from fungiscan.errors import PersistError, RecordNotFoundError
from fungiscan.ranking import Prediction, rank
from fungiscan.storage.history import HistoryStore

if TYPE_CHECKING:
    from pathlib import Path


RANKING = (Prediction(class_id=4, probability=88),)


class TestSchema:
    def test_init_schema_is_idempotent(self, history: HistoryStore) -> None:
        history.append("/data/img1.jpg", RANKING)
        history.init_schema()
        history.init_schema()
        assert len(history.list_all()) == 1

    def test_table_layout(self, history: HistoryStore) -> None:
        columns = {col["name"]: col for col in inspect(history._engine).get_columns("fungi")}
        assert set(columns) == {"id", "path", "predictions", "dateTime"}
        assert columns["path"]["nullable"] is False
        assert columns["predictions"]["nullable"] is False

    def test_file_database_survives_reopen(self, tmp_path: Path) -> None:
        url = f"sqlite:///{tmp_path / 'fungi.db'}"
        first = HistoryStore.from_url(url)
        first.init_schema()
        created = first.append("/data/img1.jpg", RANKING)
        first.dispose()

        second = HistoryStore.from_url(url)
        second.init_schema()
        assert second.get_by_id(created.id) == created
        second.dispose()

    def test_from_url_creates_data_dir(self, tmp_path: Path) -> None:
        data_dir = tmp_path / "nested" / "data"
        store = HistoryStore.from_url(f"sqlite:///{data_dir / 'fungi.db'}", data_dir=data_dir)
        store.init_schema()
        assert (data_dir / "fungi.db").exists()
        store.dispose()

    def test_operations_without_schema_raise_persist_error(self) -> None:
        store = HistoryStore.from_url("sqlite://")
        with pytest.raises(PersistError):
            store.append("/data/img1.jpg", RANKING)
        with pytest.raises(PersistError):
            store.list_all()
        store.dispose()


class TestAppend:
    def test_append_then_list_all(self, history: HistoryStore) -> None:
        before = datetime.now(timezone.utc)
        history.append("/data/img1.jpg", [Prediction(class_id=4, probability=88)])

        records = history.list_all()
        assert len(records) == 1
        record = records[0]
        assert record.image_path == "/data/img1.jpg"
        assert record.ranking == RANKING
        assert record.created_at >= before
        assert record.created_at.tzinfo is not None

    def test_append_returns_assigned_fields(self, history: HistoryStore) -> None:
        first = history.append("/data/a.jpg", RANKING)
        second = history.append("/data/b.jpg", RANKING)
        assert second.id > first.id
        assert second.created_at >= first.created_at

    def test_get_by_id_round_trips_ranking(self, history: HistoryStore) -> None:
        ranking = rank([0.01, 0.92, 0.07, 0.0, 0.0], 3)
        created = history.append("/data/img1.jpg", ranking)
        loaded = history.get_by_id(created.id)
        assert loaded.ranking == ranking
        assert loaded == created

    def test_empty_ranking_is_stored(self, history: HistoryStore) -> None:
        created = history.append("/data/blank.jpg", ())
        assert history.get_by_id(created.id).ranking == ()

    def test_accepts_path_objects(self, history: HistoryStore, tmp_path: Path) -> None:
        created = history.append(tmp_path / "x.jpg", RANKING)
        assert created.image_path == str(tmp_path / "x.jpg")

    def test_corrupt_stored_ranking_raises_persist_error(self, history: HistoryStore) -> None:
        with history._engine.begin() as conn:
            conn.execute(text("INSERT INTO fungi (path, predictions) VALUES ('/x.jpg', 'garbage')"))
        with pytest.raises(PersistError, match="corrupt ranking"):
            history.list_all()


class TestReadAndDelete:
    def test_get_missing_raises_not_found(self, history: HistoryStore) -> None:
        with pytest.raises(RecordNotFoundError) as exc_info:
            history.get_by_id(404)
        assert exc_info.value.record_id == 404

    def test_delete_then_get_raises_not_found(self, history: HistoryStore) -> None:
        created = history.append("/data/img1.jpg", RANKING)
        history.delete(created.id)
        with pytest.raises(RecordNotFoundError):
            history.get_by_id(created.id)

    def test_delete_twice_raises_not_found(self, history: HistoryStore) -> None:
        created = history.append("/data/img1.jpg", RANKING)
        history.delete(created.id)
        with pytest.raises(RecordNotFoundError):
            history.delete(created.id)

    def test_delete_keeps_image_file(self, history: HistoryStore, tmp_path: Path) -> None:
        image = tmp_path / "owned.jpg"
        image.write_bytes(b"jpeg")
        created = history.append(image, RANKING)
        history.delete(created.id)
        assert image.exists()

    def test_ids_are_not_reused_after_delete(self, history: HistoryStore) -> None:
        history.append("/data/a.jpg", RANKING)
        latest = history.append("/data/b.jpg", RANKING)
        history.delete(latest.id)
        replacement = history.append("/data/c.jpg", RANKING)
        assert replacement.id > latest.id

    def test_list_all_order_and_count(self, history: HistoryStore) -> None:
        created = [history.append(f"/data/{i}.jpg", RANKING) for i in range(5)]
        history.delete(created[1].id)
        history.delete(created[3].id)

        records = history.list_all()
        assert len(records) == len(created) - 2
        assert [r.image_path for r in records] == ["/data/0.jpg", "/data/2.jpg", "/data/4.jpg"]
        stamps = [r.created_at for r in records]
        assert stamps == sorted(stamps)

    def test_list_all_rereads_current_state(self, history: HistoryStore) -> None:
        assert history.list_all() == []
        history.append("/data/a.jpg", RANKING)
        assert len(history.list_all()) == 1
