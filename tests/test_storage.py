"""Handoff persistence and in-process result store tests."""

import json
import re
from unittest.mock import MagicMock

from storage.db import db_conn, init_db
from storage.handoff import (
    CORE_KEYWORDS_KEY,
    MASTER_REPORT_KEY,
    clear_handoff,
    import_core_keywords,
    load_handoff,
    save_handoff,
)
from storage.results import DataRequest, ResultStore, make_data_id


class TestHandoff:
    """SQLite-backed handoff between tools."""

    def test_round_trip(self, tmp_db):
        save_handoff(MASTER_REPORT_KEY, {"comparisonResultsCount": {"common": 3}})
        assert load_handoff(MASTER_REPORT_KEY) == {"comparisonResultsCount": {"common": 3}}
        assert tmp_db.exists()

    def test_overwrite(self, tmp_db):
        save_handoff(CORE_KEYWORDS_KEY, ["a"])
        save_handoff(CORE_KEYWORDS_KEY, ["b", "c"])
        assert load_handoff(CORE_KEYWORDS_KEY) == ["b", "c"]

    def test_missing_key(self, tmp_db):
        assert load_handoff("nessuna") is None

    def test_clear(self, tmp_db):
        save_handoff(CORE_KEYWORDS_KEY, ["a"])
        clear_handoff(CORE_KEYWORDS_KEY)
        assert load_handoff(CORE_KEYWORDS_KEY) is None

    def test_invalid_json_is_ignored(self, tmp_db):
        init_db()
        with db_conn() as conn:
            conn.execute("INSERT INTO handoff (key, payload) VALUES (?, ?)", (MASTER_REPORT_KEY, "{rotto"))
        assert load_handoff(MASTER_REPORT_KEY) is None

    def test_unicode_payload(self, tmp_db):
        save_handoff(CORE_KEYWORDS_KEY, ["opportunità", "città"])
        assert load_handoff(CORE_KEYWORDS_KEY) == ["opportunità", "città"]

    def test_import_core_keywords(self, tmp_db):
        assert import_core_keywords() == []
        save_handoff(CORE_KEYWORDS_KEY, ["divano", "", "poltrona"])
        assert import_core_keywords() == ["divano", "poltrona"]

    def test_import_core_keywords_wrong_shape(self, tmp_db):
        save_handoff(CORE_KEYWORDS_KEY, {"not": "a list"})
        assert import_core_keywords() == []


class TestResultStore:
    """Request/response lookup of published sections."""

    def test_data_id_format(self):
        assert re.fullmatch(r"tool1-common-\d{13}-[a-z0-9]{5}", make_data_id("common"))
        assert make_data_id("gsc", prefix="tool3").startswith("tool3-gsc-")

    def test_publish_and_get(self):
        store = ResultStore()
        data_id = store.publish("common", [1, 2, 3])
        assert data_id in store
        assert len(store) == 1
        assert store.get(data_id) == [1, 2, 3]

    def test_handle_request(self):
        store = ResultStore()
        data_id = store.publish("competitorOnly", ["divano"])
        response = store.handle_request(DataRequest(data_id, "master-report"))
        assert response.data_id == data_id
        assert response.requester_id == "master-report"
        assert response.payload == ["divano"]

    def test_unknown_request(self):
        response = ResultStore().handle_request(DataRequest("tool1-x-0-aaaaa", "master-report"))
        assert response.payload is None

    def test_subscribe_and_unsubscribe(self):
        store = ResultStore()
        listener = MagicMock()
        unsubscribe = store.subscribe(listener)

        data_id = store.publish("common", {"n": 1})
        listener.assert_called_once_with(data_id, {"n": 1})

        unsubscribe()
        store.publish("common", {"n": 2})
        assert listener.call_count == 1

    def test_clear(self):
        store = ResultStore()
        data_id = store.publish("common", [])
        store.clear()
        assert data_id not in store
        assert store.get(data_id) is None

    def test_write_json(self, tmp_path):
        store = ResultStore()
        common_id = store.publish("common", [{"keyword": "divano"}])
        empty_id = store.publish("competitorOnly", [])

        path = store.write_json(tmp_path / "out" / "sezioni.json")
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["sections"] == {common_id: [{"keyword": "divano"}], empty_id: []}
        assert "generated_at" in data
