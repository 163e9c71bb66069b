"""Tests for the JSON document datastore."""

import json

import pytest

from autopilot.datastore import STORE_FILENAME, Datastore
from autopilot.errors import InvalidTransitionError, NotFoundError
from autopilot.models import (
    ContentPiece,
    Keyword,
    ReviewQueueItem,
    Run,
)


def _item(**overrides):
    defaults = {"account_id": "acct-1", "agent": "ghostwriter", "action_type": "content_review"}
    defaults.update(overrides)
    return ReviewQueueItem(**defaults)


class TestPersistence:

    @pytest.mark.unit
    def test_records_survive_reload(self, tmp_path, account):
        store = Datastore(tmp_path)
        assert store.get_account("acct-1").name == "Bright Smiles Dental"
        raw = json.loads((tmp_path / STORE_FILENAME).read_text())
        assert "acct-1" in raw["accounts"]

    @pytest.mark.unit
    def test_missing_record_raises_not_found(self, datastore):
        with pytest.raises(NotFoundError):
            datastore.get_content_piece("nope")

    @pytest.mark.unit
    def test_corrupt_file_starts_empty(self, tmp_path):
        (tmp_path / STORE_FILENAME).write_text("{not json")
        assert Datastore(tmp_path).list_accounts() == []

    @pytest.mark.unit
    def test_returned_records_are_copies(self, datastore, account):
        loaded = datastore.get_account("acct-1")
        loaded.practice_profile["city"] = "Dallas"
        assert datastore.get_account("acct-1").practice_profile["city"] == "Austin"


class TestTransactions:

    @pytest.mark.unit
    def test_commit_writes_both_records(self, tmp_path, datastore):
        piece = ContentPiece(account_id="acct-1", title="Implants")
        item = _item(content_piece_id=piece.id)
        with datastore.transaction():
            datastore.save_content_piece(piece)
            datastore.save_queue_item(item)

        reloaded = Datastore(tmp_path)
        assert reloaded.get_content_piece(piece.id).title == "Implants"
        assert reloaded.get_queue_item(item.id).content_piece_id == piece.id

    @pytest.mark.unit
    def test_exception_discards_all_writes(self, tmp_path, datastore):
        piece = ContentPiece(account_id="acct-1", title="Implants")
        with pytest.raises(RuntimeError):
            with datastore.transaction():
                datastore.save_content_piece(piece)
                raise RuntimeError("queue write failed")

        with pytest.raises(NotFoundError):
            datastore.get_content_piece(piece.id)
        assert not (tmp_path / STORE_FILENAME).exists()

    @pytest.mark.unit
    def test_nested_transaction_joins_outer(self, datastore):
        piece = ContentPiece(account_id="acct-1", title="Outer")
        with pytest.raises(ValueError):
            with datastore.transaction():
                datastore.save_content_piece(piece)
                with datastore.transaction():
                    datastore.save_queue_item(_item())
                raise ValueError("late failure")
        assert datastore.list_content_pieces() == []
        assert datastore.list_queue_items() == []


class TestRuns:

    @pytest.mark.unit
    def test_completion_sets_timestamp(self, datastore):
        run = datastore.create_run(Run(account_id="acct-1", pipeline="scholar"))
        done = datastore.complete_run(run.id, {"keywords_tracked": 3})
        assert done.status == "completed"
        assert done.completed_at is not None
        assert done.result == {"keywords_tracked": 3}

    @pytest.mark.unit
    def test_terminal_run_is_immutable(self, datastore):
        run = datastore.create_run(Run(account_id="acct-1", pipeline="scholar"))
        datastore.fail_run(run.id, "ValueError: bad")
        with pytest.raises(InvalidTransitionError):
            datastore.complete_run(run.id, {})
        assert datastore.get_run(run.id).error == "ValueError: bad"


class TestQueueItems:

    @pytest.mark.unit
    def test_lifecycle_transitions(self, datastore):
        item = datastore.save_queue_item(_item())
        datastore.update_queue_item(item.id, status="approved")
        datastore.update_queue_item(item.id, status="deployed", deployed_at="2026-01-01T00:00:00+00:00")
        datastore.update_queue_item(item.id, status="rolled_back")
        assert datastore.get_queue_item(item.id).status == "rolled_back"

    @pytest.mark.unit
    def test_illegal_transition_rejected(self, datastore):
        item = datastore.save_queue_item(_item())
        with pytest.raises(InvalidTransitionError):
            datastore.update_queue_item(item.id, status="deployed")
        datastore.update_queue_item(item.id, status="rejected")
        with pytest.raises(InvalidTransitionError):
            datastore.update_queue_item(item.id, status="approved")

    @pytest.mark.unit
    def test_filters(self, datastore):
        datastore.save_queue_item(_item())
        datastore.save_queue_item(_item(account_id="acct-2"))
        assert len(datastore.list_queue_items(account_id="acct-1")) == 1
        assert len(datastore.list_queue_items(status="pending")) == 2
        assert datastore.list_queue_items(status="approved") == []

    @pytest.mark.unit
    def test_latest_deployed_item(self, datastore):
        older = datastore.save_queue_item(
            _item(content_piece_id="p1", status="deployed", deployed_at="2026-01-01T00:00:00+00:00")
        )
        newer = datastore.save_queue_item(
            _item(content_piece_id="p1", status="deployed", deployed_at="2026-02-01T00:00:00+00:00")
        )
        assert datastore.latest_deployed_item("p1").id == newer.id
        assert older.id != newer.id
        assert datastore.latest_deployed_item("p2") is None


class TestKeywords:

    @pytest.mark.unit
    def test_upsert_is_unique_per_account_and_keyword(self, datastore):
        datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="Dental Implants", search_volume=100))
        datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="dental implants", search_volume=250))
        datastore.upsert_keyword(Keyword(account_id="acct-2", keyword="dental implants"))

        keywords = datastore.list_keywords("acct-1")
        assert len(keywords) == 1
        assert keywords[0].search_volume == 250

    @pytest.mark.unit
    def test_position_history(self, datastore):
        datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="invisalign", current_position=12))
        datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="invisalign", current_position=7))
        kw = datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="invisalign", current_position=9))
        assert kw.current_position == 9
        assert kw.previous_position == 7
        assert kw.best_position == 7

    @pytest.mark.unit
    def test_upsert_without_position_keeps_rank(self, datastore):
        datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="veneers", current_position=4))
        kw = datastore.upsert_keyword(Keyword(account_id="acct-1", keyword="veneers", search_volume=80))
        assert kw.current_position == 4
        assert kw.search_volume == 80
