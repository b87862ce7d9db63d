from __future__ import annotations

from listing_core.collection import ListingCollection
from listing_core.types import UpdateAction, UpdateEvent


def _added(lid: str, **fields) -> UpdateEvent:
    return UpdateEvent(action=UpdateAction.ADDED, listing={"id": lid, **fields})


def test_added_inserts_at_head_and_is_idempotent():
    coll = ListingCollection([{"id": "1", "title": "A"}])

    assert coll.apply_event(_added("2", title="B")) is True
    once = coll.to_list()
    assert coll.apply_event(_added("2", title="B")) is False

    assert coll.to_list() == once
    assert coll.ids() == ["2", "1"]


def test_duplicate_added_does_not_overwrite_existing_fields():
    coll = ListingCollection([{"id": "1", "title": "A"}])
    coll.apply_event(_added("1", title="stale echo"))
    assert coll.get("1") == {"id": "1", "title": "A"}


def test_updated_replaces_in_place_without_field_merge():
    coll = ListingCollection([{"id": "3"}, {"id": "2", "title": "B", "beds": 2}, {"id": "1"}])

    changed = coll.apply_event(UpdateEvent(action="updated", listing={"id": "2", "title": "B2"}))

    assert changed is True
    assert coll.ids() == ["3", "2", "1"]
    assert coll.get("2") == {"id": "2", "title": "B2"}


def test_updated_for_unknown_id_is_dropped():
    coll = ListingCollection([{"id": "1"}])
    assert coll.apply_event(UpdateEvent(action="updated", listing={"id": "9", "title": "X"})) is False
    assert coll.ids() == ["1"]


def test_deleted_is_idempotent():
    coll = ListingCollection([{"id": "1"}, {"id": "2"}])

    assert coll.apply_event(UpdateEvent(action="deleted", listing_id="1")) is True
    assert coll.apply_event(UpdateEvent(action="deleted", listing_id="1")) is False
    assert coll.apply_event(UpdateEvent(action="deleted", listing_id="missing")) is False
    assert coll.ids() == ["2"]


def test_replace_all_drops_missing_ids_and_duplicates():
    coll = ListingCollection()
    coll.replace_all([{"id": "1", "v": 1}, {"title": "no id"}, {"id": "1", "v": 2}, {"id": ""}, {"id": "2"}])
    assert coll.to_list() == [{"id": "1", "v": 1}, {"id": "2"}]


def test_to_list_returns_copies():
    coll = ListingCollection([{"id": "1", "title": "A"}])
    snapshot = coll.to_list()
    snapshot[0]["title"] = "mutated"
    assert coll.get("1")["title"] == "A"


def test_replace_all_skips_whitespace_ids():
    coll = ListingCollection()
    coll.replace_all([{"id": "  "}, {"id": "1"}, {"id": "\n"}])
    assert coll.to_list() == [{"id": "1"}]
