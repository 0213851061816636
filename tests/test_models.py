"""Tests for the document model."""

from __future__ import annotations

import json
import re

import pytest

from vaultsync.models import Checkpoint, DataItem, HumanEntity, Quote, StorageState, utc_now_iso


def _state_dict() -> dict:
    return {
        "timestamp": "2024-05-01T10:00:00.000Z",
        "human": {
            "entity": "human",
            "facts": [
                {"id": "f1", "name": "Birthday", "description": "May", "last_updated": "2024-05-01T09:00:00.000Z",
                 "sentiment": 0.4, "validated": "human"},
            ],
            "traits": [],
            "topics": [],
            "people": [],
            "quotes": [{"id": "q1", "text": "hello", "speaker": "human"}],
            "last_updated": "2024-05-01T09:00:00.000Z",
            "settings": {"theme": "dark"},
        },
        "personas": {
            "ei": {
                "entity": {"id": "p1", "display_name": "Ei", "last_updated": "2024-04-01T00:00:00.000Z",
                           "model": "local"},
                "messages": [
                    {"id": "m1", "role": "human", "timestamp": "2024-04-01T00:00:00.000Z", "content": "hi"},
                ],
            },
        },
        "queue": [{"kind": "extract"}],
        "version": 3,
    }


def test_unknown_fields_survive_a_round_trip():
    data = _state_dict()

    restored = StorageState.from_dict(data).to_dict()

    assert restored == data


def test_human_entity_marker_is_written():
    assert HumanEntity().to_dict()["entity"] == "human"


def test_minimal_document_gains_no_keys():
    raw = json.dumps(
        {
            "timestamp": "2024-05-01T10:00:00.000Z",
            "human": {
                "facts": [{"id": "f1", "last_updated": "2024-05-01T09:00:00.000Z"}],
                "traits": [],
                "topics": [],
                "people": [],
                "quotes": [{"id": "q1"}],
                "last_updated": "",
            },
            "personas": {},
            "queue": [],
        },
        sort_keys=True,
    )

    restored = StorageState.from_dict(json.loads(raw)).to_dict()

    assert json.dumps(restored, sort_keys=True) == raw
    assert "entity" not in restored["human"]
    assert set(restored["human"]["facts"][0]) == {"id", "last_updated"}
    assert restored["human"]["quotes"][0] == {"id": "q1"}


def test_empty_strings_are_kept_as_written():
    item = DataItem.from_dict({"id": "f1", "name": "", "last_updated": ""})

    assert item.to_dict() == {"id": "f1", "name": "", "last_updated": ""}
    assert Quote(id="q1", text="").to_dict() == {"id": "q1", "text": ""}


def test_items_rejects_unknown_list():
    with pytest.raises(KeyError):
        HumanEntity().items("pets")


def test_utc_now_iso_format():
    assert re.fullmatch(r"\d{4}-\d\d-\d\dT\d\d:\d\d:\d\d\.\d{3}Z", utc_now_iso())


def test_checkpoint_kind_follows_name():
    assert not Checkpoint(index=0, timestamp="t").is_manual
    manual = Checkpoint(index=10, timestamp="t", name="before trip")
    assert manual.is_manual
    assert manual.to_dict() == {"index": 10, "timestamp": "t", "name": "before trip"}
