import logging
import random

from game import Room
from models import Player, TableConfig
from replication import SHARED_FIELDS, ReplicatedStore


def test_set_notifies_only_on_change():
    store = ReplicatedStore()
    events = []
    store.subscribe(lambda key, player_id: events.append((key, player_id)))

    assert store.set("turn", "A")
    assert not store.set("turn", "A")
    assert store.set("turn", "B")
    assert events == [("turn", None), ("turn", None)]
    assert store.get("turn") == "B"
    assert store.get("missing", 3) == 3


def test_values_are_copied_in_and_out():
    store = ReplicatedStore()
    scores = {"A": 1}
    store.set("roundScores", scores)
    scores["A"] = 99
    assert store.get("roundScores") == {"A": 1}

    fetched = store.get("roundScores")
    fetched["A"] = 50
    assert store.get("roundScores") == {"A": 1}


def test_player_state_and_unsubscribe():
    store = ReplicatedStore()
    events = []
    unsubscribe = store.subscribe(lambda key, player_id: events.append((key, player_id)))

    store.set_player_state("A", "hand", [{"id": "x"}])
    assert store.get_player_state("A", "hand") == [{"id": "x"}]
    assert store.get_player_state("B", "hand", []) == []

    store.drop_player("A")
    assert store.get_player_state("A", "hand") is None
    unsubscribe()
    store.set("turn", "A")
    assert events == [("hand", "A"), ("hand", "A")]


def test_failing_subscriber_does_not_block_others(caplog):
    store = ReplicatedStore()
    seen = []

    def broken(key, player_id):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(lambda key, player_id: seen.append(key))
    with caplog.at_level(logging.ERROR, logger="replication"):
        store.set("lives", 2)
    assert seen == ["lives"]
    assert "Store subscriber failed" in caplog.text


def test_room_publishes_every_shared_field():
    room = Room("r", "Test", TableConfig(settle_delay_sec=0, draw_delay_sec=0, feedback_ttl_sec=0), rng=random.Random(2))
    room.add_player(Player(id="A", name="A"))
    room.add_player(Player(id="B", name="B"))
    room.start_match("A")
    room.choose_trump(room.toco_target, "diamonds")

    missing = object()
    for key in SHARED_FIELDS:
        assert room.store.get(key, missing) is not missing, key
    assert room.store.get("gameState") == "playing"
    assert room.store.get("trumpSuit") == "diamonds"
    assert len(room.store.get("deck")) == 32
    assert len(room.store.get_player_state("A", "hand")) == 4
    assert len(room.store.get_player_state("B", "hand")) == 4


def test_rejected_intent_publishes_nothing():
    room = Room("r", "Test", rng=random.Random(2))
    room.add_player(Player(id="A", name="A"))
    room.add_player(Player(id="B", name="B"))
    room.start_match("A")
    events = []
    room.store.subscribe(lambda key, player_id: events.append(key))

    other = "B" if room.toco_target == "A" else "A"
    assert not room.choose_trump(other, "hearts")
    assert not room.next_hand("A")
    assert events == []
