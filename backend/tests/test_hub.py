import asyncio
import random

import pytest
from fastapi import WebSocketDisconnect

from game import ROOMS, Room
from main import Hub
from models import Card, Player, TableConfig


def _room_with_trick_on_table(room_id: str) -> Room:
    config = TableConfig(settle_delay_sec=0.05, draw_delay_sec=0.01, feedback_ttl_sec=0.1)
    room = Room(room_id, "Hub", config, rng=random.Random(3))
    room.add_player(Player(id="A", name="A"))
    room.add_player(Player(id="B", name="B"))
    room.start_match("A")
    room.toco_target = "A"
    room.choose_trump("A", "clubs")
    room.hands = {
        "A": [Card(suit="clubs", rank="7"), Card(suit="hearts", rank="Q")],
        "B": [Card(suit="clubs", rank="A"), Card(suit="hearts", rank="J")],
    }
    room.deck = [Card(suit="spades", rank="K"), Card(suit="spades", rank="4")]
    room.play_card("A", "clubs-7")
    room.play_card("B", "clubs-A")
    return room


def test_watch_marks_room_dirty_until_forgotten():
    hub = Hub()
    room = Room("hub-dirty", "Hub")
    hub.watch(room)
    room.add_player(Player(id="A", name="A"))
    assert hub.dirty == {"hub-dirty"}

    hub.forget("hub-dirty")
    assert hub.dirty == set()
    room.add_player(Player(id="B", name="B"))
    assert hub.dirty == set()


@pytest.mark.asyncio
async def test_wakeup_runs_deferred_trick_steps():
    hub = Hub()
    room = _room_with_trick_on_table("hub-wake")
    ROOMS[room.id] = room
    hub.watch(room)
    try:
        assert len(room.table_cards) == 2
        await hub.flush()
        hub.schedule_wakeup(room)
        assert room.id in hub.timers

        await asyncio.sleep(0.4)

        assert room.table_cards == []
        assert room.round_scores["B"] == 21
        assert room.turn == "B"
        assert [card.id for card in room.hands["B"]] == ["hearts-J", "spades-K"]
        assert [card.id for card in room.hands["A"]] == ["hearts-Q", "spades-4"]
        assert room.trick_feedback is None
        assert room.id not in hub.timers
    finally:
        ROOMS.pop(room.id, None)
        hub.forget(room.id)


class DroppedSocket:
    def __init__(self):
        self.attempts = 0

    async def send_json(self, message):
        self.attempts += 1
        raise WebSocketDisconnect(code=1006)


@pytest.mark.asyncio
async def test_dropped_socket_does_not_stall_deferred_steps():
    hub = Hub()
    room = _room_with_trick_on_table("hub-dropped")
    ROOMS[room.id] = room
    hub.watch(room)
    dropped = DroppedSocket()
    hub.rooms[room.id] = [dropped]
    hub.ws_player[dropped] = "A"
    try:
        hub.schedule_wakeup(room)
        await asyncio.sleep(0.4)

        assert dropped.attempts >= 1
        assert room.table_cards == []
        assert room.round_scores["B"] == 21
        assert room.trick_feedback is None
        assert room.next_wakeup() is None
        assert room.id not in hub.timers
    finally:
        ROOMS.pop(room.id, None)
        hub.forget(room.id)


@pytest.mark.asyncio
async def test_dropped_lobby_socket_is_skipped():
    hub = Hub()
    dropped = DroppedSocket()
    hub.lobby.append(dropped)
    await hub.send_lobby({"type": "rooms", "payload": []})
    assert dropped.attempts == 1


@pytest.mark.asyncio
async def test_wakeup_skipped_when_nothing_pending():
    hub = Hub()
    room = Room("hub-idle", "Hub")
    hub.schedule_wakeup(room)
    assert hub.timers == {}
