from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Callable, Dict, List, Optional, Set

from fastapi import (
    FastAPI,
    WebSocket,
    WebSocketDisconnect,
    Header,
    Query,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from app.settings import get_settings
from models import ChooseTrumpIntent, CreateGameRequest, JoinGameRequest, PlayCardIntent, Player, TableConfig
from game import ROOMS, Room, list_rooms_summary

logger = logging.getLogger(__name__)

settings = get_settings()
ALLOWED_ORIGINS = settings.allowed_origins()

app = FastAPI()
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

logger.info("[CORS] allow_origins: %s", ALLOWED_ORIGINS)


def default_table_config() -> TableConfig:
    return TableConfig(
        settle_delay_sec=settings.trick_settle_delay_sec,
        draw_delay_sec=settings.draw_delay_sec,
        feedback_ttl_sec=settings.trick_feedback_ttl_sec,
    )


# ---------- REST ----------
@app.get("/api/rooms")
async def rooms():
    return list_rooms_summary()


@app.post("/api/game/create")
async def create_game(
    req: CreateGameRequest,
    x_user_id: str = Header(...),
    x_user_name: str = Header("Player"),
    x_user_avatar: str = Header(""),
):
    room_id = str(uuid.uuid4())[:8]
    r = Room(room_id, req.room_name, req.config or default_table_config())
    ROOMS[room_id] = r
    hub.watch(r)
    r.add_player(Player(id=x_user_id, name=x_user_name, avatar_url=x_user_avatar))
    logger.info("Room %s created by %s", room_id, x_user_id)
    await broadcast_lobby()
    return {"room_id": room_id}


@app.post("/api/game/join")
async def join_game(
    req: JoinGameRequest,
    x_user_id: str = Header(...),
    x_user_name: str = Header("Player"),
    x_user_avatar: str = Header(""),
):
    r = ROOMS.get(req.room_id)
    if not r:
        return {"error": "room_not_found"}
    try:
        r.add_player(Player(id=x_user_id, name=x_user_name, avatar_url=x_user_avatar))
    except ValueError as exc:
        return {"error": "room_full" if str(exc) == "Room full" else "game_started"}
    await sync_room(r)
    await broadcast_lobby()
    return {"ok": True}


def _get_room_or_404(room_id: str) -> Room:
    room = ROOMS.get(room_id)
    if not room:
        raise HTTPException(status_code=404, detail="room_not_found")
    return room


@app.post("/api/game/start/{room_id}")
async def start_game(room_id: str, x_user_id: str = Header(...)):
    room = _get_room_or_404(room_id)
    accepted = room.start_match(x_user_id)
    await sync_room(room)
    if accepted:
        await broadcast_lobby()
    return {"ok": accepted}


@app.post("/api/game/next/{room_id}")
async def next_hand(room_id: str, x_user_id: str = Header(...)):
    room = _get_room_or_404(room_id)
    accepted = room.next_hand(x_user_id)
    await sync_room(room)
    return {"ok": accepted}


@app.get("/api/game/state/{room_id}")
async def game_state(room_id: str, x_user_id: Optional[str] = Header(None)):
    r = _get_room_or_404(room_id)
    return r.to_state(x_user_id).model_dump(by_alias=True, mode="json")


# ---------- WebSockets hub ----------
class Hub:
    def __init__(self):
        self.rooms: Dict[str, List[WebSocket]] = {}
        self.lobby: List[WebSocket] = []
        self.ws_player: Dict[WebSocket, str] = {}
        self.ws_room: Dict[WebSocket, str] = {}
        self.dirty: Set[str] = set()
        self.timers: Dict[str, asyncio.Task] = {}
        self._unsubscribe: Dict[str, Callable[[], None]] = {}

    def watch(self, room: Room):
        if room.id in self._unsubscribe:
            return
        room_id = room.id

        def _on_change(key: str, player_id: Optional[str]):
            self.dirty.add(room_id)

        self._unsubscribe[room_id] = room.store.subscribe(_on_change)

    def forget(self, room_id: str):
        unsubscribe = self._unsubscribe.pop(room_id, None)
        if unsubscribe:
            unsubscribe()
        timer = self.timers.pop(room_id, None)
        if timer:
            timer.cancel()
        self.dirty.discard(room_id)

    async def connect_room(self, room_id: str, player_id: str, ws: WebSocket):
        await ws.accept()
        self.rooms.setdefault(room_id, []).append(ws)
        self.ws_player[ws] = player_id
        self.ws_room[ws] = room_id

    async def disconnect(self, ws: WebSocket):
        pid = self.ws_player.pop(ws, None)
        rid = self.ws_room.pop(ws, None)
        if rid and ws in self.rooms.get(rid, []):
            self.rooms[rid].remove(ws)
        if rid and pid and rid in ROOMS:
            ROOMS[rid].remove_player(pid)
            if len(ROOMS[rid].players) == 0:
                # empty rooms are dropped
                ROOMS.pop(rid, None)
                self.forget(rid)
            await self.flush()
            await broadcast_lobby()

    async def connect_lobby(self, ws: WebSocket):
        await ws.accept()
        self.lobby.append(ws)

    async def send_room_state(self, room_id: str):
        room = ROOMS.get(room_id)
        if not room:
            return
        for ws in list(self.rooms.get(room_id, [])):
            player_id = self.ws_player.get(ws)
            try:
                payload = room.to_state(player_id).model_dump(by_alias=True, mode="json")
                await ws.send_json({"type": "state", "payload": payload})
            except (RuntimeError, WebSocketDisconnect):
                logger.debug("Room %s: socket for %s already closed", room_id, player_id)

    async def send_lobby(self, message: dict):
        for ws in list(self.lobby):
            try:
                await ws.send_json(message)
            except (RuntimeError, WebSocketDisconnect):
                logger.debug("Lobby socket already closed")

    async def flush(self):
        while self.dirty:
            await self.send_room_state(self.dirty.pop())

    def schedule_wakeup(self, room: Room):
        timer = self.timers.pop(room.id, None)
        if timer:
            timer.cancel()
        wake = room.next_wakeup()
        if wake is None:
            return
        delay = max(0.0, wake - room.clock())
        self.timers[room.id] = asyncio.create_task(self._wake(room.id, delay))

    async def _wake(self, room_id: str, delay: float):
        await asyncio.sleep(delay)
        self.timers.pop(room_id, None)
        room = ROOMS.get(room_id)
        if room is None:
            return
        try:
            room.tick()
            await self.flush()
        finally:
            self.schedule_wakeup(room)


hub = Hub()


# ---------- broadcasters ----------
async def sync_room(room: Room):
    await hub.flush()
    hub.schedule_wakeup(room)


async def broadcast_lobby():
    await hub.send_lobby({"type": "rooms", "payload": list_rooms_summary()})


def _handle_intent(room: Room, player_id: str, data: dict) -> bool:
    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")
    t = data.get("type")
    if t == "play":
        intent = PlayCardIntent.model_validate({**data, "player_id": player_id})
        return room.play_card(intent.player_id, intent.card_id)
    if t == "choose_trump":
        intent = ChooseTrumpIntent.model_validate({**data, "player_id": player_id})
        return room.choose_trump(intent.player_id, intent.suit)
    if t == "start":
        return room.start_match(player_id)
    if t == "next_hand":
        return room.next_hand(player_id)
    if t == "unstick":
        return room.force_turn_to_target(player_id)
    raise ValueError(f"Unknown message type: {t!r}")


# ---------- WS endpoints ----------
@app.websocket("/ws/lobby")
async def ws_lobby(ws: WebSocket):
    await hub.connect_lobby(ws)
    try:
        await ws.send_json({"type": "rooms", "payload": list_rooms_summary()})
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        if ws in hub.lobby:
            hub.lobby.remove(ws)


@app.websocket("/ws/{room_id}")
async def ws_room(ws: WebSocket, room_id: str, player_id: str = Query(...)):
    if room_id not in ROOMS:
        await ws.close(code=1008, reason="room_not_found")
        return

    await hub.connect_room(room_id, player_id, ws)
    try:
        await hub.send_room_state(room_id)
        while True:
            raw = await ws.receive_text()
            room = ROOMS.get(room_id)
            if room is None:
                await ws.close(code=1011, reason="room_not_found")
                await hub.disconnect(ws)
                break
            try:
                data = json.loads(raw)
                accepted = _handle_intent(room, player_id, data)
            except (ValidationError, ValueError) as exc:
                await ws.send_json({"type": "error", "error": str(exc)})
                continue
            if accepted and data["type"] == "start":
                await broadcast_lobby()
            await sync_room(room)
    except WebSocketDisconnect:
        await hub.disconnect(ws)
