from __future__ import annotations

import logging
import random
import time
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from models import (
    Card,
    GamePhase,
    GameState,
    Player,
    PlayerSummary,
    RoundResult,
    TableConfig,
    TablePlay,
    TrickFeedback,
)
from replication import ReplicatedStore
from rules import POINTS_GOAL, SUITS, TrickOutcome, new_shuffled_deck, resolve_trick

logger = logging.getLogger(__name__)

MAX_PLAYERS = 2
HAND_SIZE = 4
MAX_LIVES = 3
FALLBACK_PLAYER_NAME = "Opponent"

PHASE_TRANSITIONS: Dict[GamePhase, FrozenSet[GamePhase]] = {
    GamePhase.LOBBY: frozenset({GamePhase.CHOOSE_TRUMP}),
    GamePhase.CHOOSE_TRUMP: frozenset({GamePhase.DEALING, GamePhase.LOBBY}),
    GamePhase.DEALING: frozenset({GamePhase.PLAYING, GamePhase.LOBBY}),
    GamePhase.PLAYING: frozenset({GamePhase.ROUND_END, GamePhase.LOBBY}),
    GamePhase.ROUND_END: frozenset({GamePhase.CHOOSE_TRUMP, GamePhase.LOBBY}),
}


class Room:
    """Authoritative state for one two-player Toco table.

    The room is the only writer of match state. Every intent goes through a
    guarded entry point that returns ``False`` and leaves state untouched
    when the intent is not allowed. Timed steps (trick settle, post-trick
    draw, feedback expiry) are stored as timestamps and fired by ``tick``.
    """

    def __init__(
        self,
        room_id: str,
        room_name: str,
        config: Optional[TableConfig] = None,
        *,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.id = room_id
        self.name = room_name
        self.config = config or TableConfig()
        self.rng = rng or random.Random()
        self.clock = clock or time.monotonic
        self.store = ReplicatedStore()
        self.players: List[Player] = []

        self.phase = GamePhase.LOBBY
        self.deck: List[Card] = []
        self.hands: Dict[str, List[Card]] = {}
        self.table_cards: List[TablePlay] = []
        self.trump: Optional[str] = None
        self.turn: Optional[str] = None
        self.round_scores: Dict[str, int] = {}
        self.game_points: Dict[str, int] = {}
        self.toco_target: Optional[str] = None
        self.lives: int = MAX_LIVES
        self.round_result: Optional[RoundResult] = None
        self.trick_feedback: Optional[TrickFeedback] = None
        self.hand_number: int = 0

        self.resolve_at_ts: Optional[float] = None
        self.draw_at_ts: Optional[float] = None
        self.pending_draw: Optional[Tuple[str, str]] = None
        self.feedback_until_ts: Optional[float] = None

        self._publish()

    # ------------------------------------------------------------------
    # Lobby management
    # ------------------------------------------------------------------
    def add_player(self, p: Player):
        if self.phase != GamePhase.LOBBY:
            raise ValueError("Game already started")
        if any(x.id == p.id for x in self.players):
            return
        if len(self.players) >= MAX_PLAYERS:
            raise ValueError("Room full")
        p.seat = len(self.players)
        self.players.append(p)
        self.hands.setdefault(p.id, [])
        self._publish()

    def remove_player(self, player_id: str):
        if not any(p.id == player_id for p in self.players):
            return
        self.players = [p for p in self.players if p.id != player_id]
        for seat, player in enumerate(self.players):
            player.seat = seat
        self.hands.pop(player_id, None)
        self.store.drop_player(player_id)
        if self.phase != GamePhase.LOBBY:
            logger.info("Room %s: %s left mid-match, back to lobby", self.id, player_id)
            self._abort_match()
        self._publish()

    @property
    def host_id(self) -> Optional[str]:
        # first seat holds authority; leaving hands it to the next seat
        return self.players[0].id if self.players else None

    def is_host(self, player_id: Optional[str]) -> bool:
        return player_id is not None and player_id == self.host_id

    # ------------------------------------------------------------------
    # Match lifecycle
    # ------------------------------------------------------------------
    def start_match(self, player_id: str) -> bool:
        self.tick()
        if not self.is_host(player_id):
            return self._reject("start", player_id, "not host")
        if self.phase != GamePhase.LOBBY:
            return self._reject("start", player_id, f"phase is {self.phase.value}")
        if len(self.players) < MAX_PLAYERS:
            return self._reject("start", player_id, "not enough players")
        ids = [p.id for p in self.players]
        self.game_points = {pid: 0 for pid in ids}
        self.lives = MAX_LIVES
        self.toco_target = self.rng.choice(ids)
        logger.info("Room %s: match started, %s is in the toco", self.id, self.toco_target)
        self._start_new_hand()
        return True

    def next_hand(self, player_id: str) -> bool:
        self.tick()
        if not self.is_host(player_id):
            return self._reject("next_hand", player_id, "not host")
        if self.phase != GamePhase.ROUND_END:
            return self._reject("next_hand", player_id, f"phase is {self.phase.value}")
        self._start_new_hand()
        return True

    def choose_trump(self, player_id: str, suit: str) -> bool:
        self.tick()
        if self.phase != GamePhase.CHOOSE_TRUMP:
            return self._reject("choose_trump", player_id, f"phase is {self.phase.value}")
        if player_id != self.toco_target:
            return self._reject("choose_trump", player_id, "not the toco target")
        if suit not in SUITS:
            return self._reject("choose_trump", player_id, f"unknown suit {suit!r}")
        self.trump = suit
        logger.info("Room %s: hand %s trump is %s", self.id, self.hand_number, suit)
        self._transition(GamePhase.DEALING)
        self._publish()
        self._deal()
        return True

    def force_turn_to_target(self, player_id: str) -> bool:
        """Operator escape hatch: hand the turn back to the toco target."""
        self.tick()
        if not self.is_host(player_id):
            return self._reject("unstick", player_id, "not host")
        if self.phase != GamePhase.PLAYING or self.toco_target is None:
            return self._reject("unstick", player_id, f"phase is {self.phase.value}")
        if self.resolve_at_ts is not None or self.pending_draw is not None:
            return self._reject("unstick", player_id, "previous trick still settling")
        if any(play.player_id == self.toco_target for play in self.table_cards):
            return self._reject("unstick", player_id, "target already played this trick")
        logger.warning("Room %s: host forced turn back to %s", self.id, self.toco_target)
        self.turn = self.toco_target
        self._publish()
        return True

    def _start_new_hand(self):
        self.hand_number += 1
        self.deck = new_shuffled_deck(self.rng)
        self.hands = {p.id: [] for p in self.players}
        self.round_scores = {p.id: 0 for p in self.players}
        self.table_cards = []
        self.trump = None
        self.turn = None
        self.round_result = None
        self.trick_feedback = None
        self._clear_pending()
        self._transition(GamePhase.CHOOSE_TRUMP)
        logger.info("Room %s: hand %s, %s chooses trump", self.id, self.hand_number, self.toco_target)
        self._publish()

    def _deal(self):
        if self.phase != GamePhase.DEALING:
            return
        for idx, player in enumerate(self.players):
            self.hands[player.id] = self.deck[idx * HAND_SIZE:(idx + 1) * HAND_SIZE]
        self.deck = self.deck[len(self.players) * HAND_SIZE:]
        self.turn = self.toco_target
        self._transition(GamePhase.PLAYING)
        self._publish()

    def _abort_match(self):
        self._transition(GamePhase.LOBBY)
        self.deck = []
        self.hands = {p.id: [] for p in self.players}
        self.table_cards = []
        self.trump = None
        self.turn = None
        self.round_scores = {}
        self.game_points = {}
        self.toco_target = None
        self.lives = MAX_LIVES
        self.round_result = None
        self.trick_feedback = None
        self._clear_pending()

    # ------------------------------------------------------------------
    # Tricks
    # ------------------------------------------------------------------
    def play_card(self, player_id: str, card_id: str) -> bool:
        now = self.clock()
        self.tick(now)
        if self.phase != GamePhase.PLAYING:
            return self._reject("play", player_id, f"phase is {self.phase.value}")
        if self.resolve_at_ts is not None or self.pending_draw is not None:
            return self._reject("play", player_id, "previous trick still settling")
        if player_id != self.turn:
            return self._reject("play", player_id, "not your turn")
        if any(play.player_id == player_id for play in self.table_cards):
            return self._reject("play", player_id, "already played this trick")
        hand = self.hands.get(player_id, [])
        card = next((c for c in hand if c.id == card_id), None)
        if card is None:
            return self._reject("play", player_id, f"card {card_id} not in hand")

        self.hands[player_id] = [c for c in hand if c.id != card_id]
        self.table_cards.append(TablePlay(player_id=player_id, card=card))
        if len(self.table_cards) >= len(self.players):
            self.resolve_at_ts = now + self.config.settle_delay_sec
        else:
            self.turn = self._other_player_id(player_id)
        self._publish()
        self.tick(now)
        return True

    def resolve_current_trick(self, now: Optional[float] = None) -> Optional[TrickOutcome]:
        """Score the cards on the table; safe to call again on an empty table."""
        now = self.clock() if now is None else now
        self.resolve_at_ts = None
        outcome = resolve_trick(self.table_cards, self.trump) if self.phase == GamePhase.PLAYING else None
        if outcome is None:
            if self.table_cards:
                logger.warning(
                    "Room %s: resolving with %d card(s) on table, discarding",
                    self.id,
                    len(self.table_cards),
                )
            self.table_cards = []
            self._publish()
            return None

        winner_id = outcome.winner_id
        self.round_scores[winner_id] = self.round_scores.get(winner_id, 0) + outcome.points
        self.trick_feedback = TrickFeedback(
            winner_id=winner_id,
            winner_name=self._player_name(winner_id),
            points=outcome.points,
        )
        self.table_cards = []
        self.turn = winner_id
        logger.info(
            "Room %s: %s beats %s, %s takes %s (round %s)",
            self.id,
            outcome.winning_card,
            outcome.losing_card,
            winner_id,
            outcome.points,
            self.round_scores[winner_id],
        )

        if self.round_scores[winner_id] >= POINTS_GOAL:
            self._handle_hand_end(winner_id)
        else:
            self.pending_draw = (winner_id, outcome.loser_id)
            self.draw_at_ts = now + self.config.draw_delay_sec
            self.feedback_until_ts = now + self.config.feedback_ttl_sec
        self._publish()
        return outcome

    def _draw_after_trick(self):
        if self.pending_draw is None:
            return
        winner_id, loser_id = self.pending_draw
        self.pending_draw = None
        self.draw_at_ts = None
        if self.phase != GamePhase.PLAYING:
            return
        # a pair or nothing, winner first
        if len(self.deck) >= 2:
            self.hands.setdefault(winner_id, []).append(self.deck.pop(0))
            self.hands.setdefault(loser_id, []).append(self.deck.pop(0))
        else:
            logger.debug("Room %s: %d card(s) left, no draw", self.id, len(self.deck))
        self.turn = winner_id
        self._publish()

    def _expire_feedback(self):
        self.feedback_until_ts = None
        self.trick_feedback = None
        self._publish()

    def _handle_hand_end(self, winner_id: str):
        loser_id = self._other_player_id(winner_id)
        if winner_id == self.toco_target:
            result_type = "escaped"
            self.toco_target = loser_id
            self.lives = MAX_LIVES
        else:
            self.lives -= 1
            if self.lives > 0:
                result_type = "life_lost"
            else:
                result_type = "toco_confirmed"
                self.game_points[winner_id] = self.game_points.get(winner_id, 0) + 1
                self.lives = MAX_LIVES
        self.round_result = RoundResult(type=result_type, winner_id=winner_id, loser_id=loser_id)
        self.trick_feedback = None
        self.turn = None
        self._clear_pending()
        self._transition(GamePhase.ROUND_END)
        logger.info(
            "Room %s: hand %s won by %s (%s), target=%s lives=%s",
            self.id,
            self.hand_number,
            winner_id,
            result_type,
            self.toco_target,
            self.lives,
        )

    # ------------------------------------------------------------------
    # Deferred steps
    # ------------------------------------------------------------------
    def tick(self, now: Optional[float] = None) -> bool:
        """Fire every deferred step that is due; returns whether any fired."""
        now = self.clock() if now is None else now
        fired = False
        while True:
            due = [
                (ts, step)
                for ts, step in (
                    (self.resolve_at_ts, "resolve"),
                    (self.draw_at_ts, "draw"),
                    (self.feedback_until_ts, "feedback"),
                )
                if ts is not None and ts <= now
            ]
            if not due:
                return fired
            fired = True
            _, step = min(due)
            if step == "resolve":
                self.resolve_current_trick(now)
            elif step == "draw":
                self._draw_after_trick()
            else:
                self._expire_feedback()

    def next_wakeup(self) -> Optional[float]:
        pending = [ts for ts in (self.resolve_at_ts, self.draw_at_ts, self.feedback_until_ts) if ts is not None]
        return min(pending) if pending else None

    def _clear_pending(self):
        self.resolve_at_ts = None
        self.draw_at_ts = None
        self.pending_draw = None
        self.feedback_until_ts = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _transition(self, target: GamePhase):
        if target not in PHASE_TRANSITIONS[self.phase]:
            raise RuntimeError(f"Illegal phase transition {self.phase.value} -> {target.value}")
        self.phase = target

    def _reject(self, action: str, player_id: Optional[str], reason: str) -> bool:
        logger.debug("Room %s: ignored %s from %s: %s", self.id, action, player_id, reason)
        return False

    def _other_player_id(self, player_id: str) -> Optional[str]:
        for idx, player in enumerate(self.players):
            if player.id == player_id:
                return self.players[(idx + 1) % len(self.players)].id
        return None

    def _player_name(self, player_id: str) -> str:
        player = next((p for p in self.players if p.id == player_id), None)
        return player.name if player and player.name else FALLBACK_PLAYER_NAME

    def _publish(self):
        store = self.store
        store.set("players", [p.model_dump() for p in self.players])
        store.set("hostId", self.host_id)
        store.set("gameState", self.phase.value)
        store.set("deck", [c.model_dump() for c in self.deck])
        store.set("tableCards", [play.model_dump(by_alias=True) for play in self.table_cards])
        store.set("trumpSuit", self.trump)
        store.set("turn", self.turn)
        store.set("roundScores", dict(self.round_scores))
        store.set("gamePoints", dict(self.game_points))
        store.set("tocoTarget", self.toco_target)
        store.set("lives", self.lives)
        store.set("roundResult", self.round_result.model_dump(by_alias=True) if self.round_result else None)
        store.set("trickFeedback", self.trick_feedback.model_dump(by_alias=True) if self.trick_feedback else None)
        store.set("handNumber", self.hand_number)
        for player in self.players:
            store.set_player_state(player.id, "hand", [c.model_dump() for c in self.hands.get(player.id, [])])

    def to_state(self, me_id: Optional[str]) -> GameState:
        self.tick()
        store = self.store
        players = [Player.model_validate(p) for p in store.get("players", [])]
        me = next((p for p in players if p.id == me_id), None)
        hands = {p.id: store.get_player_state(p.id, "hand", []) for p in players}
        round_scores = store.get("roundScores", {})
        game_points = store.get("gamePoints", {})
        toco_target = store.get("tocoTarget")
        host_id = store.get("hostId")
        round_result = store.get("roundResult")
        trick_feedback = store.get("trickFeedback")

        summaries = [
            PlayerSummary(
                player_id=p.id,
                name=p.name,
                hand_count=len(hands[p.id]),
                round_score=round_scores.get(p.id, 0),
                game_points=game_points.get(p.id, 0),
                is_target=p.id == toco_target,
                is_host=p.id == host_id,
            )
            for p in players
        ]

        return GameState(
            room_id=self.id,
            room_name=self.name,
            phase=GamePhase(store.get("gameState")),
            players=players,
            me=me,
            host_id=host_id,
            is_host=me is not None and me.id == host_id,
            trump_suit=store.get("trumpSuit"),
            deck_count=len(store.get("deck", [])),
            hand=[Card.model_validate(c) for c in hands[me.id]] if me else None,
            hand_counts={pid: len(hand) for pid, hand in hands.items()},
            table_cards=[TablePlay.model_validate(play) for play in store.get("tableCards", [])],
            turn_player_id=store.get("turn"),
            round_scores=round_scores,
            game_points=game_points,
            toco_target=toco_target,
            lives=store.get("lives", MAX_LIVES),
            round_result=RoundResult.model_validate(round_result) if round_result else None,
            trick_feedback=TrickFeedback.model_validate(trick_feedback) if trick_feedback else None,
            point_goal=POINTS_GOAL,
            hand_number=store.get("handNumber", 0),
            player_summaries=summaries,
        )


ROOMS: Dict[str, Room] = {}


def list_rooms_summary():
    res = []
    for r in ROOMS.values():
        res.append(
            {
                "room_id": r.id,
                "name": r.name,
                "players": len(r.players),
                "players_max": MAX_PLAYERS,
                "phase": r.phase.value,
                "started": r.phase != GamePhase.LOBBY,
                "host_id": r.host_id,
            }
        )
    return res
