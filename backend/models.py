from __future__ import annotations
from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field, ConfigDict, model_validator

Suit = Literal["hearts", "diamonds", "clubs", "spades"]
Rank = Literal["A", "3", "7", "2", "K", "4", "J", "5", "Q", "6"]

SUIT_SYMBOLS: Dict[Suit, str] = {
    "hearts": "♥",
    "diamonds": "♦",
    "clubs": "♣",
    "spades": "♠",
}

SUIT_COLOR: Dict[Suit, Literal["red", "black"]] = {
    "hearts": "red",
    "diamonds": "red",
    "clubs": "black",
    "spades": "black",
}

# display ordinal only, rules never compare these
RANK_VALUES: Dict[Rank, int] = {
    "A": 14,
    "3": 13,
    "7": 12,
    "2": 11,
    "K": 10,
    "4": 9,
    "J": 8,
    "5": 7,
    "Q": 6,
    "6": 5,
}


class GamePhase(str, Enum):
    LOBBY = "lobby"
    CHOOSE_TRUMP = "choose_trump"
    DEALING = "dealing"
    PLAYING = "playing"
    ROUND_END = "round_end"


class Card(BaseModel):
    id: str
    suit: Suit
    rank: Rank
    symbol: Optional[str] = None
    color: Optional[Literal["red", "black"]] = None
    value: Optional[int] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, value):
        if isinstance(value, dict):
            suit = value.get("suit")
            rank = value.get("rank")
            if suit in SUIT_SYMBOLS:
                if value.get("symbol") is None:
                    value = {**value, "symbol": SUIT_SYMBOLS[suit]}
                if value.get("color") is None:
                    value = {**value, "color": SUIT_COLOR[suit]}
            if rank in RANK_VALUES and value.get("value") is None:
                value = {**value, "value": RANK_VALUES[rank]}
            if value.get("id") is None and suit in SUIT_SYMBOLS and rank in RANK_VALUES:
                value = {**value, "id": f"{suit}-{rank}"}
        return value

    def __str__(self) -> str:
        return f"{self.rank}{SUIT_SYMBOLS[self.suit]}"


class TablePlay(BaseModel):
    player_id: str = Field(alias="playerId")
    card: Card

    model_config = ConfigDict(populate_by_name=True)


class RoundResult(BaseModel):
    type: Literal["escaped", "life_lost", "toco_confirmed"]
    winner_id: str = Field(alias="winnerId")
    loser_id: Optional[str] = Field(default=None, alias="loserId")

    model_config = ConfigDict(populate_by_name=True)


class TrickFeedback(BaseModel):
    winner_id: str = Field(alias="winnerId")
    winner_name: str = Field(alias="winnerName")
    points: int

    model_config = ConfigDict(populate_by_name=True)


class Player(BaseModel):
    id: str
    name: str
    avatar_url: Optional[str] = None
    seat: Optional[int] = None


class TableConfig(BaseModel):
    settle_delay_sec: float = Field(1.2, ge=0, alias="settleDelaySec")
    draw_delay_sec: float = Field(0.3, ge=0, alias="drawDelaySec")
    feedback_ttl_sec: float = Field(2.5, ge=0, alias="feedbackTtlSec")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateGameRequest(BaseModel):
    room_name: str
    config: Optional[TableConfig] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JoinGameRequest(BaseModel):
    room_id: str


class PlayCardIntent(BaseModel):
    player_id: str
    card_id: str = Field(alias="cardId")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ChooseTrumpIntent(BaseModel):
    player_id: str
    suit: Suit

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class PlayerSummary(BaseModel):
    player_id: str
    name: str
    hand_count: int
    round_score: int
    game_points: int
    is_target: bool
    is_host: bool


class GameState(BaseModel):
    room_id: str
    room_name: str
    phase: GamePhase
    players: List[Player]
    me: Optional[Player]
    host_id: Optional[str] = None
    is_host: bool = False
    trump_suit: Optional[Suit] = None
    deck_count: int = 0
    hand: Optional[List[Card]] = None
    hand_counts: Dict[str, int] = Field(default_factory=dict)
    table_cards: List[TablePlay] = Field(default_factory=list)
    turn_player_id: Optional[str] = None
    round_scores: Dict[str, int] = Field(default_factory=dict)
    game_points: Dict[str, int] = Field(default_factory=dict)
    toco_target: Optional[str] = None
    lives: int = 3
    round_result: Optional[RoundResult] = None
    trick_feedback: Optional[TrickFeedback] = None
    point_goal: int = 31
    hand_number: int = 0
    player_summaries: List[PlayerSummary] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")
