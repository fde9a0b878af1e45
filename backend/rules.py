"""Card catalog, deck builder and trick resolution for Toco.

Everything here is pure: no room state, no clock. ``game.Room`` calls into
these helpers for every deal and every trick.
"""
from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from models import Card, Rank, Suit, TablePlay

SUITS: List[Suit] = ["hearts", "diamonds", "clubs", "spades"]
RANKS: List[Rank] = ["A", "3", "7", "2", "K", "4", "J", "5", "Q", "6"]

POINTS_GOAL = 31
TRUMP_BONUS = 1000
LEAD_SUIT_BONUS = 200

BASE_POWER: Dict[str, int] = {
    "A": 100,
    "3": 90,
    "7": 80,
    "2": 70,
    "K": 60,
    "4": 55,
    "J": 50,
    "5": 45,
    "Q": 40,
    "6": 35,
}

CARD_POINTS: Dict[str, int] = {
    "A": 11,
    "7": 10,
    "K": 4,
    "4": 4,
    "J": 3,
    "5": 3,
    "Q": 2,
    "6": 2,
}

# only worth points when they belong to the trump suit
TRUMP_ONLY_POINTS: Dict[str, int] = {
    "3": 10,
    "2": 10,
}


def card_power(card: Card, trump: Optional[str], lead_suit: Optional[str]) -> int:
    power = BASE_POWER.get(card.rank, 0)
    if card.suit == trump:
        power += TRUMP_BONUS
    elif card.suit == lead_suit:
        power += LEAD_SUIT_BONUS
    return power


def card_points(card: Card, trump: Optional[str]) -> int:
    if card.rank in CARD_POINTS:
        return CARD_POINTS[card.rank]
    if card.suit == trump:
        return TRUMP_ONLY_POINTS.get(card.rank, 0)
    return 0


def make_deck() -> List[Card]:
    deck: List[Card] = []
    for suit in SUITS:
        for rank in RANKS:
            deck.append(Card(id=f"{suit}-{rank}-{uuid.uuid4().hex[:9]}", suit=suit, rank=rank))
    return deck


def shuffle_deck(cards: Sequence[Card], rng: Optional[random.Random] = None) -> List[Card]:
    """Return a uniformly shuffled copy of ``cards`` (Durstenfeld)."""
    rng = rng or random.Random()
    deck = list(cards)
    for i in range(len(deck) - 1, 0, -1):
        j = rng.randint(0, i)
        deck[i], deck[j] = deck[j], deck[i]
    return deck


def new_shuffled_deck(rng: Optional[random.Random] = None) -> List[Card]:
    return shuffle_deck(make_deck(), rng)


@dataclass(frozen=True)
class TrickOutcome:
    winner_id: str
    loser_id: str
    points: int
    lead_suit: str
    winning_card: Card
    losing_card: Card
    powers: Dict[str, int]


def resolve_trick(plays: Sequence[TablePlay], trump: Optional[str]) -> Optional[TrickOutcome]:
    """Decide a two-card trick.

    Only the last two plays count when more are present. Returns ``None``
    when fewer than two cards are on the table; the caller decides how to
    clean up.
    """
    if len(plays) < 2:
        return None
    first, second = plays[-2], plays[-1]
    lead_suit = first.card.suit
    first_power = card_power(first.card, trump, lead_suit)
    second_power = card_power(second.card, trump, lead_suit)
    if first_power > second_power:
        winner, loser = first, second
    else:
        winner, loser = second, first
    points = card_points(first.card, trump) + card_points(second.card, trump)
    return TrickOutcome(
        winner_id=winner.player_id,
        loser_id=loser.player_id,
        points=points,
        lead_suit=lead_suit,
        winning_card=winner.card,
        losing_card=loser.card,
        powers={first.player_id: first_power, second.player_id: second_power},
    )
