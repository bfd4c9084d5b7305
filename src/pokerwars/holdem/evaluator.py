"""Hold'em hand evaluator.

Scores 5-card hands as integers (category in the high bits, kickers packed
below) and picks the best five of seven at showdown.
"""

from __future__ import annotations

import itertools
from collections import Counter
from dataclasses import dataclass
from enum import IntEnum

__all__ = [
    "Card", "HandRank", "parse_card", "evaluate_hand", "best_five",
    "evaluate_best", "hand_category", "describe", "HAND_NAMES",
]

RANKS = "23456789TJQKA"
SUITS = "hdcs"
RANK_VALUE: dict[str, int] = {r: i for i, r in enumerate(RANKS)}
_RANK_WORDS = {
    "2": "Two", "3": "Three", "4": "Four", "5": "Five", "6": "Six",
    "7": "Seven", "8": "Eight", "9": "Nine", "T": "Ten", "J": "Jack",
    "Q": "Queen", "K": "King", "A": "Ace",
}
_CATEGORY_SHIFT = 20


@dataclass(frozen=True)
class Card:
    rank: str
    suit: str

    def __str__(self) -> str:
        return f"{self.rank}{self.suit}"

    __repr__ = __str__


class HandRank(IntEnum):
    HIGH_CARD = 0
    PAIR = 1
    TWO_PAIR = 2
    THREE_OF_A_KIND = 3
    STRAIGHT = 4
    FLUSH = 5
    FULL_HOUSE = 6
    FOUR_OF_A_KIND = 7
    STRAIGHT_FLUSH = 8
    ROYAL_FLUSH = 9


HAND_NAMES: dict[HandRank, str] = {
    HandRank.HIGH_CARD: "High Card",
    HandRank.PAIR: "Pair",
    HandRank.TWO_PAIR: "Two Pair",
    HandRank.THREE_OF_A_KIND: "Three of a Kind",
    HandRank.STRAIGHT: "Straight",
    HandRank.FLUSH: "Flush",
    HandRank.FULL_HOUSE: "Full House",
    HandRank.FOUR_OF_A_KIND: "Four of a Kind",
    HandRank.STRAIGHT_FLUSH: "Straight Flush",
    HandRank.ROYAL_FLUSH: "Royal Flush",
}


def parse_card(text: str) -> Card:
    """Parse 'Ah' / 'td' style card text."""
    if len(text) != 2:
        raise ValueError(f"Bad card: {text!r}")
    rank, suit = text[0].upper(), text[1].lower()
    if rank not in RANK_VALUE or suit not in SUITS:
        raise ValueError(f"Bad card: {text!r}")
    return Card(rank, suit)


def _straight_high(values: list[int]) -> int | None:
    """High card value of a straight, or None. Ace plays low in the wheel."""
    unique = sorted(set(values), reverse=True)
    if len(unique) != 5:
        return None
    if unique[0] - unique[4] == 4:
        return unique[0]
    if unique == [12, 3, 2, 1, 0]:
        return 3
    return None


def _pack(category: HandRank, kickers: list[int]) -> int:
    bits = 0
    for i, v in enumerate(kickers[:5]):
        bits |= v << (4 * (4 - i))
    return (int(category) << _CATEGORY_SHIFT) | bits


def evaluate_hand(hand: list[Card]) -> int:
    """Score a 5-card hand. Higher beats lower."""
    if len(hand) != 5:
        raise ValueError(f"Expected 5 cards, got {len(hand)}")

    values = sorted((RANK_VALUE[c.rank] for c in hand), reverse=True)
    flush = len({c.suit for c in hand}) == 1
    high = _straight_high(values)

    # (count desc, value desc)
    groups = sorted(Counter(values).items(), key=lambda g: (g[1], g[0]), reverse=True)
    counts = [g[1] for g in groups]
    ordered = [g[0] for g in groups]

    if flush and high is not None:
        category = HandRank.ROYAL_FLUSH if high == RANK_VALUE["A"] else HandRank.STRAIGHT_FLUSH
        return _pack(category, [high])
    if counts[0] == 4:
        return _pack(HandRank.FOUR_OF_A_KIND, ordered)
    if counts[:2] == [3, 2]:
        return _pack(HandRank.FULL_HOUSE, ordered)
    if flush:
        return _pack(HandRank.FLUSH, values)
    if high is not None:
        return _pack(HandRank.STRAIGHT, [high])
    if counts[0] == 3:
        return _pack(HandRank.THREE_OF_A_KIND, ordered)
    if counts[:2] == [2, 2]:
        return _pack(HandRank.TWO_PAIR, ordered)
    if counts[0] == 2:
        return _pack(HandRank.PAIR, ordered)
    return _pack(HandRank.HIGH_CARD, values)


def hand_category(score: int) -> HandRank:
    return HandRank(score >> _CATEGORY_SHIFT)


def best_five(cards: list[Card]) -> list[Card]:
    """Best 5-card combination out of 5-7 cards."""
    if len(cards) < 5:
        raise ValueError(f"Need at least 5 cards, got {len(cards)}")
    return list(max(itertools.combinations(cards, 5), key=lambda c: evaluate_hand(list(c))))


def evaluate_best(cards: list[Card]) -> tuple[int, list[Card]]:
    """Return (score, best five) for a player's hole plus board cards."""
    best = best_five(cards)
    return evaluate_hand(best), best


def describe(score: int, best: list[Card]) -> str:
    """Human readable description, e.g. 'Two Pair, Kings and Fives'."""
    category = hand_category(score)
    name = HAND_NAMES[category]
    counts = Counter(c.rank for c in best)
    by_count = sorted(counts.items(), key=lambda g: (g[1], RANK_VALUE[g[0]]), reverse=True)
    top = _RANK_WORDS[by_count[0][0]]

    if category in (HandRank.PAIR, HandRank.THREE_OF_A_KIND, HandRank.FOUR_OF_A_KIND):
        return f"{name}, {_plural(top)}"
    if category == HandRank.TWO_PAIR:
        return f"{name}, {_plural(top)} and {_plural(_RANK_WORDS[by_count[1][0]])}"
    if category == HandRank.FULL_HOUSE:
        return f"{name}, {_plural(top)} full of {_plural(_RANK_WORDS[by_count[1][0]])}"
    if category in (HandRank.STRAIGHT, HandRank.STRAIGHT_FLUSH):
        high = _straight_high([RANK_VALUE[c.rank] for c in best])
        return f"{name}, {_RANK_WORDS[RANKS[high]]} high"
    if category == HandRank.ROYAL_FLUSH:
        return name
    high_card = max(best, key=lambda c: RANK_VALUE[c.rank])
    return f"{name}, {_RANK_WORDS[high_card.rank]} high"


def _plural(word: str) -> str:
    return word + ("es" if word == "Six" else "s")
