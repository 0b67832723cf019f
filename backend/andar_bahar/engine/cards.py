from typing import Dict, List

from andar_bahar.models import Card, Rank, Suit

RANKS: List[Rank] = list(Rank)  # A, 2, ..., Q, K
SUITS: List[Suit] = [Suit.hearts, Suit.diamonds, Suit.clubs, Suit.spades]
RANK_INDEX: Dict[Rank, int] = {rank: i for i, rank in enumerate(RANKS)}

FULL_DECK: List[Card] = [Card(rank=rank, suit=suit) for suit in SUITS for rank in RANKS]
CARD_CODES: List[str] = [card.code for card in FULL_DECK]

SUIT_SYMBOLS = {
    Suit.hearts: "♥",
    Suit.diamonds: "♦",
    Suit.clubs: "♣",
    Suit.spades: "♠",
}

HIGHER_RANK_COUNT = 6


def parse_card(code: str) -> Card:
    return Card.model_validate(code)


def parse_deck(codes: str) -> List[Card]:
    """Parse 'AH 5D AS' or 'AH,5D,AS' into cards."""
    return [parse_card(tok) for tok in codes.replace(",", " ").split() if tok]


def higher_ranks(rank: Rank, count: int = HIGHER_RANK_COUNT) -> List[Rank]:
    """Ranks circularly following ``rank`` (King wraps to Ace)."""
    start = RANK_INDEX[rank]
    return [RANKS[(start + step) % len(RANKS)] for step in range(1, count + 1)]


def rank_distance(rank: Rank, from_rank: Rank) -> int:
    return (RANK_INDEX[rank] - RANK_INDEX[from_rank]) % len(RANKS)


def pretty(card: Card) -> str:
    return f"{card.rank.value}{SUIT_SYMBOLS[card.suit]}"
