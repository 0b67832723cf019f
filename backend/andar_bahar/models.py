from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Rank(str, Enum):
    ace = "A"
    two = "2"
    three = "3"
    four = "4"
    five = "5"
    six = "6"
    seven = "7"
    eight = "8"
    nine = "9"
    ten = "T"
    jack = "J"
    queen = "Q"
    king = "K"


class Suit(str, Enum):
    hearts = "Hearts"
    diamonds = "Diamonds"
    clubs = "Clubs"
    spades = "Spades"


class Side(str, Enum):
    andar = "Andar"
    bahar = "Bahar"


class PredictionType(str, Enum):
    match = "match"
    higher = "higher"


SUIT_ALIASES = {
    "H": Suit.hearts, "♥": Suit.hearts,
    "D": Suit.diamonds, "♦": Suit.diamonds,
    "C": Suit.clubs, "♣": Suit.clubs,
    "S": Suit.spades, "♠": Suit.spades,
}


def _split_card_code(code: str) -> Dict[str, Any]:
    """Turn 'AH', '10h', 'T♠' into rank/suit fields."""
    text = code.strip().upper()
    if len(text) < 2:
        raise ValueError(f"Expected a card code like 'AH', got: {code!r}")
    rank_part, suit_part = text[:-1], text[-1]
    if rank_part == "10":
        rank_part = "T"
    if suit_part not in SUIT_ALIASES:
        raise ValueError(f"Unknown suit in card code {code!r}")
    try:
        rank = Rank(rank_part)
    except ValueError:
        raise ValueError(f"Unknown rank in card code {code!r}") from None
    return {"rank": rank, "suit": SUIT_ALIASES[suit_part]}


class Card(BaseModel):
    model_config = ConfigDict(frozen=True)

    rank: Rank
    suit: Suit

    @model_validator(mode="before")
    @classmethod
    def accept_code(cls, data: Any) -> Any:
        if isinstance(data, str):
            return _split_card_code(data)
        return data

    @property
    def code(self) -> str:
        # e.g. rank 'A', suit 'Hearts' -> 'AH'
        return f"{self.rank.value}{self.suit.value[0]}"

    def __str__(self) -> str:
        return self.code


class RoundResult(BaseModel):
    marker: Card
    winner: Side
    cards_dealt: int = Field(..., ge=1, le=51)


class TallyEntry(BaseModel):
    andar: int = 0
    bahar: int = 0
    total: int = 0


class PredictionResult(BaseModel):
    card: Card
    side: Side
    position: int = Field(..., ge=1, le=52)  # absolute, 1-based
    type: PredictionType


class CheatSheetEntry(BaseModel):
    card: Card
    position: int
    winner: Optional[Side] = None  # None when no later card shares the rank
    deal_position: Optional[int] = None


class EstimateResult(BaseModel):
    marker: Card
    andar_wins: int = Field(..., ge=0)
    bahar_wins: int = Field(..., ge=0)
    trials: int = Field(..., ge=0)
    requested_trials: int = Field(..., ge=1)
    bahar_pct: Optional[float] = None
    andar_pct: Optional[float] = None

    @model_validator(mode="after")
    def check_totals(self) -> "EstimateResult":
        if self.andar_wins + self.bahar_wins != self.trials:
            raise ValueError("andar_wins + bahar_wins must equal trials")
        if self.trials > self.requested_trials:
            raise ValueError("trials cannot exceed requested_trials")
        return self


class RoundSlot(BaseModel):
    id: str
    latest_result: RoundResult


class SchedulerConfig(BaseModel):
    initial_slots: int = Field(4, ge=1)
    min_slots: int = Field(1, ge=1)
    max_slots: int = Field(30, ge=1)
    interval_ms: int = Field(500, gt=0)
    min_interval_ms: int = Field(50, gt=0)
    max_interval_ms: int = Field(2000, gt=0)
    autostart: bool = True
    seed: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "SchedulerConfig":
        if not self.min_slots <= self.initial_slots <= self.max_slots:
            raise ValueError("initial_slots must lie within [min_slots, max_slots]")
        if not self.min_interval_ms <= self.interval_ms <= self.max_interval_ms:
            raise ValueError("interval_ms must lie within [min_interval_ms, max_interval_ms]")
        return self


class SchedulerStatus(BaseModel):
    running: bool
    interval_ms: int
    slots: List[RoundSlot]
    slot_count: int
    min_slots: int
    max_slots: int
    can_add: bool
    can_remove: bool
    ticks: int


class RankStatsRow(BaseModel):
    rank: Rank
    andar: int
    bahar: int
    total: int
    bahar_pct: Optional[float] = None
    andar_pct: Optional[float] = None


class CardStatsRow(BaseModel):
    card: Card
    andar: int
    bahar: int
    total: int
    win_rate: Optional[float] = None  # bahar win %, None without data


class HistorySummary(BaseModel):
    total_games: int
    total_andar: int
    total_bahar: int
    bahar_pct: float
    andar_pct: float


def _check_distinct(deck: List[Card]) -> List[Card]:
    if len(deck) > 52:
        raise ValueError("A deck holds at most 52 cards")
    if len(set(deck)) != len(deck):
        raise ValueError("Duplicate card in deck")
    return deck


class ShuffleRequest(BaseModel):
    deck: Optional[List[Card]] = None  # defaults to the full deck
    seed: Optional[int] = Field(None, ge=0)


class RoundRequest(BaseModel):
    deck: Optional[List[Card]] = None  # None = shuffle a fresh full deck
    seed: Optional[int] = Field(None, ge=0)


class PredictionRequest(BaseModel):
    deck: List[Card]
    marker: Card

    @field_validator("deck")
    @classmethod
    def distinct_cards(cls, deck: List[Card]) -> List[Card]:
        return _check_distinct(deck)


class GenerateRequest(BaseModel):
    marker: Card
    seed: Optional[int] = Field(None, ge=0)


class GroupedPredictions(BaseModel):
    match: List[PredictionResult] = Field(default_factory=list)
    higher: Dict[str, List[PredictionResult]] = Field(default_factory=dict)


class GeneratedPrediction(BaseModel):
    deck: List[Card]
    predictions: List[PredictionResult]
    grouped: GroupedPredictions


class CheatSheetRequest(BaseModel):
    deck: Optional[List[Card]] = None
    seed: Optional[int] = Field(None, ge=0)

    @field_validator("deck")
    @classmethod
    def distinct_cards(cls, deck: Optional[List[Card]]) -> Optional[List[Card]]:
        if deck is None:
            return deck
        return _check_distinct(deck)


class EstimateRequest(BaseModel):
    marker: Card
    trials: int = Field(2000, ge=1, le=1_000_000)
    seed: Optional[int] = Field(None, ge=0)


class EstimateStatus(BaseModel):
    status: str  # queued | running | done | stopped | failed
    progress: float
    trials_done: int
    trials_total: int
    bahar_pct_est: Optional[float] = None
    error: Optional[str] = None


class IntervalUpdate(BaseModel):
    interval_ms: int
