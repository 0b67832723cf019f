import threading
from typing import Dict, Iterable, List

from andar_bahar.engine.cards import CARD_CODES, FULL_DECK, RANK_INDEX, RANKS, SUITS
from andar_bahar.errors import InvariantViolation
from andar_bahar.logging_utils import get_logger
from andar_bahar.models import CardStatsRow, HistorySummary, RankStatsRow, RoundResult, Side, TallyEntry

logger = get_logger(__name__)

CARD_SORT_KEYS = ("card", "rank", "suit", "total", "andar", "bahar", "win_rate")
# 'card' ordering groups suits as Clubs, Diamonds, Hearts, Spades
CARD_SUIT_ORDER = "CDHS"


def _pct(part: int, total: int) -> float:
    return part / total * 100 if total > 0 else 0.0


class HistoryAggregator:
    """Cumulative win tallies per marker rank and per exact marker card."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ranks: Dict[str, TallyEntry] = {rank.value: TallyEntry() for rank in RANKS}
        self._cards: Dict[str, TallyEntry] = {code: TallyEntry() for code in CARD_CODES}

    def record(self, result: RoundResult) -> None:
        rank_key = result.marker.rank.value
        card_key = result.marker.code
        with self._lock:
            if rank_key not in self._ranks or card_key not in self._cards:
                raise InvariantViolation(f"Marker {card_key} is outside the 52-card universe")
            for entry in (self._ranks[rank_key], self._cards[card_key]):
                if result.winner == Side.andar:
                    entry.andar += 1
                else:
                    entry.bahar += 1
                entry.total += 1

    def record_many(self, results: Iterable[RoundResult]) -> None:
        """Record a batch so readers never see part of it."""
        with self._lock:
            for result in results:
                self.record(result)

    def reset(self) -> None:
        with self._lock:
            for entry in list(self._ranks.values()) + list(self._cards.values()):
                entry.andar = 0
                entry.bahar = 0
                entry.total = 0
        logger.info("Simulation history cleared")

    def rank_tally(self) -> Dict[str, TallyEntry]:
        with self._lock:
            return {key: entry.model_copy() for key, entry in self._ranks.items()}

    def card_tally(self) -> Dict[str, TallyEntry]:
        with self._lock:
            return {key: entry.model_copy() for key, entry in self._cards.items()}

    def total_rounds(self) -> int:
        with self._lock:
            return sum(entry.total for entry in self._ranks.values())

    def summary(self) -> HistorySummary:
        ranks = self.rank_tally()
        andar = sum(e.andar for e in ranks.values())
        bahar = sum(e.bahar for e in ranks.values())
        total = sum(e.total for e in ranks.values())
        return HistorySummary(
            total_games=total,
            total_andar=andar,
            total_bahar=bahar,
            bahar_pct=_pct(bahar, total),
            andar_pct=_pct(andar, total),
        )

    def rank_stats(self) -> List[RankStatsRow]:
        ranks = self.rank_tally()
        rows = []
        for rank in RANKS:
            e = ranks[rank.value]
            rows.append(
                RankStatsRow(
                    rank=rank,
                    andar=e.andar,
                    bahar=e.bahar,
                    total=e.total,
                    bahar_pct=_pct(e.bahar, e.total) if e.total else None,
                    andar_pct=_pct(e.andar, e.total) if e.total else None,
                )
            )
        return rows

    def card_stats(self, sort_key: str = "card", descending: bool = False) -> List[CardStatsRow]:
        """
        Per-card marker statistics, sorted for display.

        ``win_rate`` is the Bahar win percentage. Cards with no rounds sort as
        -1 under ``win_rate``. Rank sorts break ties by suit and suit sorts by
        rank; other keys keep canonical card order among equals.
        """
        if sort_key not in CARD_SORT_KEYS:
            raise ValueError(f"sort_key must be one of {', '.join(CARD_SORT_KEYS)}")

        cards = self.card_tally()
        rows = []
        for card in FULL_DECK:
            e = cards[card.code]
            rows.append(
                CardStatsRow(
                    card=card,
                    andar=e.andar,
                    bahar=e.bahar,
                    total=e.total,
                    win_rate=_pct(e.bahar, e.total) if e.total else None,
                )
            )

        def card_order(row: CardStatsRow) -> int:
            return CARD_SUIT_ORDER.index(row.card.suit.value[0]) * len(RANKS) + RANK_INDEX[row.card.rank]

        rows.sort(key=card_order)
        if sort_key == "card":
            rows.sort(key=card_order, reverse=descending)
        elif sort_key == "rank":
            rows.sort(key=lambda r: RANK_INDEX[r.card.rank], reverse=descending)
        elif sort_key == "suit":
            rows.sort(key=lambda r: RANK_INDEX[r.card.rank])
            rows.sort(key=lambda r: SUITS.index(r.card.suit), reverse=descending)
        elif sort_key == "win_rate":
            rows.sort(key=lambda r: -1.0 if r.win_rate is None else r.win_rate, reverse=descending)
        else:
            rows.sort(key=lambda r: getattr(r, sort_key), reverse=descending)
        return rows
