import multiprocessing as mp
from concurrent.futures import ProcessPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass
from fractions import Fraction
from math import comb
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from andar_bahar.engine.cards import FULL_DECK, higher_ranks, parse_card, rank_distance
from andar_bahar.errors import ConfigurationError, InvariantViolation
from andar_bahar.logging_utils import get_logger
from andar_bahar.models import (
    Card,
    CheatSheetEntry,
    EstimateResult,
    GeneratedPrediction,
    GroupedPredictions,
    PredictionResult,
    PredictionType,
    Rank,
    RoundResult,
    Side,
)

logger = get_logger(__name__)

T = TypeVar("T")

DECK_SIZE = 52
DEFAULT_TRIALS = 2000
PROGRESS_EVERY = 500
PARALLEL_THRESHOLD = 100_000


@dataclass
class EstimateChunk:
    """Win counts from one slice of trials, merged by estimate_parallel."""
    trials: int
    andar_wins: int
    bahar_wins: int


def shuffle_deck(deck: Sequence[T], rng: Optional[np.random.Generator] = None) -> List[T]:
    """
    Fisher-Yates shuffle. Returns a new list; ``deck`` is left untouched.

    Position i (from the last index down to 1) is swapped with an index drawn
    uniformly from [0, i], so every ordering is equally likely.
    """
    if rng is None:
        rng = np.random.default_rng()
    cards = list(deck)
    n = len(cards)
    if n < 2:
        return cards
    # high is exclusive: i + 1 for i = n-1 .. 1
    swaps = rng.integers(0, np.arange(n, 1, -1))
    for i, j in zip(range(n - 1, 0, -1), swaps):
        cards[i], cards[j] = cards[j], cards[i]
    return cards


def side_for_deal(deal_position: int) -> Side:
    # Bahar receives the first card after the marker.
    return Side.bahar if deal_position % 2 == 1 else Side.andar


def first_match_position(cards: Sequence[Card], rank: Rank) -> Optional[int]:
    """1-based deal position of the first card with ``rank``, or None."""
    for i, card in enumerate(cards):
        if card.rank == rank:
            return i + 1
    return None


def validate_full_deck(deck: Sequence[Card]) -> None:
    if len(deck) != DECK_SIZE:
        raise InvariantViolation(f"Round needs a full {DECK_SIZE}-card deck, got {len(deck)} cards")
    if len(set(deck)) != DECK_SIZE:
        raise InvariantViolation("Deck contains duplicate cards")


def simulate_round(deck: Sequence[Card]) -> RoundResult:
    validate_full_deck(deck)
    marker = deck[0]
    deal_position = first_match_position(deck[1:], marker.rank)
    if deal_position is None:
        raise InvariantViolation(f"No card of rank {marker.rank.value} follows marker {marker.code}")
    return RoundResult(marker=marker, winner=side_for_deal(deal_position), cards_dealt=deal_position)


def run_round(rng: Optional[np.random.Generator] = None) -> RoundResult:
    return simulate_round(shuffle_deck(FULL_DECK, rng))


def predict(deck: Sequence[Card], marker: Card) -> List[PredictionResult]:
    """
    Analyze a concrete deck order for the given marker card.

    Every later card whose rank is the marker's rank or one of the six ranks
    following it is reported with the side it would land on. Partial decks are
    allowed. A marker missing from the deck yields an empty list.
    """
    cards = list(deck)
    try:
        marker_index = cards.index(marker)
    except ValueError:
        return []

    targets = {marker.rank, *higher_ranks(marker.rank)}
    predictions: List[PredictionResult] = []
    for i in range(marker_index + 1, len(cards)):
        card = cards[i]
        if card.rank not in targets:
            continue
        predictions.append(
            PredictionResult(
                card=card,
                side=side_for_deal(i - marker_index),
                position=i + 1,
                type=PredictionType.match if card.rank == marker.rank else PredictionType.higher,
            )
        )
    return predictions


def group_predictions(predictions: List[PredictionResult], marker: Card) -> GroupedPredictions:
    """Split into matches and per-rank 'higher' groups, nearest rank first."""
    grouped = GroupedPredictions()
    by_rank: Dict[Rank, List[PredictionResult]] = {}
    for p in predictions:
        if p.type == PredictionType.match:
            grouped.match.append(p)
        else:
            by_rank.setdefault(p.card.rank, []).append(p)
    for rank in sorted(by_rank, key=lambda r: rank_distance(r, marker.rank)):
        grouped.higher[rank.value] = sorted(by_rank[rank], key=lambda p: p.position)
    return grouped


def remainder_without(marker: Card) -> List[Card]:
    return [card for card in FULL_DECK if card != marker]


def generate_prediction(marker: Card, rng: Optional[np.random.Generator] = None) -> GeneratedPrediction:
    """Deal a random deck with ``marker`` on top and analyze it."""
    deck = [marker] + shuffle_deck(remainder_without(marker), rng)
    predictions = predict(deck, marker)
    return GeneratedPrediction(
        deck=deck,
        predictions=predictions,
        grouped=group_predictions(predictions, marker),
    )


def cheat_sheet(deck: Sequence[Card]) -> List[CheatSheetEntry]:
    """Outcome for every card in ``deck`` if it were taken as the marker."""
    positions: Dict[Rank, List[int]] = {}
    for i, card in enumerate(deck):
        positions.setdefault(card.rank, []).append(i)

    entries: List[CheatSheetEntry] = []
    for i, card in enumerate(deck):
        later = [p for p in positions[card.rank] if p > i]
        if not later:
            entries.append(CheatSheetEntry(card=card, position=i + 1))
            continue
        deal_position = later[0] - i
        entries.append(
            CheatSheetEntry(
                card=card,
                position=i + 1,
                winner=side_for_deal(deal_position),
                deal_position=deal_position,
            )
        )
    return entries


def _estimate_result(marker: Card, andar_wins: int, bahar_wins: int, requested: int) -> EstimateResult:
    done = andar_wins + bahar_wins
    return EstimateResult(
        marker=marker,
        andar_wins=andar_wins,
        bahar_wins=bahar_wins,
        trials=done,
        requested_trials=requested,
        bahar_pct=bahar_wins / done * 100 if done else None,
        andar_pct=andar_wins / done * 100 if done else None,
    )


def estimate(
    marker: Card,
    trials: int = DEFAULT_TRIALS,
    rng: Optional[np.random.Generator] = None,
    progress_cb: Optional[Callable[[int, int, int, int], None]] = None,
    cancel_check: Optional[Callable[[], bool]] = None,
) -> EstimateResult:
    """
    Monte-Carlo estimate of the win split for a marker card.

    Each trial shuffles the 51 cards left after removing the marker and finds
    the first card of the marker's rank; odd deal positions go to Bahar.

    Args:
        marker: Card set aside as the marker
        trials: Number of independent shuffles (must be positive)
        rng: Random source, a fresh unseeded generator when omitted
        progress_cb: Called with (done, total, andar_wins, bahar_wins)
        cancel_check: Polled every PROGRESS_EVERY trials; True stops early

    Returns:
        EstimateResult whose ``trials`` is the number actually run
    """
    if trials <= 0:
        raise ConfigurationError(f"trials must be positive, got {trials}")
    if rng is None:
        rng = np.random.default_rng()

    remainder = remainder_without(marker)
    andar_wins = 0
    bahar_wins = 0
    done = 0
    while done < trials:
        if cancel_check and done % PROGRESS_EVERY == 0 and cancel_check():
            logger.info("Estimate for %s cancelled after %d/%d trials", marker.code, done, trials)
            break
        deal_position = first_match_position(shuffle_deck(remainder, rng), marker.rank)
        if deal_position is None:
            raise InvariantViolation(f"No card of rank {marker.rank.value} in shuffled remainder")
        if deal_position % 2 == 1:
            bahar_wins += 1
        else:
            andar_wins += 1
        done += 1
        if progress_cb and (done % PROGRESS_EVERY == 0 or done == trials):
            progress_cb(done, trials, andar_wins, bahar_wins)

    return _estimate_result(marker, andar_wins, bahar_wins, trials)


def _run_chunk_worker(args: Tuple[str, int, int]) -> EstimateChunk:
    """
    Worker function for parallel estimation. Must be a module-level function
    for multiprocessing pickle compatibility.
    """
    marker_code, chunk_trials, chunk_seed = args
    result = estimate(parse_card(marker_code), chunk_trials, rng=np.random.default_rng(chunk_seed))
    return EstimateChunk(trials=result.trials, andar_wins=result.andar_wins, bahar_wins=result.bahar_wins)


def aggregate_chunks(marker: Card, chunks: List[EstimateChunk], requested: int) -> EstimateResult:
    andar_wins = sum(c.andar_wins for c in chunks)
    bahar_wins = sum(c.bahar_wins for c in chunks)
    return _estimate_result(marker, andar_wins, bahar_wins, requested)


def estimate_parallel(
    marker: Card,
    trials: int = DEFAULT_TRIALS,
    seed: Optional[int] = None,
    num_workers: Optional[int] = None,
    progress_cb: Optional[Callable[[int, int, int, int], None]] = None,
    cancel_check: Optional[Callable[[], bool]] = None,
    min_parallel_trials: int = PARALLEL_THRESHOLD,
) -> EstimateResult:
    """
    Run the estimate across worker processes and merge the chunk counts.

    Small requests (below ``min_parallel_trials``) or a single worker run
    in-process with the same seed.
    """
    from concurrent.futures import as_completed

    if trials <= 0:
        raise ConfigurationError(f"trials must be positive, got {trials}")
    if num_workers is None:
        num_workers = max(1, mp.cpu_count() - 1)
    if seed is None:
        seed = int(np.random.default_rng().integers(0, 2**32))

    if trials < min_parallel_trials or num_workers <= 1:
        return estimate(marker, trials, np.random.default_rng(seed), progress_cb, cancel_check)

    # Many small chunks keep progress updates smooth
    target_chunk_size = 10_000
    num_chunks = max(num_workers, trials // target_chunk_size)
    num_chunks = min(num_chunks, 256, trials)

    base_chunk_size = trials // num_chunks
    remainder = trials % num_chunks

    chunk_args: List[Tuple[str, int, int]] = []
    for i in range(num_chunks):
        chunk_trials = base_chunk_size + (1 if i < remainder else 0)
        # Distinct seed per chunk via a large prime offset
        chunk_args.append((marker.code, chunk_trials, seed + i * 1_000_000_007))

    chunks: List[EstimateChunk] = []
    failed: List[Tuple[str, int, int]] = []
    cancelled = False

    try:
        with ProcessPoolExecutor(max_workers=num_workers) as executor:
            future_to_args = {executor.submit(_run_chunk_worker, args): args for args in chunk_args}
            for future in as_completed(future_to_args):
                if cancel_check and cancel_check():
                    for f in future_to_args:
                        f.cancel()
                    cancelled = True
                    break
                try:
                    chunks.append(future.result(timeout=600))
                except Exception:
                    logger.exception("Estimate chunk failed, will rerun in-process")
                    failed.append(future_to_args[future])
                    continue
                if progress_cb:
                    progress_cb(
                        sum(c.trials for c in chunks),
                        trials,
                        sum(c.andar_wins for c in chunks),
                        sum(c.bahar_wins for c in chunks),
                    )
    except (OSError, BrokenProcessPool):
        logger.exception("Parallel estimate failed, falling back to single process")
        return estimate(marker, trials, np.random.default_rng(seed), progress_cb, cancel_check)

    if not cancelled:
        for args in failed:
            chunks.append(_run_chunk_worker(args))

    return aggregate_chunks(marker, chunks, trials)


def exact_bahar_probability(deck_size: int = DECK_SIZE, per_rank: int = 4) -> Fraction:
    """
    Combinatorial probability that Bahar wins.

    With the marker removed, ``per_rank - 1`` matching cards sit among
    ``deck_size - 1``. The first match lands at deal position k with
    probability C(n-k, m-1) / C(n, m); Bahar takes the odd k.
    """
    remaining = deck_size - 1
    matches = per_rank - 1
    total = comb(remaining, matches)
    favourable = sum(comb(remaining - k, matches - 1) for k in range(1, remaining + 1, 2))
    return Fraction(favourable, total)
