import uuid
from typing import Dict, List

import numpy as np
from fastapi import APIRouter, HTTPException

from andar_bahar.data.presets import DEFAULT_SORT, load_scheduler_config
from andar_bahar.engine.cards import FULL_DECK
from andar_bahar.engine.history import CARD_SORT_KEYS, HistoryAggregator
from andar_bahar.engine.simulation import (
    cheat_sheet,
    exact_bahar_probability,
    generate_prediction,
    predict,
    run_round,
    shuffle_deck,
    simulate_round,
)
from andar_bahar.errors import ConfigurationError, InvariantViolation
from andar_bahar.models import (
    Card,
    CardStatsRow,
    CheatSheetEntry,
    CheatSheetRequest,
    EstimateRequest,
    EstimateResult,
    EstimateStatus,
    GeneratedPrediction,
    GenerateRequest,
    HistorySummary,
    IntervalUpdate,
    PredictionRequest,
    PredictionResult,
    RankStatsRow,
    RoundRequest,
    RoundResult,
    RoundSlot,
    SchedulerStatus,
    ShuffleRequest,
)
from andar_bahar.services.estimate_runner import InMemoryEstimateRunner
from andar_bahar.services.scheduler import MultiRoundScheduler

router = APIRouter()

runner = InMemoryEstimateRunner()
history = HistoryAggregator()
scheduler = MultiRoundScheduler(history, load_scheduler_config())


@router.get("/deck", response_model=List[Card], tags=["cards"])
async def get_deck() -> List[Card]:
    return list(FULL_DECK)


@router.post("/shuffle", response_model=List[Card], tags=["cards"])
async def shuffle(request: ShuffleRequest) -> List[Card]:
    deck = request.deck if request.deck is not None else FULL_DECK
    return shuffle_deck(deck, np.random.default_rng(request.seed))


@router.post("/rounds", response_model=RoundResult, tags=["rounds"])
async def play_round(request: RoundRequest) -> RoundResult:
    try:
        if request.deck is None:
            return run_round(np.random.default_rng(request.seed))
        return simulate_round(request.deck)
    except InvariantViolation as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/predictions", response_model=List[PredictionResult], tags=["predictions"])
async def create_predictions(request: PredictionRequest) -> List[PredictionResult]:
    return predict(request.deck, request.marker)


@router.post("/predictions/generate", response_model=GeneratedPrediction, tags=["predictions"])
async def generate(request: GenerateRequest) -> GeneratedPrediction:
    return generate_prediction(request.marker, np.random.default_rng(request.seed))


@router.post("/cheat-sheet", response_model=List[CheatSheetEntry], tags=["predictions"])
async def create_cheat_sheet(request: CheatSheetRequest) -> List[CheatSheetEntry]:
    deck = request.deck if request.deck is not None else shuffle_deck(FULL_DECK, np.random.default_rng(request.seed))
    return cheat_sheet(deck)


@router.get("/probability/exact", tags=["estimates"])
async def exact_probability() -> Dict:
    bahar = exact_bahar_probability()
    return {"bahar": float(bahar), "andar": float(1 - bahar), "bahar_fraction": str(bahar)}


@router.post("/estimates", tags=["estimates"])
async def create_estimate(request: EstimateRequest) -> Dict[str, str]:
    job_id = str(uuid.uuid4())
    runner.start(job_id, request)
    return {"id": job_id}


@router.get("/estimates/{job_id}", response_model=EstimateResult, tags=["estimates"])
async def get_estimate(job_id: str) -> EstimateResult:
    result = runner.get(job_id)
    if not result:
        raise HTTPException(status_code=404, detail="Estimate not found or not complete")
    return result


@router.get("/estimates/{job_id}/status", response_model=EstimateStatus, tags=["estimates"])
async def get_estimate_status(job_id: str) -> EstimateStatus:
    status = runner.status(job_id)
    if not status:
        raise HTTPException(status_code=404, detail="Estimate not found")
    return status


@router.post("/estimates/{job_id}/stop", tags=["estimates"])
async def stop_estimate(job_id: str) -> Dict[str, bool]:
    stopped = runner.stop(job_id)
    if not stopped:
        raise HTTPException(status_code=404, detail="Estimate not found")
    return {"stopped": True}


@router.get("/scheduler", response_model=SchedulerStatus, tags=["scheduler"])
def get_scheduler() -> SchedulerStatus:
    return scheduler.status()


@router.post("/scheduler/slots", response_model=RoundSlot, tags=["scheduler"])
def add_slot() -> RoundSlot:
    try:
        return scheduler.add_slot(strict=True)
    except ConfigurationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.delete("/scheduler/slots", response_model=RoundSlot, tags=["scheduler"])
def remove_slot() -> RoundSlot:
    try:
        return scheduler.remove_slot(strict=True)
    except ConfigurationError as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.post("/scheduler/tick", response_model=List[RoundResult], tags=["scheduler"])
def tick() -> List[RoundResult]:
    return scheduler.tick()


@router.post("/scheduler/pause", response_model=SchedulerStatus, tags=["scheduler"])
def pause() -> SchedulerStatus:
    scheduler.pause()
    return scheduler.status()


@router.post("/scheduler/resume", response_model=SchedulerStatus, tags=["scheduler"])
def resume() -> SchedulerStatus:
    scheduler.resume()
    return scheduler.status()


@router.put("/scheduler/interval", response_model=SchedulerStatus, tags=["scheduler"])
def set_interval(update: IntervalUpdate) -> SchedulerStatus:
    try:
        scheduler.set_interval(update.interval_ms)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return scheduler.status()


@router.get("/history/summary", response_model=HistorySummary, tags=["history"])
async def get_history_summary() -> HistorySummary:
    return history.summary()


@router.get("/history/ranks", response_model=List[RankStatsRow], tags=["history"])
async def get_rank_history() -> List[RankStatsRow]:
    return history.rank_stats()


@router.get("/history/cards", response_model=List[CardStatsRow], tags=["history"])
async def get_card_history(
    sort: str = DEFAULT_SORT["sort_key"], descending: bool = DEFAULT_SORT["descending"]
) -> List[CardStatsRow]:
    if sort not in CARD_SORT_KEYS:
        raise HTTPException(status_code=400, detail=f"sort must be one of {', '.join(CARD_SORT_KEYS)}")
    return history.card_stats(sort, descending)


@router.delete("/history", response_model=HistorySummary, tags=["history"])
async def clear_history() -> HistorySummary:
    history.reset()
    return history.summary()
