# falak/api.py
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from typing import Dict, List
import logging

from .schemas import (
    EphemerisRequest, PositionResponse, StrengthRequest, StrengthResponse,
    BestPlanetRequest, BestPlanetResponse, DayRulerRequest, DayRulerResponse,
    MoonPhaseRequest, MoonPhaseResponse, ErrorOut
)
from .config import AppConfig
from .ephemeris.bodies import Planet, PlanetPosition
from .orchestrator import EphemerisOrchestrator, to_position
from .scoring.day_ruler import analyze_day_ruler, day_ruling_planet
from .scoring.lunar import moon_phase
from .scoring.strength import StrengthResult, score, select_best
from .obs.logging import StructuredLogger, get_request_id
from .obs.metrics import record_strength
from .util.dates import resolve_timezone

# Structured logger for business operations
business_logger = StructuredLogger(__name__)
logger = logging.getLogger(__name__)

router = APIRouter()

# Global variables - will be injected in main.py
ORCHESTRATOR: EphemerisOrchestrator = None
CONFIG: AppConfig = None

ERROR_RESPONSES = {
    400: {"model": ErrorOut},
    500: {"model": ErrorOut}
}


def get_orchestrator() -> EphemerisOrchestrator:
    return ORCHESTRATOR


def _headers(cache_status: str, response_time_ms: float) -> Dict[str, str]:
    max_age = CONFIG.api.cdn_max_age_seconds if CONFIG else 1800
    return {
        "Cache-Control": f"public, max-age={max_age}",
        "X-Cache-Status": cache_status,
        "X-Response-Time": f"{response_time_ms:.2f}ms",
        "X-Request-ID": get_request_id() or ""
    }


def _combined_status(responses: List[PositionResponse]) -> str:
    return "HIT" if all(r.cache_status == "HIT" for r in responses) else "MISS"


def _score(position: PlanetPosition, sun_longitude: float) -> StrengthResult:
    result = score(position, sun_longitude)
    record_strength(result.planet.value, result.final_power)
    return result


@router.post("/v1/ephemeris", response_model=PositionResponse, responses=ERROR_RESPONSES)
async def ephemeris(req: EphemerisRequest, orchestrator: EphemerisOrchestrator = Depends(get_orchestrator)):
    """
    Geocentric position of one planet for the hour containing ``date``.
    """
    result = await orchestrator.handle(req.planet, req.date, req.timezone)
    return JSONResponse(
        result.model_dump(),
        headers=_headers(result.cache_status, result.response_time_ms)
    )


@router.post("/v1/strength", response_model=StrengthResponse, responses=ERROR_RESPONSES)
async def strength(req: StrengthRequest, orchestrator: EphemerisOrchestrator = Depends(get_orchestrator)):
    """
    Strength of a planet scored against the Sun at the same hour.
    """
    planet, _ = orchestrator.validate(req.planet, req.date, req.timezone, endpoint="/v1/strength")

    names = [Planet.SUN.value] if planet == Planet.SUN else [planet.value, Planet.SUN.value]
    responses = await orchestrator.handle_many(names, req.date, req.timezone, endpoint="/v1/strength")

    target = responses[planet]
    result = _score(to_position(target), responses[Planet.SUN].longitude)
    cache_status = _combined_status(list(responses.values()))
    elapsed = max(r.response_time_ms for r in responses.values())

    return JSONResponse(
        {"hour_bucket": target.hour_bucket, "cache_status": cache_status, "strength": result.to_dict()},
        headers=_headers(cache_status, elapsed)
    )


@router.post("/v1/strength/best", response_model=BestPlanetResponse, responses=ERROR_RESPONSES)
async def best_planet(req: BestPlanetRequest, orchestrator: EphemerisOrchestrator = Depends(get_orchestrator)):
    """
    Rank all seven planets and pick the strongest suitable for the work type.
    """
    orchestrator.validate(None, req.date, req.timezone, endpoint="/v1/strength/best", require_planet=False)

    responses = await orchestrator.handle_many(
        [p.value for p in Planet], req.date, req.timezone, endpoint="/v1/strength/best"
    )
    sun_longitude = responses[Planet.SUN].longitude
    results = [_score(to_position(r), sun_longitude) for r in responses.values()]
    ranked = sorted(results, key=lambda r: r.final_power, reverse=True)
    best = select_best(results, req.work_type)

    cache_status = _combined_status(list(responses.values()))
    return JSONResponse(
        {
            "hour_bucket": responses[Planet.SUN].hour_bucket,
            "work_type": req.work_type,
            "best": best.to_dict() if best else None,
            "ranked": [r.to_dict() for r in ranked]
        },
        headers=_headers(cache_status, max(r.response_time_ms for r in responses.values()))
    )


@router.post("/v1/day-ruler", response_model=DayRulerResponse, responses=ERROR_RESPONSES)
async def day_ruler(req: DayRulerRequest, orchestrator: EphemerisOrchestrator = Depends(get_orchestrator)):
    """
    Strength of the planet ruling the request's weekday and its daily-score impact.
    """
    _, moment = orchestrator.validate(None, req.date, req.timezone, endpoint="/v1/day-ruler", require_planet=False)
    local = moment.astimezone(resolve_timezone(req.timezone))
    ruler = day_ruling_planet(local)

    names = [Planet.SUN.value] if ruler == Planet.SUN else [ruler.value, Planet.SUN.value]
    responses = await orchestrator.handle_many(names, req.date, req.timezone, endpoint="/v1/day-ruler")

    positions = {planet: to_position(r) for planet, r in responses.items()}
    analysis = analyze_day_ruler(local, positions)
    record_strength(analysis.planet.value, analysis.strength)

    cache_status = _combined_status(list(responses.values()))
    return JSONResponse(
        {"date": local.date().isoformat(), **analysis.to_dict()},
        headers=_headers(cache_status, max(r.response_time_ms for r in responses.values()))
    )


@router.post("/v1/moon-phase", response_model=MoonPhaseResponse, responses=ERROR_RESPONSES)
async def lunar_phase(req: MoonPhaseRequest, orchestrator: EphemerisOrchestrator = Depends(get_orchestrator)):
    """
    Lunar phase from the Sun-Moon elongation at the request hour.
    """
    orchestrator.validate(None, req.date, req.timezone, endpoint="/v1/moon-phase", require_planet=False)

    responses = await orchestrator.handle_many(
        [Planet.MOON.value, Planet.SUN.value], req.date, req.timezone, endpoint="/v1/moon-phase"
    )
    phase = moon_phase(responses[Planet.MOON].longitude, responses[Planet.SUN].longitude)

    cache_status = _combined_status(list(responses.values()))
    return JSONResponse(
        {"hour_bucket": responses[Planet.MOON].hour_bucket, **phase.to_dict()},
        headers=_headers(cache_status, max(r.response_time_ms for r in responses.values()))
    )
