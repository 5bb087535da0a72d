from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

CacheStatus = Literal["HIT", "MISS"]
WorkType = Literal["outer", "inner"]


class EphemerisRequest(BaseModel):
    # Optional here so a missing field is reported in the API's own error shape
    date: Optional[str] = Field(None, description="ISO-8601 timestamp")
    planet: Optional[str] = Field(None, description="sun, moon, mercury, venus, mars, jupiter or saturn")
    timezone: str = "UTC"


class StrengthRequest(EphemerisRequest):
    pass


class DayRulerRequest(BaseModel):
    date: Optional[str] = None
    timezone: str = "UTC"


class MoonPhaseRequest(BaseModel):
    date: Optional[str] = None
    timezone: str = "UTC"


class BestPlanetRequest(BaseModel):
    date: Optional[str] = None
    timezone: str = "UTC"
    work_type: WorkType = "outer"


class PositionResponse(BaseModel):
    planet_id: str
    longitude: float
    latitude: float
    speed: float
    distance: float
    zodiac_sign: str
    zodiac_degree: float
    is_retrograde: bool
    hour_bucket: str
    cache_status: CacheStatus
    response_time_ms: float


class StrengthModifiers(BaseModel):
    dignity: float
    combustion: float
    retrograde: float


class StrengthOut(BaseModel):
    planet: str
    sign: str
    degree: float
    final_power: int
    quality: str
    dignity_status: str
    degree_strength: float
    combustion_status: str
    is_retrograde: bool
    modifiers: StrengthModifiers
    recommendations: List[str]
    warnings: List[str]
    suitability: Dict[str, bool]


class StrengthResponse(BaseModel):
    hour_bucket: str
    cache_status: CacheStatus
    strength: StrengthOut


class BestPlanetResponse(BaseModel):
    hour_bucket: str
    work_type: WorkType
    best: Optional[StrengthOut] = None
    ranked: List[StrengthOut]


class DayRulerResponse(BaseModel):
    date: str
    planet: str
    day_name: str
    strength: int
    quality: str
    impact_points: int
    power_analysis: StrengthOut


class MoonPhaseResponse(BaseModel):
    hour_bucket: str
    phase: str
    elongation: float
    illumination: int
    is_waxing: bool
    lunar_day: int


class HealthzResponse(BaseModel):
    status: str = "healthy"
    timestamp: Optional[str] = None
    version: Optional[str] = None
    cache: dict
    cache_health: dict
    config: dict


class ErrorOut(BaseModel):
    error: str
    cache_status: Literal["ERROR"] = "ERROR"
    code: Optional[str] = None
