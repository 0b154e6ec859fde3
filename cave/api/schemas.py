from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional


class SimManualRequest(BaseModel):
    inside_temp_c: Optional[float] = None
    outside_temp_c: Optional[float] = None
    inside_humidity_pct: Optional[float] = Field(default=None, ge=0, le=100)
    outside_humidity_pct: Optional[float] = Field(default=None, ge=0, le=100)


class SimWalkRequest(BaseModel):
    step_c: float = Field(default=0.2, ge=0)
    leak: float = Field(default=0.02, ge=0, le=1)
    cooling_rate_c: float = Field(default=0.5, ge=0)
    heating_rate_c: float = Field(default=0.3, ge=0)
    outside_step_c: float = Field(default=0.4, ge=0)
    outside_min_c: float = 5.0
    outside_max_c: float = 35.0
    humidity_step_pct: float = Field(default=1.0, ge=0)


class SimFailureRateRequest(BaseModel):
    rate: float = Field(ge=0, le=1)
