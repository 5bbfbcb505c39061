#!/usr/bin/env python3
"""
Typed schemas for the Value Matrix (PBR vs ROE).

Provides Pydantic models for data validation at pipeline boundaries.
These schemas are documentation-as-code: they define what the pipeline
expects and produces, making assumptions explicit and testable.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =========================================================================
# Records
# =========================================================================

class StockRecord(BaseModel):
    """One equity record as served by the record source.

    Numeric fields are strict: a string such as "1.5" is rejected rather
    than coerced, and NaN/inf are rejected. ``sector`` may be absent;
    such records are dropped by the outlier classifier, not here.
    """
    ticker: str = Field(min_length=1)
    name: str
    sector: Optional[str] = None
    pbr: float = Field(strict=True, allow_inf_nan=False)
    roe: float = Field(strict=True, allow_inf_nan=False)
    marketCap: float = Field(strict=True, allow_inf_nan=False, ge=0)

    model_config = ConfigDict(frozen=True, extra="ignore")


RECORD_COLS = ["ticker", "name", "sector", "pbr", "roe", "marketCap"]


class Quadrant(str, Enum):
    """Quadrant selectors. ``ALL`` matches every record."""
    ALL = "ALL"
    TOP_RIGHT = "TOP_RIGHT"
    TOP_LEFT = "TOP_LEFT"
    BOTTOM_LEFT = "BOTTOM_LEFT"
    BOTTOM_RIGHT = "BOTTOM_RIGHT"


class Medians(BaseModel):
    """Median PBR / ROE of the plottable set (named avg_* for the chart)."""
    avg_pbr: float
    avg_roe: float

    model_config = ConfigDict(frozen=True)


class FilterCriteria(BaseModel):
    """Live filter inputs written by the search box, sector and quadrant controls."""
    search: str = ""
    quadrant: Quadrant = Quadrant.ALL
    sector: str = "ALL"

    model_config = ConfigDict(frozen=True)


# =========================================================================
# Thresholds
# =========================================================================

class Thresholds(BaseModel):
    """Outlier cut-offs. Fixed for a session; pass a custom one to test."""
    pbr_threshold: float = 25
    roe_upper_threshold: float = 1.0
    roe_lower_threshold: float = -0.5
    pbr_floor: float = 0      # exclusive: pbr <= floor is an outlier

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def bounds_are_ordered(self) -> "Thresholds":
        if self.roe_lower_threshold >= self.roe_upper_threshold:
            raise ValueError(
                f"roe_lower_threshold ({self.roe_lower_threshold}) must be "
                f"below roe_upper_threshold ({self.roe_upper_threshold})"
            )
        if self.pbr_threshold <= self.pbr_floor:
            raise ValueError(
                f"pbr_threshold ({self.pbr_threshold}) must be "
                f"above pbr_floor ({self.pbr_floor})"
            )
        return self


# =========================================================================
# RunConfig — top-level config schema
# =========================================================================

class RunConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class SourceConfig(BaseModel):
        base_url: str = "http://localhost:8000"
        endpoint: str = "/api/stocks"
        timeout_seconds: float = Field(10, gt=0)

        @property
        def url(self) -> str:
            return self.base_url.rstrip("/") + "/" + self.endpoint.lstrip("/")

    class RelayConfig(BaseModel):
        origin_url_env: str = "API_GATEWAY_URL"
        api_key_env: str = "AWS_API_KEY"
        api_key_header: str = "x-api-key"
        timeout_seconds: float = Field(10, gt=0)

    class OutputConfig(BaseModel):
        output_dir: str = "output"
        json_file: str = "matrix.json"
        excel_file: str = "value_matrix.xlsx"

    thresholds: Thresholds = Thresholds()
    fallback_medians: Medians = Medians(avg_pbr=1.0, avg_roe=0.15)
    source: SourceConfig = SourceConfig()
    relay: RelayConfig = RelayConfig()
    output: OutputConfig = OutputConfig()

    @field_validator("thresholds", "source", "relay", "output", mode="before")
    @classmethod
    def none_means_default(cls, v):
        # An empty YAML section (``source:``) loads as None
        return {} if v is None else v

    @field_validator("fallback_medians", mode="before")
    @classmethod
    def none_means_default_medians(cls, v):
        return {"avg_pbr": 1.0, "avg_roe": 0.15} if v is None else v
