"""Regular-interval time series objects consumed by the routing engine"""

import logging
import re
from datetime import datetime
from typing import Any, Self

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator

from lagk.validation.enums import IntervalBase

log = logging.getLogger(__name__)

_INTERVAL_PATTERN = re.compile(r"^\s*(\d*)\s*([A-Za-z]+)\s*$")

_BASE_ALIASES: dict[str, IntervalBase] = {
    "min": IntervalBase.MINUTE,
    "minute": IntervalBase.MINUTE,
    "minutes": IntervalBase.MINUTE,
    "h": IntervalBase.HOUR,
    "hr": IntervalBase.HOUR,
    "hour": IntervalBase.HOUR,
    "hours": IntervalBase.HOUR,
    "d": IntervalBase.DAY,
    "day": IntervalBase.DAY,
    "days": IntervalBase.DAY,
}


class TimeInterval(BaseModel):
    """A regular data interval expressed as a base unit and a multiplier (ex: 6Hour)"""

    model_config = ConfigDict(extra="forbid", frozen=True)

    base: IntervalBase = Field(description="Base unit of the interval")
    multiplier: PositiveInt = Field(default=1, description="Number of base units in one interval")

    @classmethod
    def parse(cls, text: str) -> "TimeInterval":
        """Parse interval strings such as ``"Day"``, ``"6Hour"`` or ``"15min"``"""
        match = _INTERVAL_PATTERN.match(text)
        if match is None:
            raise ValueError(f"Cannot parse time interval '{text}'")
        multiplier_text, base_text = match.groups()
        try:
            base = _BASE_ALIASES[base_text.lower()]
        except KeyError as e:
            raise ValueError(f"Unknown time interval base '{base_text}' in '{text}'") from e
        multiplier = int(multiplier_text) if multiplier_text else 1
        return cls(base=base, multiplier=multiplier)

    @property
    def minutes(self) -> int:
        return self.base.minutes * self.multiplier

    @property
    def freq(self) -> str:
        """pandas frequency string for this interval"""
        return f"{self.multiplier}{self.base.pandas_alias}"

    def __str__(self) -> str:
        return f"{self.multiplier}{self.base.value.capitalize()}"


class InflowSeries(BaseModel):
    """An ordered, fixed-interval inflow sequence with its interval and units metadata"""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    values: np.ndarray = Field(description="Inflow values, one per interval")
    interval: TimeInterval = Field(description="Data interval of the series")
    units: str = Field(default="CMS", description="Flow units of the values")
    start: datetime = Field(description="Date/time of the first value")
    name: str = Field(default="inflow", description="Identifier used when writing outputs")

    @field_validator("values", mode="before")
    @classmethod
    def as_float_array(cls, v: Any) -> np.ndarray:
        """Store values as a one dimensional float array"""
        arr = np.asarray(v, dtype=np.float64)
        if arr.ndim != 1:
            raise ValueError(f"Inflow values must be one dimensional, got shape {arr.shape}")
        return arr

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> Any:
        if isinstance(v, str):
            return TimeInterval.parse(v)
        return v

    @model_validator(mode="after")
    def warn_missing(self) -> Self:
        """Missing inflows are dropped from the lag window, so flag them early"""
        n_missing = int(np.isnan(self.values).sum())
        if n_missing:
            log.warning(f"Inflow series '{self.name}' has {n_missing} missing values")
        return self

    def __len__(self) -> int:
        return int(self.values.shape[0])

    @property
    def dates(self) -> pd.DatetimeIndex:
        return pd.date_range(start=self.start, periods=len(self), freq=self.interval.freq)

    @property
    def end(self) -> datetime:
        return self.dates[-1].to_pydatetime()

    def with_values(self, values: np.ndarray, units: str | None = None, name: str | None = None) -> "InflowSeries":
        """Return a copy of this series carrying new values (and optionally units/name)"""
        return InflowSeries(
            values=values,
            interval=self.interval,
            units=self.units if units is None else units,
            start=self.start,
            name=self.name if name is None else name,
        )
