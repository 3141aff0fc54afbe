from enum import Enum


class IntervalBase(str, Enum):
    """The base unit of a regular time series interval"""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def minutes(self) -> int:
        """Number of minutes in one unit of this base"""
        mapping = {
            IntervalBase.MINUTE: 1,
            IntervalBase.HOUR: 60,
            IntervalBase.DAY: 1440,
        }
        return mapping[self]

    @property
    def pandas_alias(self) -> str:
        """The pandas offset alias used to build date ranges"""
        mapping = {
            IntervalBase.MINUTE: "min",
            IntervalBase.HOUR: "h",
            IntervalBase.DAY: "D",
        }
        return mapping[self]


class KMethod(str, Enum):
    """The attenuation scheme applied after lagging"""

    NONE = "none"
    ATLANTA = "atlanta"
    FORT_WORTH = "fort_worth"
