"""Flow unit and time interval normalization for tables and inflow series"""

import logging
from typing import NamedTuple

import numpy as np

from lagk.dataset.series import InflowSeries, TimeInterval
from lagk.routing.table import LookupTable
from lagk.validation.errors import ConfigurationError

log = logging.getLogger(__name__)

# 1 ft = 0.3048 m
_FT3_TO_M3 = 0.3048**3
_ACFT_TO_M3 = 1233.48183754752
_US_GALLON_TO_M3 = 0.003785411784


class UnitDefinition(NamedTuple):
    """A unit in terms of its dimension and the SI base unit of that dimension"""

    dimension: str
    mult: float
    add: float = 0.0


_UNITS: dict[str, UnitDefinition] = {
    "CMS": UnitDefinition("flow", 1.0),
    "M3/S": UnitDefinition("flow", 1.0),
    "CFS": UnitDefinition("flow", _FT3_TO_M3),
    "FT3/S": UnitDefinition("flow", _FT3_TO_M3),
    "KCFS": UnitDefinition("flow", 1000.0 * _FT3_TO_M3),
    "L/S": UnitDefinition("flow", 0.001),
    "MGD": UnitDefinition("flow", 1.0e6 * _US_GALLON_TO_M3 / 86400.0),
    "M3": UnitDefinition("volume", 1.0),
    "CMSD": UnitDefinition("volume", 86400.0),
    "ACFT": UnitDefinition("volume", _ACFT_TO_M3),
    "AF": UnitDefinition("volume", _ACFT_TO_M3),
}


def unit_definition(units: str) -> UnitDefinition:
    """Look up a unit by name, ignoring case and surrounding whitespace"""
    try:
        return _UNITS[units.strip().upper()]
    except KeyError as e:
        raise ConfigurationError(f"Unknown units '{units}'. Known units: {sorted(_UNITS)}") from e


def flow_conversion(from_units: str, to_units: str) -> tuple[float, float]:
    """Factors converting values as ``add + mult * value``.

    Parameters
    ----------
    from_units : str
        The units of the values being converted
    to_units : str
        The units to convert to

    Returns
    -------
    tuple[float, float]
        ``(mult, add)``

    Raises
    ------
    ConfigurationError
        If either unit is unknown or the units measure different dimensions
    """
    source = unit_definition(from_units)
    target = unit_definition(to_units)
    if source.dimension != target.dimension:
        raise ConfigurationError(
            f"Units '{from_units}' ({source.dimension}) cannot be converted to '{to_units}' ({target.dimension})"
        )
    mult = source.mult / target.mult
    add = (source.add - target.add) / target.mult
    return mult, add


def time_conversion_factor(table_interval: str | TimeInterval, series_interval: str | TimeInterval) -> float:
    """Factor converting time values measured in ``table_interval`` to the series base unit.

    Lag and K are expressed by the solver in base units of the routed series (hours for
    a 6Hour series), so a table in days routed at 6Hour is scaled by 24.
    """
    try:
        if isinstance(table_interval, str):
            table_interval = TimeInterval.parse(table_interval)
        if isinstance(series_interval, str):
            series_interval = TimeInterval.parse(series_interval)
    except ValueError as e:
        raise ConfigurationError(f"Cannot convert between intervals: {e}") from e
    return table_interval.minutes / series_interval.base.minutes


def normalize_table(
    table: LookupTable,
    table_interval: str | TimeInterval,
    table_units: str,
    series_interval: str | TimeInterval,
    series_units: str,
    flow_column: int = 0,
    time_column: int = 1,
) -> LookupTable:
    """Convert a (flow, time) table to the flow units and base interval of a series.

    Returns
    -------
    LookupTable
        ``table`` itself if no conversion is required, otherwise a new table of the same type
    """
    mult, add = flow_conversion(table_units, series_units)
    factor = time_conversion_factor(table_interval, series_interval)
    if mult == 1.0 and add == 0.0 and factor == 1.0:
        return table

    log.info(
        f"Converting table from {table_units}/{table_interval} to {series_units}/{series_interval} "
        f"(flow x{mult:.6g} + {add:.6g}, time x{factor:.6g})"
    )
    flows = table.column(flow_column)
    times = table.column(time_column)
    # Sentinel keys stay sentinels
    finite = np.abs(flows) < np.finfo(np.float64).max / max(mult, 1.0)
    flows = flows.copy()
    flows[finite] = add + mult * flows[finite]
    data = np.empty((table.n_rows, table.n_columns), dtype=np.float64)
    for column in range(table.n_columns):
        data[:, column] = table.column(column)
    data[:, flow_column] = flows
    data[:, time_column] = times * factor
    return type(table)(data)


def convert_series(series: InflowSeries, to_units: str) -> InflowSeries:
    """Return the series with values converted to ``to_units``"""
    mult, add = flow_conversion(series.units, to_units)
    if mult == 1.0 and add == 0.0:
        return series
    return series.with_values(add + mult * series.values, units=to_units)
