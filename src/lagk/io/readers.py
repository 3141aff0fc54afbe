"""A file to handle all reading from data sources"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from pydantic import ValidationError

from lagk.dataset.series import InflowSeries, TimeInterval
from lagk.routing.table import LookupTable
from lagk.validation.configs import InitialCarryover
from lagk.validation.errors import ConfigurationError

log = logging.getLogger(__name__)

_DELIMITERS = r"[,;\s]+"


def _read_delimited(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Cannot find file: {path}")
    df = pd.read_csv(path, comment="#", header=None, sep=_DELIMITERS, engine="python", dtype=str)
    # Leading whitespace produces an empty first column
    return df.dropna(axis=1, how="all").reset_index(drop=True)


def read_table(path: Path, table_cls: type[LookupTable] = LookupTable) -> LookupTable:
    """Reads a two column (key, value) table from delimited text.

    Lines starting with ``#`` are ignored and a single non-numeric header row is skipped.

    Parameters
    ----------
    path : Path
        Path to the table file
    table_cls : type[LookupTable], optional
        The table type to build, by default LookupTable

    Returns
    -------
    LookupTable
        The table rows in file order
    """
    df = _read_delimited(path)
    if df.shape[0] == 0:
        raise ConfigurationError(f"Table file {path} contains no rows")
    if df.shape[1] < 2:
        raise ConfigurationError(f"Table file {path} must have at least two columns, found {df.shape[1]}")

    df = df.iloc[:, :2]
    if pd.to_numeric(df.iloc[0], errors="coerce").isna().any():
        log.debug(f"Skipping header row {df.iloc[0].tolist()} in {path}")
        df = df.iloc[1:]
    try:
        values = df.apply(pd.to_numeric).to_numpy(dtype=np.float64)
    except ValueError as e:
        raise ConfigurationError(f"Table file {path} contains non-numeric values") from e
    if values.shape[0] == 0:
        raise ConfigurationError(f"Table file {path} contains no rows")
    log.info(f"Read {values.shape[0]} rows from {path}")
    return table_cls.from_rows(values)


def read_inflow_series(
    path: Path,
    interval: str | TimeInterval,
    units: str = "CMS",
    name: str | None = None,
) -> InflowSeries:
    """Reads a (date, value) inflow series from delimited text.

    Dates must fall on a regular grid at ``interval``. Gaps in the grid are filled with NaN.

    Parameters
    ----------
    path : Path
        Path to a CSV with a date column followed by a value column
    interval : str | TimeInterval
        The data interval of the series
    units : str, optional
        Flow units of the values, by default "CMS"
    name : str | None, optional
        Series name, defaults to the file stem

    Returns
    -------
    InflowSeries
        The regular inflow series
    """
    if isinstance(interval, str):
        interval = TimeInterval.parse(interval)
    if not path.exists():
        raise FileNotFoundError(f"Cannot find file: {path}")

    df = pd.read_csv(path, comment="#", skipinitialspace=True)
    if df.shape[1] < 2:
        raise ConfigurationError(f"Inflow file {path} must have a date column and a value column")
    dates = pd.to_datetime(df.iloc[:, 0])
    values = pd.to_numeric(df.iloc[:, 1], errors="coerce")
    series = pd.Series(values.to_numpy(dtype=np.float64), index=pd.DatetimeIndex(dates)).sort_index()
    if series.index.has_duplicates:
        raise ConfigurationError(f"Inflow file {path} has duplicate dates")
    if series.shape[0] == 0:
        raise ConfigurationError(f"Inflow file {path} contains no values")

    grid = pd.date_range(start=series.index[0], end=series.index[-1], freq=interval.freq)
    off_grid = series.index.difference(grid)
    if len(off_grid) > 0:
        raise ConfigurationError(
            f"Inflow file {path} has {len(off_grid)} dates that are not on a {interval} grid, first: {off_grid[0]}"
        )
    series = series.reindex(grid)

    return InflowSeries(
        values=series.to_numpy(),
        interval=interval,
        units=units,
        start=grid[0].to_pydatetime(),
        name=name if name is not None else path.stem,
    )


def read_carryover(path: Path) -> InitialCarryover:
    """Reads carryover written by ``write_carryover``"""
    if not path.exists():
        raise FileNotFoundError(f"Cannot find file: {path}")
    try:
        return InitialCarryover.model_validate_json(path.read_text())
    except ValidationError as e:
        log.exception(e)
        raise e
