"""Shared utilities extracted from the Lag/K scripts for testability.

Functions here are used by scripts/router.py.
"""

import logging

import numpy as np

from lagk.dataset.series import InflowSeries
from lagk.io.readers import read_carryover, read_inflow_series, read_table
from lagk.io.units import normalize_table, time_conversion_factor
from lagk.routing.builder import build_routing_state
from lagk.routing.solver import route
from lagk.routing.state import BuildResult
from lagk.routing.table import KTable, LagTable
from lagk.validation.configs import Config, InitialCarryover, RoutingConfig

log = logging.getLogger(__name__)


def merge_carryover(base: InitialCarryover | None, override: InitialCarryover) -> InitialCarryover:
    """Combine carryover from a file with values set directly in the config.

    Parameters
    ----------
    base : InitialCarryover | None
        Carryover read from a previous run, if any
    override : InitialCarryover
        Carryover from the run config. Fields that are set take precedence.

    Returns
    -------
    InitialCarryover
        The merged carryover
    """
    if base is None:
        return override
    merged = base.model_dump()
    merged.update(override.model_dump(exclude_none=True))
    return InitialCarryover(**merged)


def load_inputs(config: Config) -> tuple[RoutingConfig, InflowSeries]:
    """Read the inflow series and tables for a run and normalize them to the series.

    Parameters
    ----------
    config : Config
        The validated run config

    Returns
    -------
    tuple[RoutingConfig, InflowSeries]
        The routing inputs in series units and the inflow series
    """
    params = config.routing
    sources = config.data_sources
    series = read_inflow_series(sources.inflow, params.interval, params.flow_units, name=config.name)
    log.info(f"Read {len(series)} inflow values for '{series.name}' at {series.interval} from {series.start}")

    if sources.lag_table is not None:
        lag_table = read_table(sources.lag_table, LagTable)
    else:
        lag_table = LagTable.from_rows([(0.0, params.lag)])
    lag_table = normalize_table(
        lag_table, params.table_interval, params.table_flow_units, series.interval, series.units
    )

    k_rows = None
    constant_k = None
    if sources.k_table is not None:
        k_table = read_table(sources.k_table, KTable)
        k_table = normalize_table(
            k_table, params.table_interval, params.table_flow_units, series.interval, series.units
        )
        k_rows = k_table.rows()
    else:
        assert params.constant_k is not None
        constant_k = params.constant_k * time_conversion_factor(params.table_interval, series.interval)

    base_carryover = read_carryover(sources.carryover) if sources.carryover is not None else None
    routing_config = RoutingConfig(
        lag_table=lag_table.rows(),
        k_table=k_rows,
        constant_k=constant_k,
        interval=series.interval,
        trans_loss_coef=params.trans_loss_coef,
        trans_loss_level=params.trans_loss_level,
        carryover=merge_carryover(base_carryover, config.carryover),
    )
    return routing_config, series


def route_series(
    routing_config: RoutingConfig,
    series: InflowSeries,
    show_progress: bool = False,
) -> tuple[np.ndarray, BuildResult]:
    """Build a routing state and route the whole series through it.

    Returns
    -------
    tuple[np.ndarray, BuildResult]
        The routed outflow and the build result, whose state holds the final carryover
    """
    result = build_routing_state(routing_config)
    for warning in result.warnings:
        log.warning(f"Start-up correction: {warning}")
    outflow = route(result.state, series.values, show_progress=show_progress)
    return outflow, result
