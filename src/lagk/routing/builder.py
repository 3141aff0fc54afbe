"""Builds a ready-to-route state from lag and K tables and initial carryover.

The builder makes every later interpolation total: lag and K tables are padded so lookups
never fall outside the table domain, the storage-indication curves are derived from the K
table, and the carryover window is sized to cover the full lag window. All validation
happens here so a routing state is either complete or not returned at all.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from lagk.routing.state import BuildResult, RoutingState, StabilityWarning
from lagk.routing.table import (
    BIG_DATA_VALUE,
    MAX_KEY_VALUE,
    KTable,
    LagTable,
    StorageOutflowTable,
)
from lagk.validation.configs import InitialCarryover, RoutingConfig
from lagk.validation.errors import ConfigurationError

log = logging.getLogger(__name__)

# Maximum number of intermediate points between two K table breakpoints
MAX_SEGMENTS = 20

# Empirical constants controlling how finely a K table interval is subdivided
_SEGMENT_K_WEIGHT = 12.0
_SEGMENT_DIVISOR = 100.0

# Relative tolerance used when checking initial outflow against the carryover inflow
_STARTUP_TOLERANCE = 0.0001


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class LagTableInfo:
    """A validated lag table and the lag bounds derived from it"""

    table: LagTable
    lag: float
    lag_max: int
    lag_min: int
    variable_lag: bool

    @property
    def n_rows(self) -> int:
        return self.table.n_rows


def normalize_lag_table(table: LagTable, interval_mult: int) -> LagTableInfo:
    """Validate a (flow, lag) table and derive the lag bounds used to size carryover.

    Parameters
    ----------
    table : LagTable
        The user supplied lag table
    interval_mult : int
        The interval multiplier of the routed series

    Returns
    -------
    LagTableInfo
        The sorted (and, for a single non-positive row, expanded) table with ``lag_max``
        rounded to the nearest integer and ``lag_min`` rounded up to a multiple of
        ``interval_mult``

    Raises
    ------
    ConfigurationError
        If the table is empty or mixes positive and negative lag values
    """
    if table.n_rows == 0:
        raise ConfigurationError("Lag table must contain at least one row")
    lags = table.lags
    if not np.all(np.isfinite(lags)) or not np.all(np.isfinite(table.column(LagTable.FLOW_COLUMN))):
        raise ConfigurationError(f"Lag table contains non-finite values: {table.rows()}")
    if np.any(lags > 0) and np.any(lags < 0):
        message = (
            f"Negative and positive lag values cannot occur together "
            f"(min lag={lags.min()} max lag={lags.max()})"
        )
        log.warning(message)
        raise ConfigurationError(message)

    table = LagTable(table.sorted_by(LagTable.FLOW_COLUMN).rows())
    if table.n_rows == 1 and table.get(0, LagTable.LAG_COLUMN) <= 0:
        log.info("Automatically adding a row to lag table - 2+ are required when using negative lag.")
        flow, lag = table.rows()[0]
        table = LagTable.from_rows([(flow, lag), (MAX_KEY_VALUE, lag)])

    lag_max = 0
    lag_min = 0
    for value in table.lags:
        if value > 0:
            lag_max = max(lag_max, _round_half_up(value))
        elif value < 0:
            lag_min = max(lag_min, math.ceil(-value))
    if lag_min % interval_mult > 0:
        lag_min = interval_mult * (lag_min // interval_mult + 1)
    log.info(f"lagMin={lag_min} lagMax={lag_max}")

    variable_lag = table.n_rows != 1
    lag = float(table.get(0, LagTable.LAG_COLUMN)) if not variable_lag else float(lag_max)
    return LagTableInfo(table=table, lag=lag, lag_max=lag_max, lag_min=lag_min, variable_lag=variable_lag)


def pad_k_table(table: KTable) -> KTable:
    """Bound a (outflow, K) table with a zero-outflow row and a sentinel high-outflow row.

    Missing boundary rows copy K from the nearest existing row. Tables that already start
    at zero and end at ``BIG_DATA_VALUE`` are returned with the same rows.
    """
    if table.n_rows == 0:
        raise ConfigurationError("K table must contain at least one row")
    outflows = table.column(KTable.OUTFLOW_COLUMN)
    k_values = table.k_values
    if not np.all(np.isfinite(outflows)) or not np.all(np.isfinite(k_values)):
        raise ConfigurationError(f"K table contains non-finite values: {table.rows()}")
    if np.any(k_values < 0):
        raise ConfigurationError(f"K values must be non-negative, got {k_values.tolist()}")
    if np.any(outflows < 0):
        raise ConfigurationError(f"K table outflows must be non-negative, got {outflows.tolist()}")

    rows = table.sorted_by(KTable.OUTFLOW_COLUMN).rows()
    if rows[0][KTable.OUTFLOW_COLUMN] > 0.001:
        rows.insert(0, (0.0, rows[0][KTable.K_COLUMN]))
    if rows[-1][KTable.OUTFLOW_COLUMN] < BIG_DATA_VALUE:
        rows.append((BIG_DATA_VALUE, rows[-1][KTable.K_COLUMN]))
    return KTable.from_rows(rows)


def constant_k_table(k: float) -> KTable:
    """A two row K table spanning ``[0, BIG_DATA_VALUE]`` with a single K value"""
    if not math.isfinite(k) or k < 0:
        raise ConfigurationError(f"Constant K must be a finite non-negative value, got {k}")
    return KTable.from_rows([(0.0, k), (BIG_DATA_VALUE, k)])


def _segment_count(delta_q: float, delta_k: float) -> int:
    if delta_k == 0:
        return 1
    segments = _round_half_up((delta_q + _SEGMENT_K_WEIGHT * delta_k) / _SEGMENT_DIVISOR)
    return min(max(segments, 1), MAX_SEGMENTS)


def storage_outflow_table(k_table: KTable, interval_mult: float, divisor: float = 1.0) -> StorageOutflowTable:
    """Derive the ``(O, 2S/dt + O)`` storage-indication curve from a K table.

    Storage is integrated as ``S = sum(K(Qbar) * dO)`` between consecutive outflow values,
    subdividing each pair of K breakpoints into up to ``MAX_SEGMENTS`` pieces where K
    changes quickly relative to flow.

    Parameters
    ----------
    k_table : KTable
        A K table ordered by outflow
    interval_mult : float
        The routing interval in base interval units
    divisor : float, optional
        Divides the routing interval, 4.0 builds the quarter-interval curve, by default 1.0

    Returns
    -------
    StorageOutflowTable
        A curve starting at (0, 0) and ending at the sentinel outflow
    """
    if k_table.n_rows == 0:
        raise ConfigurationError("K table must contain at least one row")
    dt = interval_mult / divisor
    outflows = k_table.column(KTable.OUTFLOW_COLUMN)
    k_values = k_table.k_values

    rows: list[tuple[float, float]] = []
    storage = 0.0
    q1 = 0.0

    def _emit(q2: float) -> None:
        nonlocal storage, q1
        qbar = (q1 + q2) / 2.0
        storage += k_table.k_at(qbar) * (q2 - q1)
        rows.append((q2, 2.0 * storage / dt + q2))
        q1 = q2

    n = k_table.n_rows
    for i in range(n - 1):
        delta_k = abs(k_values[i] - k_values[i + 1])
        delta_q = abs(outflows[i] - outflows[i + 1])
        segments = _segment_count(delta_q, delta_k)
        for part in range(segments):
            _emit(float(outflows[i] + delta_q * part / segments))
    _emit(float(outflows[n - 1]))

    if rows[0][0] > 0.01 or rows[0][1] > 0.01:
        rows.insert(0, (0.0, 0.0))
    if q1 < BIG_DATA_VALUE:
        _emit(BIG_DATA_VALUE)
    return StorageOutflowTable.from_rows(rows)


def linear_storage_outflow_table(k: float, interval_mult: float, divisor: float = 1.0) -> StorageOutflowTable:
    """Closed form storage-indication curve ``(2K/dt + 1) * O`` for a constant K"""
    dt = interval_mult / divisor
    return StorageOutflowTable.from_rows([(0.0, 0.0), (BIG_DATA_VALUE, (2.0 * k / dt + 1.0) * BIG_DATA_VALUE)])


def carryover_size(lag_max: int, lag_min: int, interval_mult: int, lag_rows: int) -> int:
    """Number of inflow values needed to cover the full lag window plus two for K"""
    return max((lag_max + lag_min) // interval_mult + 3, lag_rows)


def initialize_carryover(size: int, inflow: list[float] | None = None) -> np.ndarray:
    """Allocate the carryover inflow array and right-align any supplied history into it.

    The most recent supplied value occupies the last slot and older unknown values are zero.
    """
    carryover = np.zeros(size, dtype=np.float64)
    if inflow is None:
        return carryover
    history = np.asarray(inflow, dtype=np.float64)
    if history.shape[0] > size:
        raise ConfigurationError(
            f"Must have at most {size} carryover inflow values for this lag window, not {history.shape[0]}"
        )
    if history.shape[0] > 0:
        carryover[size - history.shape[0] :] = history
    return carryover


def check_startup_outflow(
    carryover_inflow: np.ndarray,
    outflow: float,
    lag: float,
    interval_mult: int,
) -> StabilityWarning | None:
    """Check that the initial outflow agrees with the lagged carryover inflow when K is zero.

    Returns
    -------
    StabilityWarning | None
        The correction to apply to the outflow carryover, or None if it is consistent
    """
    if lag % interval_mult != 0:
        previous = float(carryover_inflow[0])
        following = float(carryover_inflow[1])
        fraction = (interval_mult * math.ceil(lag / interval_mult) - lag) / interval_mult
        lagged = previous + (following - previous) * fraction
        reason = (
            f"INITIALOUTFLOW not consistent with COINFLOW values {previous:.4f} and {following:.4f} "
            f"when lagged resulting in {lagged:.4f}. Instability may result."
        )
    else:
        lagged = float(carryover_inflow[0])
        reason = f"INITIALOUTFLOW not consistent with COINFLOW value {lagged:.4f}. Instability may result."

    tolerance = _STARTUP_TOLERANCE * abs(outflow)
    if abs(lagged - outflow) > tolerance:
        return StabilityWarning(
            field="outflow",
            original_value=float(outflow),
            corrected_value=float(lagged),
            reason=reason,
        )
    return None


def build_routing_state(config: RoutingConfig) -> BuildResult:
    """Validate the routing configuration and build the state consumed by the solver.

    Parameters
    ----------
    config : RoutingConfig
        Lag and K tables, interval, loss parameters and initial carryover

    Returns
    -------
    BuildResult
        The routing state and any start-up corrections applied to its carryover

    Raises
    ------
    ConfigurationError
        If a table, the carryover or the lag configuration cannot be used
    """
    interval_mult = config.interval.multiplier
    lag_info = normalize_lag_table(LagTable.from_rows(config.lag_table), interval_mult)

    if config.constant_k is not None:
        k_table = constant_k_table(config.constant_k)
    else:
        k_table = pad_k_table(KTable.from_rows(config.k_table or []))
    distinct_k = np.unique(k_table.k_values)
    variable_k = distinct_k.shape[0] > 1
    fixed_k = None if variable_k else float(distinct_k[0])

    if fixed_k == 0.0:
        storage_outflow = None
        storage_outflow_quarter = None
    elif fixed_k is not None:
        storage_outflow = linear_storage_outflow_table(fixed_k, interval_mult, 1.0)
        storage_outflow_quarter = linear_storage_outflow_table(fixed_k, interval_mult, 4.0)
    else:
        storage_outflow = storage_outflow_table(k_table, interval_mult, 1.0)
        storage_outflow_quarter = storage_outflow_table(k_table, interval_mult, 4.0)

    carryover: InitialCarryover = config.carryover
    size = carryover_size(lag_info.lag_max, lag_info.lag_min, interval_mult, lag_info.n_rows)
    carryover_inflow = initialize_carryover(size, carryover.inflow)
    outflow = carryover.outflow if carryover.outflow is not None else 0.0

    warnings: list[StabilityWarning] = []
    if fixed_k == 0.0:
        warning = check_startup_outflow(carryover_inflow, outflow, lag_info.lag, interval_mult)
        if warning is not None:
            log.warning(
                f"{warning.reason} Revising INITIALOUTFLOW value {warning.original_value:.4f} "
                f"to {warning.corrected_value:.4f}."
            )
            outflow = warning.corrected_value
            warnings.append(warning)

    for table in (lag_info.table, k_table, storage_outflow, storage_outflow_quarter):
        if table is not None:
            table.freeze()

    state = RoutingState(
        interval=config.interval,
        lag_table=lag_info.table,
        k_table=k_table,
        storage_outflow=storage_outflow,
        storage_outflow_quarter=storage_outflow_quarter,
        carryover_inflow=carryover_inflow,
        lag=lag_info.lag,
        lag_max=lag_info.lag_max,
        lag_min=lag_info.lag_min,
        variable_lag=lag_info.variable_lag,
        variable_k=variable_k,
        fixed_k=fixed_k,
        trans_loss_coef=config.trans_loss_coef,
        trans_loss_level=config.trans_loss_level,
        lagged_inflow=carryover.lagged_inflow if carryover.lagged_inflow is not None else 0.0,
        outflow=outflow,
        storage=carryover.storage if carryover.storage is not None else 0.0,
    )
    log.info(
        f"Built Lag/K routing state: interval={config.interval} lag={state.lag} "
        f"carryover size={size} K method={state.k_method.value}"
    )
    return BuildResult(state=state, warnings=warnings)
