"""Per-timestep Lag and K solver.

Each step shifts the newest inflow into the carryover window, lags the window onto the
current time and then attenuates the lagged inflow through storage. Two attenuation
schemes are supported:

- Atlanta: a storage-indication solution on the full interval that drops to quarter
  intervals when K is small compared to the time step
- MCP2 (Fort Worth): an iterative half-interval solution, followed by the Fort Worth
  transmission loss recession when a loss coefficient is configured
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np
from tqdm import tqdm

from lagk.routing.state import RoutingState
from lagk.validation.enums import KMethod

log = logging.getLogger(__name__)

# Storage-indication values below this are treated as zero
MIN_INDICATION = 1.0e-7

# Iteration controls for the half-interval segment solution
MAX_SEGMENT_ITERATIONS = 21
SEGMENT_CONVERGENCE = 0.02

# Storage indications below this are reported as negative storage
_NEGATIVE_STORAGE = -0.5


def _collapse(times: np.ndarray, flows: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Drop missing points and average consecutive points sharing a lagged time"""
    valid = ~(np.isnan(times) | np.isnan(flows))
    times = times[valid]
    flows = flows[valid]
    if times.shape[0] == 0:
        return times, flows

    out_times = [float(times[0])]
    out_flows = [float(flows[0])]
    counts = [1]
    for t, q in zip(times[1:], flows[1:], strict=True):
        if t == out_times[-1]:
            out_flows[-1] += float(q)
            counts[-1] += 1
        else:
            out_times.append(float(t))
            out_flows.append(float(q))
            counts.append(1)
    return np.array(out_times), np.array(out_flows) / np.array(counts)


def _interp_at_zero(t0: float, q0: float, t1: float, q1: float) -> float:
    return q0 + (q1 - q0) * (0.0 - t0) / (t1 - t0)


def solve_lag(
    flows: np.ndarray,
    times: np.ndarray,
    lag: float | Callable[[float], float],
) -> float:
    """Lagged inflow at time zero from a window of inflows.

    Parameters
    ----------
    flows : np.ndarray
        Inflow values of the carryover window, oldest first
    times : np.ndarray
        Time of each inflow relative to the current step
    lag : float | Callable[[float], float]
        A constant lag, or a function returning the lag for a given flow

    Returns
    -------
    float
        The lagged inflow, NaN if every point in the window is missing
    """
    flows = np.asarray(flows, dtype=np.float64)
    times = np.asarray(times, dtype=np.float64)
    if callable(lag):
        lags = np.array([lag(q) if not np.isnan(q) else np.nan for q in flows], dtype=np.float64)
    else:
        lags = np.full(flows.shape, float(lag))
    t, q = _collapse(times + lags, flows)
    n = t.shape[0]
    if n == 0:
        return float("nan")
    if n == 1:
        return float(q[0])

    if np.all(np.diff(t) > 0):
        return float(np.interp(0.0, t, q))

    # Lagged times double back, sum the signed crossings of time zero
    result = 0.0
    crossed = False
    last_subtracted = None
    for j in range(n - 1):
        t0, t1 = t[j], t[j + 1]
        if t0 <= 0.0 < t1:
            result += _interp_at_zero(t0, q[j], t1, q[j + 1])
            crossed = True
            last_subtracted = None
        elif t0 > 0.0 >= t1:
            value = _interp_at_zero(t0, q[j], t1, q[j + 1])
            result -= value
            crossed = True
            last_subtracted = value
    if t[n - 1] == 0.0 and t[n - 2] < 0.0:
        result += float(q[n - 1])
        crossed = True
        last_subtracted = None

    if not crossed:
        nearest = int(np.argmin(np.abs(t)))
        log.debug(f"Lagged times never cross zero, using the nearest point at t={t[nearest]}")
        return float(q[nearest])
    if last_subtracted is not None:
        result += last_subtracted
    return float(result)


def fort_worth_loss(
    lagged_inflow: float,
    previous_outflow: float,
    routed_outflow: float,
    coefficient: float,
    level: float,
) -> float:
    """Apply the Fort Worth transmission loss recession to a routed outflow.

    On a recession (lagged inflow below the previous outflow) the outflow recedes to
    ``previous_outflow * coefficient`` when that lies strictly between ``level`` and the
    routed outflow.
    """
    if lagged_inflow < previous_outflow:
        recession = previous_outflow * coefficient
        if not (recession >= routed_outflow or recession <= level):
            return recession
    return routed_outflow


@dataclass
class _Segment:
    x1: float
    x2: float
    y0: float
    y1: float
    xta: float


class LagKRouter:
    """Steps a ``RoutingState`` through an inflow series one interval at a time"""

    def __init__(self, state: RoutingState) -> None:
        self.state = state

    def lagged_inflow(self) -> float:
        """Solve the lag for the current carryover window"""
        state = self.state
        lag: float | Callable[[float], float]
        lag = state.lag_table.lag_at if state.variable_lag else state.lag
        return solve_lag(state.carryover_inflow, state.window_times(), lag)

    def step(self, newest_inflow: float) -> float:
        """Advance one interval, returning the routed outflow"""
        state = self.state
        state.push_inflow(newest_inflow)
        x1 = state.lagged_inflow
        x2 = self.lagged_inflow()
        if np.isnan(x2):
            log.warning("No inflow available in the lag window, outflow is missing for this step")
            return float("nan")

        method = state.k_method
        if method == KMethod.NONE:
            y2 = x2
            state.lagged_inflow = x2
            state.storage = 0.0
        elif method == KMethod.ATLANTA:
            y2 = self._atlanta(x1, x2, state.outflow)
        else:
            y2 = self._fort_worth(x1, x2, state.outflow)
        log.debug(f"QI1={x1:.4f} QI2={x2:.4f} Qout={y2:.4f}")
        state.outflow = y2
        log.debug(state.state_string())
        return y2

    def route(self, inflows: np.ndarray, show_progress: bool = False) -> np.ndarray:
        """Route an inflow series, continuing from the current carryover.

        Parameters
        ----------
        inflows : np.ndarray
            Inflow values at the routing interval
        show_progress : bool, optional
            Display a tqdm progress bar, by default False

        Returns
        -------
        np.ndarray
            Routed outflow, one value per inflow
        """
        inflows = np.asarray(inflows, dtype=np.float64)
        n = inflows.shape[0]
        outflow = np.zeros(n, dtype=np.float64)
        if n == 0:
            return outflow

        lead = self.state.lead
        for i in range(lead):
            self.state.push_inflow(inflows[min(i, n - 1)])

        for t in tqdm(range(n), desc="Routing", disable=not show_progress, ncols=140, ascii=True):
            outflow[t] = self.step(inflows[min(t + lead, n - 1)])
        return outflow

    def _atlanta(self, x1: float, x2: float, previous_outflow: float) -> float:
        state = self.state
        mult = state.interval_mult
        storage_outflow = state.storage_outflow
        storage_outflow_quarter = state.storage_outflow_quarter
        assert storage_outflow is not None and storage_outflow_quarter is not None
        k_table = state.k_table

        xita = mult / 4.0
        negative = 0
        fact = 1.0
        y1 = previous_outflow
        s2odt = state.storage * 2.0 / mult

        value = x1 + x2 + s2odt - y1
        if value < MIN_INDICATION:
            value = 0.0
        y2 = storage_outflow.outflow_at(value)
        xk1 = k_table.k_at(y1)
        xk2 = k_table.k_at(y2)

        if xk1 < xita / 2.0 and xk2 < xita / 2.0:
            y2 = min(x2, value)
        elif xk1 >= xita * 2.0 and xk2 >= xita * 2.0:
            pass
        elif xk1 > xita / 2.0 or xk2 > xita / 2.0:
            # Route the interval as four quarter steps
            s2odt *= 4.0
            if s2odt < _NEGATIVE_STORAGE:
                negative += 1
            dx4 = (x2 - x1) / 4.0
            for j in range(4):
                x1q = x1 + j * dx4
                x2q = x1q + dx4
                value = x1q + x2q + s2odt - y1
                y2 = storage_outflow_quarter.outflow_at(value)
                if k_table.k_at(y1) < xita / 2.0 or k_table.k_at(y2) < xita / 2.0:
                    y2 = min(x2q, value)
                s2odt = value - y2
                if s2odt < _NEGATIVE_STORAGE:
                    negative += 1
                y1 = y2
            fact = 4.0

        s2odt = (value - y2) / fact
        if s2odt < _NEGATIVE_STORAGE:
            negative += 1
        if negative:
            log.debug(f"Negative storage indication encountered {negative} time(s), storage={s2odt * mult / 2.0:.4f}")
        state.storage = s2odt * mult / 2.0
        state.lagged_inflow = x2
        return y2

    def _segment(self, seg: _Segment, quartered: bool) -> tuple[float, bool]:
        """Iteratively solve one half-interval segment.

        Returns the segment outflow and whether the segment must be routed in quarters.
        """
        state = self.state
        ye = (3.0 * seg.y1 - seg.y0) / 2.0
        y2 = seg.x2
        for _ in range(MAX_SEGMENT_ITERATIONS):
            xk = state.k_table.k_at(ye)
            if xk <= seg.xta / 4.0:
                if quartered or not state.variable_k:
                    return seg.x2, False
                return y2, True
            tr = 0.5 * seg.xta
            y2 = (tr * (seg.x1 + seg.x2) + seg.y1 * (xk - tr)) / (xk + tr)
            if abs(y2 - ye) <= SEGMENT_CONVERGENCE * abs(ye):
                return y2, False
            ye = y2
        log.warning(f"Segment routing did not converge after {MAX_SEGMENT_ITERATIONS} iterations (y2={y2:.4f})")
        return y2, False

    def _quarter(self, seg: _Segment) -> float:
        """Route a half-interval segment as four sub-steps"""
        xtat = seg.xta / 4.0
        x2t = seg.x1
        y1t = 0.25 * seg.y0 + 0.75 * seg.y1
        y2t = seg.y1
        for i in range(1, 5):
            frac = i / 4.0
            x1t = x2t
            x2t = seg.x1 * (1.0 - frac) + seg.x2 * frac
            y0t = y1t
            y1t = y2t
            y2t, _ = self._segment(_Segment(x1t, x2t, y0t, y1t, xtat), quartered=True)
        return y2t

    def _solve_half(self, seg: _Segment) -> float:
        y2, needs_quarter = self._segment(seg, quartered=False)
        if needs_quarter:
            y2 = self._quarter(seg)
        return y2

    def _fort_worth(self, x1: float, x2: float, previous_outflow: float) -> float:
        state = self.state
        xta = state.interval_mult / 2.0
        y1 = previous_outflow
        # The storage slot holds the outflow from two steps back for this method
        y0 = state.storage
        x12 = (x1 + x2) / 2.0
        y01 = (y0 + y1) / 2.0

        y12 = self._solve_half(_Segment(x1, x12, y01, y1, xta))
        y2 = self._solve_half(_Segment(x12, x2, y1, y12, xta))

        if state.trans_loss_coef > 0.0:
            y2 = fort_worth_loss(x2, previous_outflow, y2, state.trans_loss_coef, state.trans_loss_level)

        state.storage = y1
        state.lagged_inflow = x2
        return y2


def route(state: RoutingState, inflows: np.ndarray, show_progress: bool = False) -> np.ndarray:
    """Route ``inflows`` through ``state``, mutating its carryover in place.

    Parameters
    ----------
    state : RoutingState
        A state built by ``build_routing_state`` or left by a previous call
    inflows : np.ndarray
        Inflow values at the routing interval, in the units of the tables
    show_progress : bool, optional
        Display a progress bar, by default False

    Returns
    -------
    np.ndarray
        The routed outflow
    """
    return LagKRouter(state).route(inflows, show_progress=show_progress)
