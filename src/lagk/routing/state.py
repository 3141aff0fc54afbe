"""Routing state produced by the builder and advanced in place by the solver"""

import logging
from dataclasses import dataclass, field

import numpy as np

from lagk.dataset.series import TimeInterval
from lagk.routing.table import KTable, LagTable, StorageOutflowTable
from lagk.validation.configs import InitialCarryover
from lagk.validation.enums import KMethod

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class StabilityWarning:
    """A start-up value that was corrected to keep the first routed steps stable"""

    field: str
    original_value: float
    corrected_value: float
    reason: str

    def __str__(self) -> str:
        return (
            f"{self.field} corrected from {self.original_value:.4f} to {self.corrected_value:.4f}: {self.reason}"
        )


@dataclass(eq=False)
class RoutingState:
    """The numeric state of one Lag and K routing run.

    Tables are frozen when the state is built and may be shared between runs. The carryover
    array and the carryover scalars belong to a single run and are mutated by each step.
    """

    interval: TimeInterval
    lag_table: LagTable
    k_table: KTable
    storage_outflow: StorageOutflowTable | None
    storage_outflow_quarter: StorageOutflowTable | None
    carryover_inflow: np.ndarray
    lag: float = 0.0
    lag_max: int = 0
    lag_min: int = 0
    variable_lag: bool = False
    variable_k: bool = False
    fixed_k: float | None = None
    trans_loss_coef: float = 0.0
    trans_loss_level: float = 0.0
    lagged_inflow: float = 0.0
    outflow: float = 0.0
    storage: float = 0.0

    @property
    def interval_mult(self) -> int:
        return self.interval.multiplier

    @property
    def size_inflow_co(self) -> int:
        return int(self.carryover_inflow.shape[0])

    @property
    def lead(self) -> int:
        """Number of future intervals held in the carryover window to support negative lag"""
        return self.lag_min // self.interval_mult

    @property
    def k_method(self) -> KMethod:
        if self.fixed_k == 0.0:
            return KMethod.NONE
        if self.trans_loss_coef > 0.0:
            return KMethod.FORT_WORTH
        return KMethod.ATLANTA

    def window_times(self) -> np.ndarray:
        """Time of each carryover entry relative to the current step, in base interval units"""
        n = self.size_inflow_co
        return (np.arange(n, dtype=np.float64) - (n - 1) + self.lead) * self.interval_mult

    def push_inflow(self, value: float) -> None:
        """Shift the carryover window one interval and store ``value`` as the newest entry"""
        self.carryover_inflow[:-1] = self.carryover_inflow[1:]
        self.carryover_inflow[-1] = value

    def snapshot(self) -> InitialCarryover:
        """The carryover to persist as the starting point of the next run segment"""
        return InitialCarryover(
            lagged_inflow=float(self.lagged_inflow),
            outflow=float(self.outflow),
            storage=float(self.storage),
            inflow=[float(v) for v in self.carryover_inflow],
        )

    def state_string(self) -> str:
        return (
            f"laggedInflow {self.lagged_inflow:.4f}, outflowCO {self.outflow:.4f}, "
            f"storageCO {self.storage:.4f}, inflowCO {np.array2string(self.carryover_inflow, precision=4)}"
        )


@dataclass
class BuildResult:
    """A ready-to-route state and the start-up corrections made while building it"""

    state: RoutingState
    warnings: list[StabilityWarning] = field(default_factory=list)
