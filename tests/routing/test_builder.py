"""Tests for lagk.routing.builder."""

import logging

import numpy as np
import pytest

from lagk.routing.builder import (
    MAX_SEGMENTS,
    build_routing_state,
    carryover_size,
    check_startup_outflow,
    constant_k_table,
    initialize_carryover,
    linear_storage_outflow_table,
    normalize_lag_table,
    pad_k_table,
    storage_outflow_table,
)
from lagk.routing.table import BIG_DATA_VALUE, MAX_KEY_VALUE, KTable, LagTable, StorageOutflowTable
from lagk.validation.configs import InitialCarryover, RoutingConfig
from lagk.validation.enums import KMethod
from lagk.validation.errors import ConfigurationError


class TestNormalizeLagTable:
    """Test lag table validation and lag bounds."""

    def test_mixed_sign_lag_raises(self) -> None:
        table = LagTable.from_rows([(0.0, -6.0), (100.0, 6.0)])
        with pytest.raises(ConfigurationError, match="Negative and positive lag"):
            normalize_lag_table(table, 6)

    def test_zero_mixed_with_positive_is_allowed(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, 0.0), (100.0, 6.0)]), 6)
        assert info.lag_max == 6
        assert info.lag_min == 0

    def test_single_negative_row_expands(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, -6.0)]), 6)
        assert info.n_rows == 2
        assert info.table.rows() == [(0.0, -6.0), (MAX_KEY_VALUE, -6.0)]
        assert info.lag_min == 6
        assert info.variable_lag

    def test_single_zero_row_expands(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, 0.0)]), 1)
        assert info.n_rows == 2
        assert info.table.lag_at(1.0e6) == 0.0

    def test_lag_min_rounded_up_to_interval(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, -4.0), (100.0, -7.0)]), 6)
        assert info.lag_min == 12

    @pytest.mark.parametrize("lag, expected", [(-0.4, 1), (-1.4, 2), (-1.6, 2), (-0.5, 1)])
    def test_fractional_negative_lag_rounds_magnitude_up(self, lag, expected) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, lag)]), 1)
        assert info.lag_min == expected

    def test_lag_max_rounded_half_up(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, 1.4), (100.0, 2.5)]), 1)
        assert info.lag_max == 3
        assert info.variable_lag

    def test_single_positive_row_is_constant(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(0.0, 1.5)]), 1)
        assert not info.variable_lag
        assert info.lag == 1.5
        assert info.lag_max == 2

    def test_rows_sorted_by_flow(self) -> None:
        info = normalize_lag_table(LagTable.from_rows([(200.0, 6.0), (0.0, 12.0)]), 6)
        assert info.table.rows() == [(0.0, 12.0), (200.0, 6.0)]

    def test_empty_table_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="at least one row"):
            normalize_lag_table(LagTable(), 1)


class TestPadKTable:
    """Test K table padding."""

    def test_pads_both_ends(self) -> None:
        padded = pad_k_table(KTable.from_rows([(100.0, 5.0), (500.0, 8.0)]))
        assert padded.rows() == [(0.0, 5.0), (100.0, 5.0), (500.0, 8.0), (BIG_DATA_VALUE, 8.0)]

    def test_padding_is_idempotent(self) -> None:
        padded = pad_k_table(KTable.from_rows([(100.0, 5.0), (500.0, 8.0)]))
        assert pad_k_table(padded) == padded

    def test_near_zero_start_not_padded(self) -> None:
        padded = pad_k_table(KTable.from_rows([(0.0005, 5.0)]))
        assert padded.rows() == [(0.0005, 5.0), (BIG_DATA_VALUE, 5.0)]

    def test_negative_k_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="non-negative"):
            pad_k_table(KTable.from_rows([(0.0, -1.0)]))

    def test_non_finite_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="non-finite"):
            pad_k_table(KTable.from_rows([(0.0, np.nan)]))

    def test_constant_k_table(self) -> None:
        assert constant_k_table(12.0).rows() == [(0.0, 12.0), (BIG_DATA_VALUE, 12.0)]


class TestStorageOutflowTable:
    """Test derivation of the storage-indication curve."""

    def test_variable_k_curve_is_monotonic(self) -> None:
        k_table = pad_k_table(KTable.from_rows([(0.0, 2.0), (100.0, 6.0), (400.0, 3.0), (2000.0, 12.0)]))
        curve = storage_outflow_table(k_table, 1.0)
        outflow = curve.column(StorageOutflowTable.OUTFLOW_COLUMN)
        indication = curve.column(StorageOutflowTable.INDICATION_COLUMN)
        assert np.all(np.diff(outflow) > 0)
        assert np.all(np.diff(indication) > 0)

    def test_curve_bounds(self) -> None:
        k_table = pad_k_table(KTable.from_rows([(0.0, 2.0), (100.0, 6.0)]))
        curve = storage_outflow_table(k_table, 1.0)
        assert curve.rows()[0] == (0.0, 0.0)
        assert curve.get(curve.n_rows - 1, StorageOutflowTable.OUTFLOW_COLUMN) == BIG_DATA_VALUE

    def test_integration_by_midpoint_k(self) -> None:
        k_table = pad_k_table(KTable.from_rows([(0.0, 2.0), (100.0, 6.0)]))
        curve = storage_outflow_table(k_table, 1.0)
        # S(100) = K(50) * 100 = 400, so 2S/dt + O = 900
        assert curve.indication_at(100.0) == pytest.approx(900.0)

    def test_segment_count_is_capped(self) -> None:
        k_table = KTable.from_rows([(0.0, 0.0), (1.0e6, 1000.0)])
        curve = storage_outflow_table(k_table, 1.0)
        # MAX_SEGMENTS points between the breakpoints plus the final breakpoint and the sentinel
        assert curve.n_rows == MAX_SEGMENTS + 2

    @pytest.mark.parametrize("outflow", [0.0, 37.5, 100.0, 5000.0])
    def test_constant_k_round_trip(self, outflow) -> None:
        curve = storage_outflow_table(constant_k_table(12.0), 6.0)
        assert curve.indication_at(outflow) == pytest.approx(2.0 * 12.0 / 6.0 * outflow + outflow)

    def test_linear_curve_slope(self) -> None:
        curve = linear_storage_outflow_table(12.0, 6.0)
        assert curve.indication_at(100.0) == pytest.approx(500.0)
        assert curve.outflow_at(500.0) == pytest.approx(100.0)

    def test_quarter_curve_is_steeper(self) -> None:
        full = linear_storage_outflow_table(12.0, 6.0, 1.0)
        quarter = linear_storage_outflow_table(12.0, 6.0, 4.0)
        assert quarter.indication_at(100.0) == pytest.approx(1700.0)
        assert quarter.indication_at(100.0) > full.indication_at(100.0)


class TestCarryover:
    """Test carryover sizing and initialization."""

    @pytest.mark.parametrize(
        "lag_max, lag_min, interval_mult, lag_rows, expected",
        [
            (3, 0, 1, 2, 6),
            (12, 6, 6, 2, 6),
            (0, 0, 6, 10, 10),
        ],
    )
    def test_carryover_size(self, lag_max, lag_min, interval_mult, lag_rows, expected) -> None:
        assert carryover_size(lag_max, lag_min, interval_mult, lag_rows) == expected

    def test_history_right_aligned(self) -> None:
        np.testing.assert_allclose(initialize_carryover(5, [1.0, 2.0]), [0.0, 0.0, 0.0, 1.0, 2.0])

    def test_no_history_is_zero(self) -> None:
        np.testing.assert_allclose(initialize_carryover(3), [0.0, 0.0, 0.0])

    def test_history_too_long_raises(self) -> None:
        with pytest.raises(ConfigurationError, match="at most 3"):
            initialize_carryover(3, [1.0, 2.0, 3.0, 4.0])


class TestStartupOutflow:
    """Test the K == 0 start-up consistency check."""

    def test_fractional_lag_corrects_outflow(self) -> None:
        carryover = np.array([100.0, 140.0, 0.0, 0.0, 0.0])
        warning = check_startup_outflow(carryover, 105.0, 1.5, 1)
        assert warning is not None
        assert warning.field == "outflow"
        assert warning.original_value == 105.0
        assert warning.corrected_value == pytest.approx(120.0)

    def test_consistent_outflow_has_no_warning(self) -> None:
        carryover = np.array([100.0, 140.0, 0.0, 0.0, 0.0])
        assert check_startup_outflow(carryover, 120.0, 1.5, 1) is None

    def test_exact_multiple_uses_oldest_value(self) -> None:
        carryover = np.array([50.0, 70.0, 0.0])
        assert check_startup_outflow(carryover, 50.0, 6.0, 6) is None
        warning = check_startup_outflow(carryover, 60.0, 6.0, 6)
        assert warning is not None
        assert warning.corrected_value == 50.0


class TestBuildRoutingState:
    """Test building a complete routing state."""

    def test_startup_correction_applied(self, caplog) -> None:
        config = RoutingConfig(
            lag_table=[(0.0, 1.5)],
            constant_k=0.0,
            interval="1Hour",
            carryover=InitialCarryover(outflow=105.0, inflow=[100.0, 140.0, 150.0, 160.0, 170.0]),
        )
        with caplog.at_level(logging.WARNING):
            result = build_routing_state(config)
        assert len(result.warnings) == 1
        assert result.state.outflow == pytest.approx(120.0)
        assert "Revising INITIALOUTFLOW" in caplog.text

    def test_no_correction_when_k_positive(self) -> None:
        config = RoutingConfig(
            lag_table=[(0.0, 1.5)],
            constant_k=2.0,
            interval="1Hour",
            carryover=InitialCarryover(outflow=105.0, inflow=[100.0, 140.0]),
        )
        result = build_routing_state(config)
        assert result.warnings == []
        assert result.state.outflow == 105.0

    def test_negative_lag_state(self) -> None:
        config = RoutingConfig(lag_table=[(0.0, -2.0)], constant_k=0.0, interval="1Hour")
        state = build_routing_state(config).state
        assert state.lag_min == 2
        assert state.lead == 2
        assert state.size_inflow_co == 5

    def test_tables_frozen(self) -> None:
        config = RoutingConfig(lag_table=[(0.0, 6.0)], k_table=[(0.0, 6.0), (100.0, 12.0)], interval="6Hour")
        state = build_routing_state(config).state
        assert state.lag_table.frozen
        assert state.k_table.frozen
        assert state.storage_outflow is not None and state.storage_outflow.frozen
        assert state.storage_outflow_quarter is not None and state.storage_outflow_quarter.frozen

    def test_variable_k(self) -> None:
        config = RoutingConfig(lag_table=[(0.0, 6.0)], k_table=[(0.0, 6.0), (100.0, 12.0)], interval="6Hour")
        state = build_routing_state(config).state
        assert state.variable_k
        assert state.fixed_k is None
        assert state.k_method == KMethod.ATLANTA

    def test_k_table_with_single_value_is_fixed(self) -> None:
        config = RoutingConfig(lag_table=[(0.0, 6.0)], k_table=[(0.0, 0.0), (100.0, 0.0)], interval="6Hour")
        state = build_routing_state(config).state
        assert state.fixed_k == 0.0
        assert state.storage_outflow is None
        assert state.k_method == KMethod.NONE

    def test_fort_worth_selected_by_loss_coefficient(self) -> None:
        config = RoutingConfig(lag_table=[(0.0, 6.0)], constant_k=6.0, interval="6Hour", trans_loss_coef=0.9)
        assert build_routing_state(config).state.k_method == KMethod.FORT_WORTH

    def test_carryover_too_long_raises(self) -> None:
        config = RoutingConfig(
            lag_table=[(0.0, 1.0)],
            constant_k=0.0,
            interval="1Hour",
            carryover=InitialCarryover(inflow=[1.0] * 10),
        )
        with pytest.raises(ConfigurationError):
            build_routing_state(config)
