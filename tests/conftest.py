"""
Pytest fixtures for Lag and K routing tests
"""

from pathlib import Path

import numpy as np
import pytest

from lagk.dataset.series import TimeInterval
from lagk.routing.builder import build_routing_state
from lagk.routing.state import RoutingState
from lagk.validation.configs import RoutingConfig


def _make_state(**kwargs) -> RoutingState:
    kwargs.setdefault("interval", "1Hour")
    return build_routing_state(RoutingConfig(**kwargs)).state


@pytest.fixture
def make_state():
    """Build a routing state from RoutingConfig keyword arguments, hourly by default."""
    return _make_state


@pytest.fixture
def hourly() -> TimeInterval:
    """A one hour routing interval."""
    return TimeInterval.parse("1Hour")


@pytest.fixture
def pulse_inflow() -> np.ndarray:
    """A single flood pulse starting and ending at zero, followed by a long recession."""
    inflow = np.zeros(100, dtype=np.float64)
    inflow[3:10] = [10.0, 40.0, 80.0, 60.0, 30.0, 15.0, 5.0]
    return inflow


@pytest.fixture
def inflow_csv(tmp_path) -> Path:
    """A small 6 hourly inflow file."""
    path = tmp_path / "inflow.csv"
    lines = ["date,flow"]
    values = [100.0, 150.0, 300.0, 250.0, 180.0, 120.0, 100.0, 100.0]
    for i, value in enumerate(values):
        day = 1 + (i * 6) // 24
        hour = (i * 6) % 24
        lines.append(f"2024-01-{day:02d} {hour:02d}:00,{value}")
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def lag_table_csv(tmp_path) -> Path:
    """A (flow, lag) table in hours with a header and a comment."""
    path = tmp_path / "lag_table.csv"
    path.write_text("# flow, lag (hours)\nflow,lag\n0,12\n200,6\n1000,6\n")
    return path


@pytest.fixture
def k_table_csv(tmp_path) -> Path:
    """A (outflow, K) table in hours without a header."""
    path = tmp_path / "k_table.csv"
    path.write_text("0,12\n150,8\n400,6\n")
    return path
