"""Writers for routed outflow and end-of-run carryover"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd

from lagk.dataset.series import InflowSeries
from lagk.validation.configs import InitialCarryover

log = logging.getLogger(__name__)


def write_carryover(path: Path, carryover: InitialCarryover) -> None:
    """Save carryover as JSON so a later run can continue from it"""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(carryover.model_dump_json(indent=4))
    log.info(f"Saved carryover to {path}")


def write_routed(path: Path, inflow: InflowSeries, outflow: np.ndarray) -> pd.DataFrame:
    """Save the inflow and routed outflow side by side as CSV.

    Returns
    -------
    pd.DataFrame
        The written frame, indexed by date
    """
    if outflow.shape[0] != len(inflow):
        raise ValueError(f"Outflow has {outflow.shape[0]} values but the inflow series has {len(inflow)}")
    df = pd.DataFrame(
        {"inflow": inflow.values, "outflow": outflow},
        index=pd.Index(inflow.dates, name="date"),
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path)
    log.info(f"Saved routed outflow for '{inflow.name}' to {path}")
    return df
