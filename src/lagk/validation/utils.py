import logging

import numpy as np

log = logging.getLogger(__name__)


def volume_balance(inflow: np.ndarray, outflow: np.ndarray) -> float:
    """Relative difference between routed and inflow volume, ignoring missing steps"""
    valid = ~(np.isnan(inflow) | np.isnan(outflow))
    total_in = float(np.sum(inflow[valid]))
    if total_in == 0.0:
        return 0.0
    return (float(np.sum(outflow[valid])) - total_in) / total_in


def log_routing_summary(
    inflow: np.ndarray,
    outflow: np.ndarray,
    name: str | None = None,
    n_warnings: int = 0,
) -> None:
    """
    Logs a summary of a routed hydrograph in a formatted and readable way.

    Parameters
    ----------
    inflow : np.ndarray
        NumPy array of inflow values.
    outflow : np.ndarray
        NumPy array of routed outflow values.
    name : str, optional
        Series name for header display.
    n_warnings : int, optional
        Number of start-up stability corrections made while building the state.
    """
    if name is not None:
        log.info("----------------------------------------")
        log.info(f"Series: {name:<12} | Steps: {inflow.shape[0]:<8} ")
    if inflow.shape[0] == 0 or np.all(np.isnan(outflow)):
        log.info("No routed values to summarize")
        return
    log.info("----------------------------------------")
    log.info(f"{'Series':<10} | {'Mean':>12} | {'Peak':>12}")
    log.info("----------------------------------------")
    log.info(f"{'Inflow':<10} | {np.nanmean(inflow):12.4f} | {np.nanmax(inflow):12.4f}")
    log.info(f"{'Outflow':<10} | {np.nanmean(outflow):12.4f} | {np.nanmax(outflow):12.4f}")
    log.info("----------------------------------------")
    log.info(f"Volume balance: {100.0 * volume_balance(inflow, outflow):+.3f}%")
    if n_warnings:
        log.info(f"Start-up corrections: {n_warnings}")
