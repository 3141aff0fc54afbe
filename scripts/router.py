"""Routes an inflow hydrograph through a reach with Lag and K."""

import logging
import os
import time
from pathlib import Path

import hydra
from hydra.core.hydra_config import HydraConfig
from omegaconf import DictConfig

from lagk._version import __version__
from lagk.io.writers import write_carryover, write_routed
from lagk.scripts_utils import load_inputs, route_series
from lagk.validation import Config, validate_config
from lagk.validation.utils import log_routing_summary

log = logging.getLogger(__name__)


def route_reach(cfg: Config) -> None:
    """Route the configured inflow series and save outflow and final carryover"""
    routing_config, series = load_inputs(cfg)
    outflow, result = route_series(routing_config, series, show_progress=cfg.show_progress)

    write_routed(cfg.save_path / "routed.csv", series, outflow)
    write_carryover(cfg.save_path / "final_carryover.json", result.state.snapshot())
    log_routing_summary(series.values, outflow, name=series.name, n_warnings=len(result.warnings))
    log.info("Routing complete.")


@hydra.main(
    version_base="1.3",
    config_path="../config",
)
def main(cfg: DictConfig) -> None:
    """Main function."""
    cfg.save_path = Path(HydraConfig.get().run.dir)
    config = validate_config(cfg)
    start_time = time.perf_counter()
    try:
        route_reach(config)

    except KeyboardInterrupt:
        log.info("Keyboard interrupt received")

    finally:
        log.info("Cleaning up...")

        total_time = time.perf_counter() - start_time
        log.info(f"Time Elapsed: {(total_time / 60):.6f} minutes")


if __name__ == "__main__":
    print(f"Lag/K routing with lagk version: {__version__}")
    os.environ["LAGK_VERSION"] = __version__
    main()
