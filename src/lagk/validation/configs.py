import logging
import math
from pathlib import Path
from typing import Any, Self

from hydra.core.hydra_config import HydraConfig
from omegaconf import DictConfig, OmegaConf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from lagk.dataset.series import TimeInterval

log = logging.getLogger(__name__)

TableRows = list[tuple[float, float]]


def check_path(v: str) -> Path:
    """Check if the path exists"""
    path = Path(v)
    if not path.exists():
        log.exception(f"Path {v} does not exist")
        raise ValueError(f"Path {v} does not exist")
    return path


def _check_rows(rows: TableRows, name: str) -> TableRows:
    if len(rows) == 0:
        raise ValueError(f"{name} must contain at least one row")
    for row in rows:
        if not all(math.isfinite(v) for v in row):
            raise ValueError(f"{name} contains a non-finite value in row {row}")
    return rows


class InitialCarryover(BaseModel):
    """Carryover state passed between routing run segments"""

    model_config = ConfigDict(extra="forbid")

    lagged_inflow: float | None = Field(default=None, description="Lagged inflow at the end of the last run")
    outflow: float | None = Field(default=None, description="Routed outflow at the end of the last run")
    storage: float | None = Field(default=None, description="Storage at the end of the last run")
    inflow: list[float] | None = Field(
        default=None,
        description="Recent inflow observations, oldest first. Shorter histories are right-aligned "
        "into the carryover array with older values set to zero",
    )


class RoutingConfig(BaseModel):
    """The immutable set of inputs needed to build a routing state.

    Table values are expected to be in the units and base interval of the inflow series
    (see ``lagk.io.units.normalize_table``).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    lag_table: TableRows = Field(description="Rows of (flow, lag) with lag in series base-interval units")
    k_table: TableRows | None = Field(
        default=None, description="Rows of (outflow, K) with K in series base-interval units"
    )
    constant_k: float | None = Field(default=None, description="A single K value used at all outflows")
    interval: TimeInterval = Field(description="Data interval of the routed inflow series")
    trans_loss_coef: float = Field(
        default=0.0, ge=0.0, description="Fort Worth transmission loss recession coefficient, 0 disables"
    )
    trans_loss_level: float = Field(
        default=0.0, description="Flow below which the Fort Worth transmission loss is not applied"
    )
    carryover: InitialCarryover = Field(
        default_factory=InitialCarryover, description="Initial carryover from a previous run"
    )

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> Any:
        if isinstance(v, str):
            return TimeInterval.parse(v)
        return v

    @field_validator("lag_table")
    @classmethod
    def validate_lag_rows(cls, v: TableRows) -> TableRows:
        return _check_rows(v, "lag_table")

    @field_validator("k_table")
    @classmethod
    def validate_k_rows(cls, v: TableRows | None) -> TableRows | None:
        if v is None:
            return None
        return _check_rows(v, "k_table")

    @model_validator(mode="after")
    def validate_k_source(self) -> Self:
        """Exactly one of k_table and constant_k must be set"""
        if (self.k_table is None) == (self.constant_k is None):
            raise ValueError("Exactly one of k_table or constant_k must be provided")
        if self.constant_k is not None and (not math.isfinite(self.constant_k) or self.constant_k < 0):
            raise ValueError(f"constant_k must be a finite non-negative value, got {self.constant_k}")
        return self


class DataSources(BaseModel):
    """Represents the data path sources for a routing run"""

    model_config = ConfigDict(extra="forbid")

    inflow: Path = Field(description="Delimited file with date and inflow columns")
    lag_table: Path | None = Field(default=None, description="Delimited (flow, lag) table")
    k_table: Path | None = Field(default=None, description="Delimited (outflow, K) table")
    carryover: Path | None = Field(
        default=None, description="JSON carryover written at the end of a previous run"
    )

    @field_validator("inflow", mode="before")
    @classmethod
    def validate_inflow(cls, v: str | Path) -> Path:
        return check_path(str(v))

    @field_validator("lag_table", "k_table", "carryover", mode="before")
    @classmethod
    def validate_optional_paths(cls, v: str | Path | None) -> Path | None:
        if v is None:
            return None
        return check_path(str(v))


class RoutingParams(BaseModel):
    """Lag and K routing parameters for a run"""

    model_config = ConfigDict(extra="forbid")

    interval: str = Field(default="Day", description="Data interval of the inflow series (ex: 6Hour)")
    flow_units: str = Field(default="CMS", description="Units of the inflow series")
    table_interval: str = Field(
        default="Hour", description="Time units of lag and K values in the tables (ex: Hour, Day)"
    )
    table_flow_units: str = Field(default="CMS", description="Flow units of the lag and K tables")
    lag: float | None = Field(
        default=None, description="Constant lag in table_interval units, used when no lag table is given"
    )
    constant_k: float | None = Field(
        default=None, description="Constant K in table_interval units, used when no K table is given"
    )
    trans_loss_coef: float = Field(default=0.0, ge=0.0, description="Fort Worth transmission loss coefficient")
    trans_loss_level: float = Field(default=0.0, description="Fort Worth transmission loss threshold flow")

    @field_validator("interval", "table_interval")
    @classmethod
    def validate_interval(cls, v: str) -> str:
        TimeInterval.parse(v)
        return v


class Config(BaseModel):
    """The base level configuration for a Lag and K routing run"""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)

    name: str = Field(description="Unique identifier name for this run used in output file naming")
    data_sources: DataSources = Field(description="Input files required by the run")
    routing: RoutingParams = Field(default_factory=RoutingParams, description="Lag and K parameters")
    carryover: InitialCarryover = Field(
        default_factory=InitialCarryover,
        description="Initial carryover values, overriding any carryover file values that are set",
    )
    show_progress: bool = Field(default=False, description="Display a progress bar while routing")
    save_path: Path = Field(default=Path("./"), description="Directory where outputs are written")

    @model_validator(mode="after")
    def validate_config_consistency(self) -> "Config":
        """Validate configuration consistency"""
        if self.save_path == Path("./"):
            try:
                HydraConfig.get()
                log.info("save_path is './' while running under Hydra, outputs go to the working directory")
            except ValueError:
                log.info(
                    "HydraConfig is not set. Using default save_path './'. "
                    "If using a jupyter notebook, manually set save_path."
                )

        if (self.data_sources.lag_table is None) == (self.routing.lag is None):
            raise ValueError("Exactly one of data_sources.lag_table or routing.lag must be set")
        if (self.data_sources.k_table is None) == (self.routing.constant_k is None):
            raise ValueError("Exactly one of data_sources.k_table or routing.constant_k must be set")
        return self


def _save_cfg(cfg: Config) -> None:
    save_path = cfg.save_path / "pydantic_config.yaml"
    json_cfg = cfg.model_dump_json(indent=4)
    log.info(
        "\n"
        + "======================================\n"
        + "Running Lag/K with the following config:\n"
        + "======================================\n"
        + f"{json_cfg}\n"
        + "======================================\n"
    )

    with save_path.open("w") as f:
        OmegaConf.save(config=OmegaConf.create(json_cfg), f=f)


def validate_config(cfg: DictConfig, save_config: bool = True) -> Config:
    """Creating the Pydantic config object from the DictConfig

    Parameters
    ----------
    cfg : DictConfig
        The Hydra DictConfig object
    save_config: bool, optional
        A check of whether to save the config outputs or not. Tests set this to false

    Returns
    -------
    Config
        The Pydantic Config object
    """
    try:
        config_dict: dict[str, Any] | Any = OmegaConf.to_container(cfg, resolve=True)
        config = Config(**config_dict)
        if save_config:
            _save_cfg(cfg=config)
        return config
    except ValidationError as e:
        log.exception(e)
        raise e
