from . import utils
from .configs import Config, InitialCarryover, RoutingConfig, validate_config
from .enums import IntervalBase, KMethod
from .errors import ConfigurationError

__all__ = [
    "Config",
    "ConfigurationError",
    "InitialCarryover",
    "IntervalBase",
    "KMethod",
    "RoutingConfig",
    "utils",
    "validate_config",
]
