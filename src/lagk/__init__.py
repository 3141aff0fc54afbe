from lagk.validation import Config, ConfigurationError, InitialCarryover, RoutingConfig, validate_config
from lagk._version import __version__
from lagk.dataset.series import InflowSeries, TimeInterval
from lagk.routing.builder import build_routing_state
from lagk.routing.solver import LagKRouter, route
from lagk.routing.state import BuildResult, RoutingState, StabilityWarning

__all__ = [
    "BuildResult",
    "Config",
    "ConfigurationError",
    "InflowSeries",
    "InitialCarryover",
    "LagKRouter",
    "RoutingConfig",
    "RoutingState",
    "StabilityWarning",
    "TimeInterval",
    "__version__",
    "build_routing_state",
    "route",
    "validate_config",
]
