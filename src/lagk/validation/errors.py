"""Errors raised while validating routing inputs"""


class ConfigurationError(ValueError):
    """A routing table, carryover or unit setting that cannot be used to build a routing state.

    Configuration errors are fatal and are never retried. They are raised before any
    routing state is returned so callers never receive a partially initialized state.
    """
