"""
Error taxonomy for the farm-size production estimators.

All estimator failures derive from EstimationError so the comparison
pipeline can record one estimator's failure without hiding the other's
result.
"""


class EstimationError(Exception):
    """Base class for estimation failures"""


class InsufficientDataError(EstimationError, ValueError):
    """Fewer data points than the estimator requires"""


class ModelFitError(EstimationError, RuntimeError):
    """Hierarchical model failed to converge or has a degenerate grouping factor"""


class InvalidParameterError(EstimationError, ValueError):
    """Out-of-range configuration or input values"""
