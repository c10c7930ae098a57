"""Error taxonomy for ProteoDiff.

Fatal conditions are exceptions (all `ValueError` subclasses, so callers that
already guard configuration mistakes with `except ValueError` keep working).
Recoverable conditions are warnings, logged and surfaced to the caller.
"""


class InputMisalignmentError(ValueError):
    """Intensity matrix and sample metadata do not describe the same samples."""


class NonPositiveValueError(ValueError):
    """A matrix entry is zero, negative or non-finite where a log scale is required."""


class ContrastDefinitionError(ValueError):
    """A contrast references an unknown group or a group without samples."""


class VSNConvergenceWarning(UserWarning):
    """VSN could not be fitted for some samples; log2 was used for them instead."""


class ImputationFallbackWarning(UserWarning):
    """KNN imputation was infeasible for some features; a default value was used."""
