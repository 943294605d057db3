"""
Error taxonomy and top-level error trapping for scenario calculations.
"""

import logging

logger = logging.getLogger(__name__)

SUPPORT_CHANNEL = "the nemopy issue tracker (include the log output of the failed run)"


class NemoError(Exception):
    """Base class for errors raised by a scenario calculation."""


class SchemaError(NemoError):
    """The scenario database structure is missing or has an incompatible version."""


class DataIntegrityError(NemoError):
    """Scenario data violates a referential or numeric consistency rule."""


class ConfigurationError(NemoError):
    """Run options are invalid or an enabled feature lacks a required parameter."""


class SolverUnavailableError(NemoError):
    """The requested solver is not installed or cannot be used."""


class InfeasibleModelError(NemoError):
    """The solver proved the scenario model infeasible."""

    def __init__(self, message, model=None):
        super().__init__(message)
        self.model = model


class UnclassifiedError(NemoError):
    """Any other failure, including solver errors."""


class SuboptimalSolutionWarning(UserWarning):
    """The solver stopped with a usable but not provably optimal solution."""


def standard_message(error):
    """
    Build the standardized, user-facing message for an error.

    Args:
        error (Exception): Error raised during a calculation

    Returns:
        str: Message naming the error class, the reason and where to get help
    """
    error_class = type(error).__name__ if isinstance(error, NemoError) else UnclassifiedError.__name__
    reason = str(error) or type(error).__name__
    return (f"Scenario calculation failed with {error_class}: {reason}. "
            f"For help, report the problem to {SUPPORT_CHANNEL}.")


class ErrorTrap:
    """
    Context manager used at calculation entry points.

    With ``propagate=False`` any exception leaving the block is logged and
    re-raised as the matching NemoError subclass carrying the standardized
    message; other exceptions become UnclassifiedError. With
    ``propagate=True`` exceptions pass through untouched for debugging.
    """

    def __init__(self, operation_name, propagate=False):
        self.operation_name = operation_name
        self.propagate = propagate

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, _):
        if exc_type is None or self.propagate:
            return False
        if not issubclass(exc_type, Exception):
            # KeyboardInterrupt and friends are never rewritten
            return False

        message = standard_message(exc_val)
        logger.error(f"❌ {self.operation_name}: {message}")
        logger.debug("Original error", exc_info=(exc_type, exc_val, exc_val.__traceback__))

        if isinstance(exc_val, InfeasibleModelError):
            raise InfeasibleModelError(message, model=exc_val.model) from None
        if isinstance(exc_val, NemoError):
            raise exc_type(message) from None
        raise UnclassifiedError(message) from None
