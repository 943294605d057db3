"""
Infeasibility localization by delta debugging.

The search first finds the shortest prefix of constraint rows (in model
order) that is already infeasible; the last row of that prefix belongs to
every conflict inside it. The remaining rows of the prefix are then reduced
with delta debugging until removing any single row makes the set feasible.
"""

import logging

import numpy as np

from .errors import ConfigurationError
from .log import logmsg
from .solvers import scipy_solve

logger = logging.getLogger(__name__)

# scipy.optimize status for a proven infeasible problem
_INFEASIBLE_STATUS = 2


class FeasibilityOracle:
    """Answers whether a subset of a model's constraint rows admits a solution."""

    def __init__(self, model):
        self.model = model
        self.integrality = model.matrix().integrality if model.is_mip else None
        self.zero_objective = np.zeros(model.num_variables)
        self.calls = 0

    def is_infeasible(self, rows):
        matrix = self.model.subset(sorted(rows))
        self.calls += 1
        result = scipy_solve(matrix.A, matrix.row_lower, matrix.row_upper, self.zero_objective,
                             matrix.col_lower, matrix.col_upper, self.integrality)
        if result.status not in (0, _INFEASIBLE_STATUS):
            logger.debug(f"Feasibility check on {len(rows)} rows ended with status {result.status}; "
                         "treating the subset as feasible")
        return result.status == _INFEASIBLE_STATUS


def _split(items, n):
    size, extra = divmod(len(items), n)
    chunks, begin = [], 0
    for i in range(n):
        end = begin + size + (1 if i < extra else 0)
        chunks.append(items[begin:end])
        begin = end
    return [chunk for chunk in chunks if chunk]


def shortest_infeasible_prefix(order, oracle):
    """
    Length of the shortest infeasible prefix of ``order`` (binary search).

    Assumes the full sequence is infeasible.
    """
    low, high = 1, len(order)
    while low < high:
        middle = (low + high) // 2
        if oracle.is_infeasible(order[:middle]):
            high = middle
        else:
            low = middle + 1
    return low


def ddmin(candidates, test):
    """
    Reduce ``candidates`` to a 1-minimal list for which ``test`` holds.

    Args:
        candidates (list): Items known to satisfy ``test``
        test (callable): Predicate on a list of items

    Returns:
        list: Subset of ``candidates`` satisfying ``test``; removing any one item breaks it
    """
    n = 2
    while candidates:
        n = min(n, len(candidates))
        chunks = _split(candidates, n)
        for i in range(len(chunks)):
            complement = [item for j, chunk in enumerate(chunks) if j != i for item in chunk]
            if test(complement):
                candidates = complement
                n = max(n - 1, 2)
                break
        else:
            if n >= len(candidates):
                break
            n = min(2 * n, len(candidates))
    return candidates


def find_infeasibilities(model, quiet=False):
    """
    Find a minimal set of constraints that cannot be satisfied together.

    Args:
        model (ScenarioModel): Built model that a solver reported infeasible
        quiet (bool): Suppress low-priority status messages

    Returns:
        list: Constraint names formatted ``family[subscripts]``, in model order

    Raises:
        ConfigurationError: When the model is feasible
    """
    oracle = FeasibilityOracle(model)
    order = list(range(model.num_constraints))

    if oracle.is_infeasible([]):
        raise ConfigurationError("Variable bounds are inconsistent on their own; no constraint causes "
                                 "the infeasibility")
    if not oracle.is_infeasible(order):
        raise ConfigurationError("Model is feasible; there is no infeasibility to locate")

    logmsg(f"Searching {len(order)} constraints for an infeasible subset...", quiet)
    length = shortest_infeasible_prefix(order, oracle)
    last = order[length - 1]
    logmsg(f"Infeasibility appears within the first {length} constraints.", quiet)

    conflict = ddmin(order[:length - 1], lambda rows: oracle.is_infeasible(rows + [last]))
    rows = sorted(conflict + [last])

    names = model.constraint_names()
    found = [names[row] for row in rows]
    logger.info(f"✓ Found {len(found)} conflicting constraints after {oracle.calls} feasibility checks.")
    return found
