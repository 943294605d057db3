"""
Optimization functions for scenario models.
"""

import logging
import os
import warnings

import numpy as np

from .database import connect, read_table, result_tables
from .errors import InfeasibleModelError, SuboptimalSolutionWarning, UnclassifiedError
from .log import logmsg
from .solvers import INFEASIBLE, OPTIMAL, SUBOPTIMAL, get_solver

logger = logging.getLogger(__name__)


def load_start_values(seeddbpath, model, selectedvars=None, quiet=False):
    """
    Read starting values for a warm start from the result tables of a seed database.

    Args:
        seeddbpath (str): Database holding results of an earlier calculation
        model (ScenarioModel): Model the values are mapped onto
        selectedvars (list): Variable names to read; all model variables when empty

    Returns:
        np.ndarray or None: One value per model variable (zero where no value is found),
        None when the seed database does not exist
    """
    if not os.path.isfile(seeddbpath):
        logger.warning(f"Start values database {seeddbpath} not found. Continuing without start values.")
        return None

    start = np.zeros(model.num_variables)
    selected = set(selectedvars or model.variables)
    count = 0

    conn = connect(seeddbpath)
    try:
        for table in result_tables(conn):
            if table not in selected or table not in model.variables:
                continue
            family = model.variables[table]
            frame = read_table(conn, table)
            if "val" not in frame.columns or not set(family.dims) <= set(frame.columns):
                continue
            for dim in family.dims:
                frame[dim] = frame[dim].astype(np.int64) if dim == "y" else frame[dim].astype(str)
            labels = family.lookup(frame)
            found = labels >= 0
            start[labels[found]] = frame["val"].to_numpy(dtype=float)[found]
            count += int(found.sum())
    finally:
        conn.close()

    logmsg(f"Loaded {count} start values from {seeddbpath}.", quiet)
    return start


def run_model_optimization(model, solver="highs", options=None, start=None, directmode=False, quiet=False):
    """
    Solve a scenario model and store the solution on it.

    Args:
        model (ScenarioModel): Model to solve
        solver (str or object): Solver name or adapter instance
        options (dict): Solver parameters passed to the adapter
        start (np.ndarray): Optional warm-start values
        directmode (bool): Use the solver's direct API where supported

    Returns:
        SolveResult: Status, termination condition, objective and values

    Raises:
        InfeasibleModelError: The solver proved the model infeasible
        UnclassifiedError: The solver failed without a usable solution
    """
    if isinstance(solver, str):
        adapter = get_solver(solver, directmode, quiet, warm_start=start is not None)
    else:
        adapter = solver
    name = getattr(adapter, "name", type(adapter).__name__)
    logmsg(f"Running optimization with {name} solver...", quiet)

    if start is not None and not getattr(adapter, "supports_warm_start", False):
        logger.warning(f"Solver {name} does not accept start values through nemopy; ignoring them.")
        start = None

    result = adapter.solve(model, options or {}, start)

    if result.status == OPTIMAL:
        model.set_solution(result.values, result.objective)
        logmsg(f"✓ Optimization completed with {name}", quiet)
        logmsg(f"Objective value: {result.objective:.2f}", quiet)
    elif result.status == SUBOPTIMAL:
        model.set_solution(result.values, result.objective)
        message = f"Solver {name} stopped with {result.termination}; the solution may not be optimal"
        logger.warning(message)
        warnings.warn(message, SuboptimalSolutionWarning)
    elif result.status == INFEASIBLE:
        raise InfeasibleModelError(f"Solver {name} found the scenario model infeasible ({result.termination}); "
                                   "use find_infeasibilities to locate conflicting constraints", model=model)
    else:
        raise UnclassifiedError(f"Solver {name} failed with termination condition {result.termination}")
    return result
