"""
Solver adapters.

Every adapter exposes ``solve(model, options, start=None)`` and returns a
``SolveResult``. The status is one of ``optimal``, ``suboptimal``,
``infeasible`` or ``error``; ``values`` holds one value per model variable
(in label order) whenever the solver produced a usable solution.
"""

import logging
from collections import namedtuple

import highspy
import linopy
import numpy as np
import scipy.sparse as sp
from scipy.optimize import Bounds, LinearConstraint, linprog, milp

from .errors import SolverUnavailableError
from .log import logmsg

logger = logging.getLogger(__name__)

OPTIMAL = "optimal"
SUBOPTIMAL = "suboptimal"
INFEASIBLE = "infeasible"
ERROR = "error"

SolveResult = namedtuple("SolveResult", ["status", "termination", "objective", "values"])

# Terminations that stop early; the solution is usable when one exists
_LIMIT_MARKERS = ("limit", "interrupt", "suboptimal", "objective_bound", "objective_target", "imprecise")

# scipy.optimize status codes shared by milp and linprog
_SCIPY_TERMINATIONS = {0: "optimal", 1: "time_limit", 2: "infeasible", 3: "unbounded", 4: "error"}


def classify_termination(termination, has_solution):
    """
    Map a solver's termination condition to a run status.

    Args:
        termination (str): Termination text reported by the solver
        has_solution (bool): Whether the solver returned a usable primal solution

    Returns:
        str: ``optimal``, ``suboptimal``, ``infeasible`` or ``error``
    """
    key = "".join(ch if ch.isalnum() else "_" for ch in str(termination).strip().lower())
    if "infeasible" in key:
        return INFEASIBLE
    if key in ("optimal", "locally_optimal", "ok"):
        return OPTIMAL if has_solution else ERROR
    if any(marker in key for marker in _LIMIT_MARKERS):
        return SUBOPTIMAL if has_solution else ERROR
    return ERROR


class HighsSolver:
    """Direct HiGHS adapter passing the matrix form through highspy; supports warm starts."""

    name = "highs"
    supports_warm_start = True

    def solve(self, model, options=None, start=None):
        matrix = model.matrix()
        columns = matrix.A.tocsc()

        lp = highspy.HighsLp()
        lp.num_col_ = model.num_variables
        lp.num_row_ = model.num_constraints
        lp.col_cost_ = matrix.c
        lp.col_lower_ = matrix.col_lower
        lp.col_upper_ = matrix.col_upper
        lp.row_lower_ = matrix.row_lower
        lp.row_upper_ = matrix.row_upper
        lp.a_matrix_.format_ = highspy.MatrixFormat.kColwise
        lp.a_matrix_.start_ = columns.indptr.astype(np.int32)
        lp.a_matrix_.index_ = columns.indices.astype(np.int32)
        lp.a_matrix_.value_ = columns.data
        if model.is_mip:
            lp.integrality_ = [highspy.HighsVarType.kInteger if integer else highspy.HighsVarType.kContinuous
                               for integer in matrix.integrality]

        highs = highspy.Highs()
        highs.setOptionValue("output_flag", False)
        for name, value in (options or {}).items():
            highs.setOptionValue(name, value)
        highs.passModel(lp)

        if start is not None:
            solution = highspy.HighsSolution()
            solution.col_value = list(np.asarray(start, dtype=float))
            solution.value_valid = True
            highs.setSolution(solution)

        highs.run()
        status = highs.getModelStatus()
        termination = highs.modelStatusToString(status)
        info = highs.getInfo()
        has_solution = int(info.primal_solution_status) == 2

        values = np.asarray(highs.getSolution().col_value, dtype=float) if has_solution else None
        objective = info.objective_function_value if has_solution else None
        return SolveResult(classify_termination(termination, has_solution), termination, objective, values)


class LinopySolver:
    """Adapter for any solver linopy can drive."""

    supports_warm_start = False

    def __init__(self, name):
        self.name = name

    def solve(self, model, options=None, start=None):
        # Constant rows are dropped on export, so violated ones are caught here
        violations = model.empty_row_violations()
        if violations:
            logger.warning(f"Constraints without variables are violated: {', '.join(violations[:10])}")
            return SolveResult(INFEASIBLE, "infeasible", None, None)

        lp_model, _ = model.to_linopy()
        status, condition = lp_model.solve(solver_name=self.name, **(options or {}))

        values = np.zeros(model.num_variables)
        for family in model.variables.values():
            if family.size:
                values[family.labels] = np.asarray(lp_model.variables[family.name].solution.values).ravel()
        has_solution = status in ("ok", "warning") and bool(np.isfinite(values).all())

        objective = lp_model.objective.value if has_solution else None
        termination = str(condition)
        return SolveResult(classify_termination(termination, has_solution), termination, objective,
                           values if has_solution else None)


def scipy_solve(A, row_lower, row_upper, c, col_lower, col_upper, integrality=None, options=None):
    """
    Solve with scipy's HiGHS interface: ``milp`` when integer columns exist, ``linprog`` otherwise.

    Returns:
        scipy.optimize.OptimizeResult: Raw result (``status``, ``x``, ``fun``)
    """
    options = dict(options or {})
    bounds = Bounds(col_lower, col_upper)
    if integrality is not None and np.any(integrality):
        constraints = [LinearConstraint(A, row_lower, row_upper)] if A.shape[0] else []
        return milp(c=c, constraints=constraints, integrality=integrality, bounds=bounds, options=options)

    equal = row_lower == row_upper
    upper = ~equal & np.isfinite(row_upper)
    lower = ~equal & np.isfinite(row_lower)
    A = A.tocsr()
    A_ub = None
    b_ub = None
    if upper.any() or lower.any():
        A_ub = sp.vstack([A[upper], -A[lower]]).tocsr()
        b_ub = np.concatenate([row_upper[upper], -row_lower[lower]])
    A_eq = A[equal] if equal.any() else None
    b_eq = row_lower[equal] if equal.any() else None
    return linprog(c, A_ub=A_ub, b_ub=b_ub, A_eq=A_eq, b_eq=b_eq,
                   bounds=np.column_stack([col_lower, col_upper]), method="highs", options=options)


class ScipySolver:
    """Adapter for scipy.optimize (HiGHS bundled with scipy)."""

    name = "scipy"
    supports_warm_start = False

    def solve(self, model, options=None, start=None):
        matrix = model.matrix()
        integrality = matrix.integrality if model.is_mip else None
        result = scipy_solve(matrix.A, matrix.row_lower, matrix.row_upper, matrix.c,
                             matrix.col_lower, matrix.col_upper, integrality, options)
        termination = _SCIPY_TERMINATIONS.get(result.status, "error")
        has_solution = result.x is not None and result.status in (0, 1) and bool(np.isfinite(result.x).all())
        values = np.asarray(result.x, dtype=float) if has_solution else None
        objective = float(result.fun) if has_solution else None
        return SolveResult(classify_termination(termination, has_solution), termination, objective, values)


def get_solver(name="highs", directmode=False, quiet=False, warm_start=False):
    """
    Select the solver adapter for a solver name.

    Args:
        name (str): Solver name, e.g. ``highs``, ``glpk``, ``cbc``, ``gurobi``, ``scipy``
        directmode (bool): Pass the model straight to the solver's API where supported
        warm_start (bool): Start values will be passed; HiGHS is then driven directly, which accepts them

    Returns:
        object: Solver adapter

    Raises:
        SolverUnavailableError: When the solver is not installed
    """
    key = (name or "highs").strip().lower()
    if key == "scipy":
        return ScipySolver()
    if key == "highs" and (directmode or warm_start):
        return HighsSolver()
    if key in linopy.available_solvers:
        if directmode:
            logmsg(f"Direct mode is not available for {key}; solving through linopy.", quiet)
        return LinopySolver(key)
    raise SolverUnavailableError(f"Solver {name} is not available; installed solvers: "
                                 f"{', '.join(sorted(linopy.available_solvers)) or 'none'} (plus scipy)")
