"""
Optimization model registry.

Variables and constraints are stored as families: named, subscripted blocks
with consecutive integer labels. Constraint families are staged outside the
model (so worker threads can build them independently) and merged into the
model under a lock, one family at a time.
"""

import logging
import threading
from collections import namedtuple

import numpy as np
import pandas as pd
import scipy.sparse as sp

logger = logging.getLogger(__name__)

INF = np.inf

# Name of the fixed integer column added when a MIP solve is forced on a continuous model
FORCE_MIP_VARIABLE = "forcemip"

SENSES = ("<=", ">=", "==")

MatrixForm = namedtuple("MatrixForm", ["A", "row_lower", "row_upper", "c", "col_lower", "col_upper", "integrality"])


def make_index(frame, dims):
    """MultiIndex over the subscript columns ``dims`` of ``frame``."""
    return pd.MultiIndex.from_frame(frame[list(dims)])


class VariableFamily:
    """A block of variables sharing a name and subscript columns."""

    def __init__(self, name, dims, keys, start, lower=0.0, upper=INF, integer=False):
        self.name = name
        self.dims = tuple(dims)
        self.keys = keys[list(self.dims)].reset_index(drop=True)
        self.index = make_index(self.keys, self.dims)
        self.start = start
        self.size = len(self.keys)
        self.lower = np.broadcast_to(np.asarray(lower, dtype=float), (self.size,)).copy()
        self.upper = np.broadcast_to(np.asarray(upper, dtype=float), (self.size,)).copy()
        self.integer = integer

    def __repr__(self):
        return f"VariableFamily({self.name}, dims={self.dims}, size={self.size})"

    def __len__(self):
        return self.size

    @property
    def labels(self):
        return np.arange(self.start, self.start + self.size)

    def lookup(self, frame, on=None):
        """
        Labels of the variables addressed by the rows of ``frame``.

        Args:
            frame (pd.DataFrame): Rows holding the subscripts
            on (dict): Maps variable subscripts to differently named frame columns

        Returns:
            np.ndarray: Labels, -1 where no such variable exists
        """
        if len(frame) == 0 or self.size == 0:
            return np.full(len(frame), -1, dtype=np.int64)
        on = on or {}
        columns = [on.get(dim, dim) for dim in self.dims]
        target = pd.MultiIndex.from_arrays([frame[col].to_numpy() for col in columns], names=list(self.dims))
        positions = self.index.get_indexer(target)
        return np.where(positions >= 0, positions + self.start, -1).astype(np.int64)

    def label(self, *key):
        position = self.index.get_loc(tuple(key) if len(self.dims) > 1 else (key[0],))
        return self.start + int(position)


def terms(frame, variable, rows, coeff=1.0, on=None):
    """
    Linear terms for a constraint family.

    Args:
        frame (pd.DataFrame): One row per term, holding constraint and variable subscripts
        variable (VariableFamily): Variable the terms refer to
        rows (tuple): Constraint subscript columns
        coeff (float, str or array): Coefficient, or the name of a column of ``frame``
        on (dict): Maps variable subscripts to frame columns

    Returns:
        pd.DataFrame: Constraint subscripts plus ``label`` and ``coeff``; terms
        addressing missing variables are dropped
    """
    result = frame[list(rows)].copy()
    result["label"] = variable.lookup(frame, on)
    if isinstance(coeff, str):
        result["coeff"] = frame[coeff].to_numpy(dtype=float)
    else:
        result["coeff"] = np.broadcast_to(np.asarray(coeff, dtype=float), (len(frame),))
    return result[result["label"] >= 0]


class ConstraintFamily:
    """
    Staged block of linear constraints ``sum(coeff * var) <sense> rhs``.

    Rows are stored in compressed form (indptr/cols/coeffs) together with
    their subscript keys.
    """

    def __init__(self, name, dims, keys, indptr, cols, coeffs, sense, rhs):
        if sense not in SENSES:
            raise ValueError(f"Unknown constraint sense {sense}")
        self.name = name
        self.dims = tuple(dims)
        self.keys = keys.reset_index(drop=True)
        self.indptr = np.asarray(indptr, dtype=np.int64)
        self.cols = np.asarray(cols, dtype=np.int64)
        self.coeffs = np.asarray(coeffs, dtype=float)
        self.sense = sense
        self.rhs = np.asarray(rhs, dtype=float)
        self.start = None

    def __repr__(self):
        return f"ConstraintFamily({self.name}, {self.sense}, rows={self.size})"

    @property
    def size(self):
        return len(self.rhs)

    @classmethod
    def from_terms(cls, name, dims, term_frames, sense, rhs=0.0):
        """
        Assemble a family from term frames.

        Args:
            name (str): Family name
            dims (tuple): Constraint subscript columns
            term_frames (list): Frames returned by ``terms``
            sense (str): One of "<=", ">=", "=="
            rhs (float or pd.DataFrame): Constant right-hand side, or a frame
                with subscript columns and ``rhs`` (rows only present here get
                no variable terms)

        Returns:
            ConstraintFamily or None: None when the family has no rows
        """
        dims = list(dims)
        parts = [frame for frame in term_frames if frame is not None and len(frame) > 0]
        if parts:
            frame = pd.concat(parts, ignore_index=True)
        else:
            frame = pd.DataFrame(columns=dims + ["label", "coeff"])

        key_parts = [frame[dims]] if len(frame) else []
        if isinstance(rhs, pd.DataFrame) and len(rhs) > 0:
            key_parts.append(rhs[dims])
        if not key_parts:
            return None
        keys = pd.concat(key_parts, ignore_index=True).drop_duplicates().reset_index(drop=True)
        index = make_index(keys, dims)

        if len(frame):
            row = index.get_indexer(make_index(frame, dims))
            grouped = (pd.DataFrame({"row": row, "label": frame["label"].to_numpy(dtype=np.int64),
                                     "coeff": frame["coeff"].to_numpy(dtype=float)})
                       .groupby(["row", "label"], sort=True, as_index=False)["coeff"].sum())
            grouped = grouped[grouped["coeff"] != 0.0]
            rows = grouped["row"].to_numpy()
            cols = grouped["label"].to_numpy()
            coeffs = grouped["coeff"].to_numpy()
        else:
            rows = np.zeros(0, dtype=np.int64)
            cols = np.zeros(0, dtype=np.int64)
            coeffs = np.zeros(0)
        indptr = np.searchsorted(rows, np.arange(len(keys) + 1), side="left")

        rhs_values = np.zeros(len(keys))
        if isinstance(rhs, pd.DataFrame):
            if len(rhs):
                positions = index.get_indexer(make_index(rhs, dims))
                np.add.at(rhs_values, positions, rhs["rhs"].to_numpy(dtype=float))
        else:
            rhs_values[:] = float(rhs)

        return cls(name, dims, keys, indptr, cols, coeffs, sense, rhs_values)

    def row_bounds(self):
        if self.sense == "<=":
            return np.full(self.size, -INF), self.rhs.copy()
        if self.sense == ">=":
            return self.rhs.copy(), np.full(self.size, INF)
        return self.rhs.copy(), self.rhs.copy()

    def row_names(self):
        if not self.dims:
            return [self.name] * self.size
        return [f"{self.name}[{', '.join(str(value) for value in key)}]"
                for key in self.keys[list(self.dims)].itertuples(index=False)]


class ScenarioModel:
    """
    Registry of variable and constraint families plus the objective.

    Variable declaration happens sequentially; constraint families may be
    staged concurrently and are merged with ``merge``.
    """

    def __init__(self, name="scenario"):
        self.name = name
        self.variables = {}
        self.constraints = {}
        self.num_variables = 0
        self.num_constraints = 0
        self.objective_labels = np.zeros(0, dtype=np.int64)
        self.objective_coeffs = np.zeros(0)
        self.force_mip = False
        self.solution = None
        self.objective_value = None
        self._lock = threading.Lock()
        self._matrix = None

    def __repr__(self):
        return (f"ScenarioModel({self.name}, variables={self.num_variables}, "
                f"constraints={self.num_constraints})")

    # Variables

    def add_variables(self, name, dims, keys, lower=0.0, upper=INF, integer=False):
        """
        Declare a variable family over the distinct rows of ``keys``.

        Returns:
            VariableFamily: The new family (possibly empty)
        """
        keys = keys[list(dims)].drop_duplicates().reset_index(drop=True)
        with self._lock:
            if name in self.variables:
                raise ValueError(f"Variable family {name} already exists")
            family = VariableFamily(name, dims, keys, self.num_variables, lower, upper, integer)
            self.variables[name] = family
            self.num_variables += family.size
            self._matrix = None
        return family

    def variable(self, name):
        return self.variables[name]

    def has_variable(self, name):
        return name in self.variables and self.variables[name].size > 0

    @property
    def is_mip(self):
        return self.force_mip or any(family.integer and family.size for family in self.variables.values())

    # Constraints

    def merge(self, family):
        """Merge a staged constraint family into the model."""
        if family is None:
            return None
        with self._lock:
            if family.name in self.constraints:
                raise ValueError(f"Constraint family {family.name} already exists")
            family.start = self.num_constraints
            self.constraints[family.name] = family
            self.num_constraints += family.size
            self._matrix = None
        return family

    def add_constraint(self, name, coefficients, sense, rhs=0.0):
        """
        Add a single constraint.

        Args:
            name (str): Unique constraint name
            coefficients (dict): Maps (variable family name, subscript tuple) to a coefficient
            sense (str): One of "<=", ">=", "=="
            rhs (float): Right-hand side

        Returns:
            ConstraintFamily: One-row family
        """
        cols, coeffs = [], []
        for (variable_name, key), coeff in coefficients.items():
            key = key if isinstance(key, tuple) else (key,)
            cols.append(self.variables[variable_name].label(*key))
            coeffs.append(float(coeff))
        order = np.argsort(cols, kind="stable")
        family = ConstraintFamily(name, (), pd.DataFrame(index=[0]), [0, len(cols)],
                                  np.asarray(cols, dtype=np.int64)[order], np.asarray(coeffs)[order], sense, [rhs])
        return self.merge(family)

    # Objective

    def set_objective(self, labels, coeffs):
        """Minimize ``sum(coeffs * x[labels])``."""
        self.objective_labels = np.asarray(labels, dtype=np.int64)
        self.objective_coeffs = np.asarray(coeffs, dtype=float)
        self._matrix = None

    # Matrix form

    def matrix(self):
        """
        The model as sparse matrix data.

        Returns:
            MatrixForm: CSR constraint matrix, row bounds, objective, column bounds, integrality
        """
        if self._matrix is not None:
            return self._matrix

        families = sorted(self.constraints.values(), key=lambda family: family.start)
        indptr_parts = [np.zeros(1, dtype=np.int64)]
        cols, coeffs, lower, upper = [], [], [], []
        nnz = 0
        for family in families:
            indptr_parts.append(family.indptr[1:] + nnz)
            nnz += int(family.indptr[-1])
            cols.append(family.cols)
            coeffs.append(family.coeffs)
            family_lower, family_upper = family.row_bounds()
            lower.append(family_lower)
            upper.append(family_upper)

        A = sp.csr_matrix(
            (np.concatenate(coeffs) if coeffs else np.zeros(0),
             np.concatenate(cols) if cols else np.zeros(0, dtype=np.int64),
             np.concatenate(indptr_parts)),
            shape=(self.num_constraints, self.num_variables))

        c = np.zeros(self.num_variables)
        np.add.at(c, self.objective_labels, self.objective_coeffs)

        col_lower = np.concatenate([f.lower for f in self.variables.values()]) if self.variables else np.zeros(0)
        col_upper = np.concatenate([f.upper for f in self.variables.values()]) if self.variables else np.zeros(0)
        integrality = np.concatenate([np.full(f.size, 1 if f.integer else 0, dtype=np.int64)
                                      for f in self.variables.values()]) if self.variables else np.zeros(0)

        self._matrix = MatrixForm(
            A=A,
            row_lower=np.concatenate(lower) if lower else np.zeros(0),
            row_upper=np.concatenate(upper) if upper else np.zeros(0),
            c=c, col_lower=col_lower, col_upper=col_upper, integrality=integrality)
        return self._matrix

    def subset(self, rows):
        """Matrix form keeping only the constraint rows ``rows``; columns and objective are unchanged."""
        matrix = self.matrix()
        rows = np.asarray(rows, dtype=np.int64)
        return matrix._replace(A=matrix.A[rows], row_lower=matrix.row_lower[rows], row_upper=matrix.row_upper[rows])

    def constraint_names(self):
        """Names of all constraint rows in matrix order, formatted ``family[key]``."""
        names = []
        for family in sorted(self.constraints.values(), key=lambda family: family.start):
            names.extend(family.row_names())
        return names

    def empty_row_violations(self, tolerance=1e-9):
        """Names of constraint rows without variables whose constant bound is violated."""
        matrix = self.matrix()
        empty = np.diff(matrix.A.indptr) == 0
        violated = empty & ((matrix.row_lower > tolerance) | (matrix.row_upper < -tolerance))
        if not violated.any():
            return []
        names = self.constraint_names()
        return [names[i] for i in np.flatnonzero(violated)]

    # Solution

    def set_solution(self, values, objective_value=None):
        self.solution = np.asarray(values, dtype=float)
        self.objective_value = objective_value

    def values(self, name):
        """Solution values of a variable family as a Series indexed by subscripts."""
        family = self.variables[name]
        return pd.Series(self.solution[family.start:family.start + family.size], index=family.index, name=name)

    def value_frame(self, name):
        """Solution values of a variable family as a DataFrame (subscripts plus ``val``)."""
        family = self.variables[name]
        frame = family.keys.copy()
        frame["val"] = self.solution[family.start:family.start + family.size]
        return frame

    # linopy

    def to_linopy(self):
        """
        Build an equivalent linopy model.

        Returns:
            tuple: (linopy.Model, array mapping registry labels to linopy labels)
        """
        import linopy
        import xarray as xr

        lp_model = linopy.Model()
        label_map = np.full(self.num_variables, -1, dtype=np.int64)

        for family in self.variables.values():
            if family.size == 0:
                continue
            coord = pd.RangeIndex(family.size, name=f"{family.name}_i")
            lower = xr.DataArray(family.lower, coords=[coord])
            upper = xr.DataArray(family.upper, coords=[coord])
            lp_variable = lp_model.add_variables(lower=lower, upper=upper, name=family.name,
                                                 integer=bool(family.integer))
            label_map[family.labels] = np.asarray(lp_variable.labels.values).ravel()

        if self.force_mip and not any(family.integer and family.size for family in self.variables.values()):
            # A fixed integer column makes the solver take the MIP path
            lp_model.add_variables(lower=0, upper=0, name=FORCE_MIP_VARIABLE, integer=True)

        signs = {"<=": "<=", ">=": ">=", "==": "="}
        for family in self.constraints.values():
            counts = np.diff(family.indptr)
            keep = np.flatnonzero(counts > 0)
            if len(keep) == 0:
                continue
            width = int(counts.max())
            variables = np.full((len(keep), width), -1, dtype=np.int64)
            coefficients = np.zeros((len(keep), width))
            for out_row, row in enumerate(keep):
                begin, end = family.indptr[row], family.indptr[row + 1]
                variables[out_row, :end - begin] = label_map[family.cols[begin:end]]
                coefficients[out_row, :end - begin] = family.coeffs[begin:end]

            dim = f"{family.name}_c"
            coord = pd.RangeIndex(len(keep), name=dim)
            expression = linopy.LinearExpression(
                xr.Dataset({"coeffs": ((dim, "_term"), coefficients), "vars": ((dim, "_term"), variables)},
                           coords={dim: coord}),
                lp_model)
            rhs = xr.DataArray(family.rhs[keep], coords=[coord])
            lp_model.add_constraints(expression, signs[family.sense], rhs, name=family.name)

        objective_mask = self.objective_coeffs != 0
        objective = linopy.LinearExpression(
            xr.Dataset({"coeffs": (("_term",), self.objective_coeffs[objective_mask]),
                        "vars": (("_term",), label_map[self.objective_labels[objective_mask]])}),
            lp_model)
        lp_model.add_objective(objective)
        return lp_model, label_map
