"""
Scenario model building functions.

``build_scenario_model`` declares every variable family, then builds the
constraint families on a thread pool: each builder stages its families
independently and the results are merged into the shared model in
submission order.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from . import constraints, policies, storage, transmission
from .carryover import CarryoverState
from .chronology import resolve_chronology
from .config import RunOptions
from .data_loader import cross_frame
from .database import connect
from .log import logmsg
from .model import ScenarioModel, terms
from .plugins import CustomConstraintContext, run_custom_constraints
from .restrictions import analyze_restrictions
from .selected_years import YearIntervals

logger = logging.getLogger(__name__)

COMPONENTS = (constraints, storage, policies, transmission)


class BuildContext:
    """
    Everything a variable or constraint builder reads.

    Args:
        data (ScenarioData): Loaded scenario
        options (RunOptions): Run options
        years (list): Years modeled in this build
        carryover (CarryoverState): State from the previous foresight group
        final_group (bool): Whether this is the last foresight group
        last_year (int): Final year calculated in the whole run (salvage horizon)
        chronology (Chronology): Resolved chronology; resolved here when omitted
    """

    def __init__(self, data, options, years, carryover=None, final_group=True, last_year=None,
                 chronology=None, workers=None):
        self.data = data
        self.options = options
        self.years = sorted(int(year) for year in years)
        self.carry = carryover or CarryoverState()
        self.final_group = final_group
        self.last_year = last_year or self.years[-1]
        self.first_year = data.first_year
        self.workers = workers
        self.intervals = YearIntervals(data.years, self.years, previous_year=self.carry.last_year)
        self.domain = analyze_restrictions(data, self.years, options.restrictvars, workers)
        if chronology is None:
            chronology = resolve_chronology(data.tsgroup1, data.tsgroup2, data.ltsgroup, data.timeslices)
        self.chronology = chronology
        self.ys = data.yearsplit(self.years)
        self.model = ScenarioModel()
        self.model.force_mip = options.forcemip
        self._discount_rates = None

    # Lookups

    def param(self, name):
        return self.data.param(name)

    def var(self, name):
        return self.model.variable(name)

    def has(self, name):
        return self.model.has_variable(name)

    def saving(self, name):
        return name in self.options.varstosave

    def cross(self, **dimensions):
        return cross_frame(**dimensions)

    @property
    def rty(self):
        return self.cross(r=self.data.regions, t=self.data.technologies, y=self.years)

    @property
    def rsy(self):
        return self.cross(r=self.data.regions, s=self.data.storages, y=self.years)

    @property
    def rfy(self):
        return self.cross(r=self.data.regions, f=self.data.fuels, y=self.years)

    def discount_rates(self):
        """DataFrame (r, dr)."""
        if self._discount_rates is None:
            self._discount_rates = self.param("DiscountRate").lookup(pd.DataFrame({"r": self.data.regions}), "dr")
        return self._discount_rates

    # Cost helpers

    def capital_factors(self, frame):
        """
        Column of investment discount factors for rows with ``r`` and ``y``.

        Investment in a modeled year is spread evenly over its interval.
        """
        keyed = frame[["r", "y"]].drop_duplicates().merge(self.discount_rates(), on="r")
        keyed["capfactor"] = [self.intervals.capital_factor(int(y), dr) for y, dr in zip(keyed["y"], keyed["dr"])]
        return frame.merge(keyed[["r", "y", "capfactor"]], on=["r", "y"], how="left")["capfactor"].to_numpy()

    def salvage_factors(self, frame, life_column, cost_column="cc"):
        """
        Fraction of investment recovered as salvage value for rows with ``r``, ``y`` and a lifetime.

        Depreciation method 1 uses a sinking fund when the discount rate is
        positive, otherwise straight-line depreciation applies. Assets retiring
        within the run have no salvage value.
        """
        frame = frame.merge(self.discount_rates(), on="r", how="left")
        frame = self.param("DepreciationMethod").lookup(frame, "dm")
        last = self.last_year
        life = frame[life_column].to_numpy(dtype=float)
        years = frame["y"].to_numpy(dtype=float)
        dr = frame["dr"].to_numpy(dtype=float)
        dm = frame["dm"].to_numpy(dtype=float)
        remaining = last - years + 1

        factor = np.zeros(len(frame))
        alive = (years + life - 1 > last) & (life > 0)
        sinking = alive & (dm == 1) & (dr > 0)
        straight = alive & ~sinking
        with np.errstate(divide="ignore", invalid="ignore"):
            factor[sinking] = 1 - (((1 + dr[sinking]) ** remaining[sinking] - 1)
                                   / ((1 + dr[sinking]) ** life[sinking] - 1))
            factor[straight] = 1 - remaining[straight] / life[straight]
        return factor

    def salvage_discount(self, frame):
        """Discount factor applied to salvage values (end of the run)."""
        frame = frame.merge(self.discount_rates(), on="r", how="left")
        return (1 + frame["dr"].to_numpy(dtype=float)) ** -(1 + self.last_year - self.first_year)

    @staticmethod
    def finance_factors(rate, life, dr):
        """
        Present value of annuity payments financing one unit of investment.

        With no interest rate the investment is paid up front (factor 1).
        """
        rate = np.asarray(rate, dtype=float)
        life = np.maximum(np.asarray(life, dtype=float), 1)
        dr = np.asarray(dr, dtype=float)
        factor = np.ones(len(rate))
        financed = rate > 0
        if financed.any():
            r, n, d = rate[financed], life[financed], dr[financed]
            annuity = r / ((1 + r) * (1 - (1 + r) ** -n))
            present = np.where(d > 0, (1 - (1 + d) ** -n) / np.where(d > 0, d, 1) * (1 + d), n)
            factor[financed] = annuity * present
        return factor

    def interpolate(self, rows, dims, variable, rate=None, discount=True, offset=0.5):
        """
        Terms summing a quantity over the calendar years of each modeled year's interval.

        For every calendar year ``x`` in the interval of modeled year ``y`` the
        quantity is interpolated between ``y`` and the previous modeled year,
        multiplied by an optional rate evaluated at ``x`` and optionally
        discounted with ``(1 + dr) ** -(x - first_year + offset)``.

        Args:
            rows (pd.DataFrame): Subscripts of the constraint rows plus any extra
                variable subscripts (e.g. mode); must include ``y``
            dims (tuple): Constraint subscript columns
            variable (VariableFamily): Quantity being interpolated
            rate (Parameter or pd.DataFrame): Per-unit rate by calendar year (``y`` column)
            discount (bool): Apply discounting (requires an ``r`` column)
            offset (float): Discounting offset in years

        Returns:
            tuple: (list of term frames, DataFrame of constants with ``dims`` and ``rhs``)
        """
        dims = list(dims)
        weights = self.intervals.weights()
        frame = rows.merge(weights, on="y")

        if rate is not None:
            at_x = frame.rename(columns={"y": "_ymod"}).rename(columns={"x": "y"})
            if hasattr(rate, "lookup"):
                at_x = rate.lookup(at_x, "_rate")
            else:
                keys = [col for col in rate.columns if col != "val"]
                at_x = at_x.merge(rate.rename(columns={"val": "_rate"}), on=keys, how="left")
                at_x["_rate"] = at_x["_rate"].fillna(0.0)
            frame = at_x.rename(columns={"y": "x"}).rename(columns={"_ymod": "y"})
        else:
            frame["_rate"] = 1.0

        if discount:
            frame = frame.merge(self.discount_rates(), on="r", how="left")
            frame["_d"] = (1 + frame["dr"]) ** -(frame["x"] - self.first_year + offset)
        else:
            frame["_d"] = 1.0

        frame["_kcur"] = frame["wcur"] * frame["_rate"] * frame["_d"]
        frame["_kprev"] = frame["wprev"] * frame["_rate"] * frame["_d"]

        found = [terms(frame, variable, dims, "_kcur")]
        constants = pd.DataFrame(columns=dims + ["rhs"])

        previous = frame[(frame["_kprev"] != 0) & frame["yprev"].notna()].copy()
        if len(previous):
            previous["_yp"] = previous["yprev"].astype("int64")
            in_group = previous[previous["_yp"].isin(self.years)]
            found.append(terms(in_group, variable, dims, "_kprev", on={"y": "_yp"}))

            carried = previous[~previous["_yp"].isin(self.years)]
            boundary = self.carry.boundary_values(variable.name)
            if len(carried) and boundary is not None and len(boundary):
                var_dims = [dim for dim in variable.dims if dim != "y"]
                joined = carried.merge(boundary.rename(columns={"y": "_yp", "val": "_carried"}),
                                       on=var_dims + ["_yp"], how="inner")
                joined["rhs"] = joined["_kprev"] * joined["_carried"]
                constants = joined.groupby(dims, as_index=False)["rhs"].sum()

        return found, constants


def _run_builder(builder, context):
    result = builder(context)
    if result is None:
        return []
    if isinstance(result, (list, tuple)):
        return [family for family in result if family is not None]
    return [result]


def build_scenario_model(data, options=None, years=None, carryover=None, final_group=True, last_year=None,
                         plugins=None, dbpath=None, group=1, workers=None, chronology=None):
    """
    Build the optimization model of a scenario for a set of years.

    Args:
        data (ScenarioData): Loaded scenario
        options (RunOptions): Run options (defaults when omitted)
        years (list): Years to model (all scenario years when omitted)
        carryover (CarryoverState): State from the previous foresight group
        final_group (bool): Whether this is the last foresight group
        last_year (int): Final calculated year of the run
        plugins (list): Custom constraint callables, each taking a CustomConstraintContext
        dbpath (str): Scenario database handed to plugins
        group (int): Foresight group number (1-based)
        workers (int): Worker threads for constraint building

    Returns:
        ScenarioModel: Model ready to be solved
    """
    options = options or RunOptions()
    years = list(years) if years else list(data.years)
    quiet = options.quiet
    workers = workers or options.workers or min(8, os.cpu_count() or 1)

    context = BuildContext(data, options, years, carryover, final_group, last_year, chronology, workers)
    model = context.model

    for component in COMPONENTS:
        component.declare_variables(context)
    logmsg(f"Defined {model.num_variables} variables in {len(model.variables)} families.", quiet)

    builders = [builder for component in COMPONENTS for builder in component.FAMILIES]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(_run_builder, builder, context) for builder in builders]
        for future in futures:
            for family in future.result():
                model.merge(family)
    logmsg(f"Defined {model.num_constraints} constraints in {len(model.constraints)} families.", quiet)

    if plugins:
        conn = connect(dbpath or data.dbpath)
        try:
            plugin_context = CustomConstraintContext(
                model=model, db=conn, dbpath=dbpath or data.dbpath, quiet=quiet,
                restrictyears=options.restrictyears, inyears=list(context.years), data=data, group=group)
            run_custom_constraints(plugins, plugin_context)
        finally:
            conn.close()

    total_cost = context.var("vtotaldiscountedcost")
    model.set_objective(total_cost.labels, np.ones(total_cost.size))
    logmsg("✓ Defined objective function.", quiet)
    return model
