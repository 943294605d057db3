"""
Foresight functions: year-group validation and sequential solving of groups.

A single group solves all requested years at once (perfect foresight).
Several disjoint, increasing groups are solved one after another (limited
foresight); the state left by each group becomes the boundary condition of
the next one.
"""

import logging
from datetime import datetime

from .carryover import CarryoverState
from .chronology import resolve_chronology
from .database import connect, dropresulttables
from .errors import ConfigurationError
from .log import logmsg
from .model_builder import build_scenario_model
from .optimization import load_start_values, run_model_optimization
from .results import record_solve_status, save_results
from .solvers import OPTIMAL, SUBOPTIMAL

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def check_calcyears(calcyears):
    """
    Validate year groups.

    Args:
        calcyears (list): List of year groups (lists of ints)

    Raises:
        ConfigurationError: When an empty group appears alongside others, years
            within a group are not strictly increasing, or groups overlap or are
            out of order
    """
    if not calcyears:
        return
    if len(calcyears) > 1 and any(len(group) == 0 for group in calcyears):
        raise ConfigurationError("calcyears contains an empty year group alongside other groups")

    previous_last = None
    for index, group in enumerate(calcyears, 1):
        if not group:
            continue
        years = [int(year) for year in group]
        if any(later <= earlier for earlier, later in zip(years, years[1:])):
            raise ConfigurationError(f"Years in calcyears group {index} are not strictly increasing: {years}")
        if previous_last is not None and years[0] <= previous_last:
            raise ConfigurationError(f"calcyears group {index} overlaps or precedes the previous group "
                                     f"(starts at {years[0]}, previous group ends at {previous_last})")
        previous_last = years[-1]


def filter_calcyears(calcyears, scenario_years, quiet=False):
    """
    Drop years that are not defined in the scenario.

    Args:
        calcyears (list): Validated year groups
        scenario_years (list): Years defined in the scenario

    Returns:
        list: Non-empty year groups; all scenario years as a single group when
        nothing remains
    """
    defined = set(int(year) for year in scenario_years)
    filtered = []
    for group in calcyears or []:
        kept = [int(year) for year in group if int(year) in defined]
        dropped = [int(year) for year in group if int(year) not in defined]
        if dropped:
            logger.warning(f"Ignoring calcyears not defined in the scenario: {', '.join(map(str, dropped))}")
        if kept:
            filtered.append(kept)

    if not filtered:
        if calcyears and any(calcyears):
            logger.warning("No requested calcyears are defined in the scenario; calculating all years.")
        return [sorted(defined)]

    logmsg(f"Calculating {len(filtered)} year group(s): "
           + "; ".join(", ".join(map(str, group)) for group in filtered), quiet)
    return filtered


class ForesightOrchestrator:
    """
    Solve year groups in sequence and persist their results.

    Args:
        data (ScenarioData): Loaded scenario
        options (RunOptions): Run options; ``calcyears`` must already be filtered
        dbpath (str): Scenario database receiving the results
        solver (str or object): Solver name or adapter
        plugins (list): Custom constraint callables
    """

    def __init__(self, data, options, dbpath, solver="highs", plugins=None):
        self.data = data
        self.options = options
        self.dbpath = dbpath
        self.solver = solver
        self.plugins = plugins or []
        self.groups = [list(group) for group in options.calcyears] or [list(data.years)]
        self.carryover = CarryoverState()
        self.results = []
        self.model = None

    @property
    def last_year(self):
        return max(year for group in self.groups for year in group)

    def run(self):
        """
        Build, solve and persist each group.

        Returns:
            str: ``optimal``, or ``suboptimal`` when any group stopped early with a usable solution

        Raises:
            InfeasibleModelError: A group is infeasible; no results are kept
            NemoError: Any other failure; no results are kept
        """
        options = self.options
        quiet = options.quiet
        chronology = resolve_chronology(self.data.tsgroup1, self.data.tsgroup2, self.data.ltsgroup,
                                        self.data.timeslices)
        status = OPTIMAL

        try:
            for index, years in enumerate(self.groups, 1):
                final_group = index == len(self.groups)
                logger.info(f"Starting foresight group {index} of {len(self.groups)}: "
                            f"{', '.join(map(str, years))}")

                self.model = build_scenario_model(
                    self.data, options, years, self.carryover, final_group=final_group, last_year=self.last_year,
                    plugins=self.plugins, dbpath=self.dbpath, group=index, workers=options.workers,
                    chronology=chronology)

                start = None
                if index == 1 and options.startvalsdbpath:
                    start = load_start_values(options.startvalsdbpath, self.model,
                                              [name.strip().lower() for name in options.startvalsvars.split(",")
                                               if name.strip()], quiet)

                result = run_model_optimization(self.model, self.solver, options.solver_parameters, start,
                                                options.directmode, quiet)
                solvedtm = datetime.now().strftime(TIMESTAMP_FORMAT)[:-3]
                warning = result.status == SUBOPTIMAL
                if warning:
                    status = SUBOPTIMAL

                save_results(self.dbpath, self.model, options.varstosave, solvedtm, options.reportzeros, quiet)
                record_solve_status(self.dbpath, index, result.status, warning, solvedtm)
                self.results.append(result)
                self.carryover = self.carryover.advance(self.model, years)
                logger.info(f"✓ Finished foresight group {index} with status {result.status}.")
        except Exception:
            self._drop_results()
            raise

        return status

    def _drop_results(self):
        conn = connect(self.dbpath)
        try:
            dropresulttables(conn, quiet=True)
        finally:
            conn.close()
        logger.error("❌ Calculation stopped; removed partial results from the database.")
