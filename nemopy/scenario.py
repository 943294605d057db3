"""
Scenario calculation entry points.
"""

import logging
import os
import shutil
import time

from .config import DEFAULT_VARSTOSAVE, RunOptions, apply_config, parse_calcyears, read_config, split_names
from .data_loader import load_scenario_data
from .database import check_version, connect, create_default_views, drop_default_views, dropresulttables
from .errors import ErrorTrap
from .foresight import ForesightOrchestrator, check_calcyears, filter_calcyears
from .infeasibility import find_infeasibilities
from .log import logmsg, setup_logging
from .model_builder import build_scenario_model
from .plugins import resolve_plugins, run_include_script
from .solvers import OPTIMAL

logger = logging.getLogger(__name__)

__all__ = ["calculatescenario", "build_scenario", "writescenariomodel", "find_infeasibilities", "make_options"]


def _year_groups(calcyears):
    if calcyears is None:
        return []
    if isinstance(calcyears, str):
        return parse_calcyears(calcyears)
    calcyears = list(calcyears)
    if calcyears and not isinstance(calcyears[0], (list, tuple)):
        return [[int(year) for year in calcyears]]
    return [[int(year) for year in group] for group in calcyears]


def make_options(varstosave=DEFAULT_VARSTOSAVE, restrictvars=True, reportzeros=False,
                 continuoustransmission=False, forcemip=False, quiet=False, calcyears=None, directmode=False,
                 startvalsdbpath="", startvalsvars="", precalcresultspath="", solver_parameters=None,
                 customconstraints=None, configpath=None, workers=None):
    """
    Build run options from arguments and apply the configuration file.

    Returns:
        RunOptions: Options with configuration file values applied
    """
    options = RunOptions(
        varstosave=split_names(varstosave),
        calcyears=_year_groups(calcyears),
        restrictvars=restrictvars,
        reportzeros=reportzeros,
        continuoustransmission=continuoustransmission,
        forcemip=forcemip,
        quiet=quiet,
        directmode=directmode,
        startvalsdbpath=startvalsdbpath or "",
        startvalsvars=startvalsvars or "",
        precalcresultspath=precalcresultspath or "",
        solver_parameters=dict(solver_parameters or {}),
        customconstraints=customconstraints if isinstance(customconstraints, str) else "",
        workers=workers,
    )
    # Always save the objective's components
    if "vtotaldiscountedcost" not in options.varstosave:
        options.varstosave.append("vtotaldiscountedcost")
    return apply_config(options, read_config(configpath))


def _copy_precalculated(precalcresultspath, dbpath):
    source = precalcresultspath
    if os.path.isdir(source):
        source = os.path.join(source, os.path.basename(dbpath))
    if not os.path.isfile(source):
        logger.warning(f"Pre-calculated results database {source} not found; calculating the scenario.")
        return False
    shutil.copyfile(source, dbpath)
    logger.info(f"✓ Copied pre-calculated results from {source} to {dbpath}.")
    return True


def _plugins(customconstraints, options):
    sources = []
    if customconstraints is not None and not isinstance(customconstraints, str):
        sources.extend(customconstraints if isinstance(customconstraints, (list, tuple)) else [customconstraints])
    if options.customconstraints:
        sources.append(options.customconstraints)
    return resolve_plugins(sources)


def _prepare_store(dbpath, quiet):
    conn = connect(dbpath)
    try:
        check_version(conn, quiet)
        dropresulttables(conn, quiet)
        create_default_views(conn)
    finally:
        conn.close()
    logmsg("Prepared scenario database for calculation.", quiet)


def _release_store(dbpath):
    conn = connect(dbpath)
    try:
        drop_default_views(conn)
    finally:
        conn.close()


def calculatescenario(dbpath, solver="highs", varstosave=DEFAULT_VARSTOSAVE, restrictvars=True, reportzeros=False,
                      continuoustransmission=False, forcemip=False, quiet=False, calcyears=None, directmode=False,
                      startvalsdbpath="", startvalsvars="", precalcresultspath="", solver_parameters=None,
                      customconstraints=None, configpath=None, workers=None, propagate_errors=False):
    """
    Calculate a scenario and save the results in its database.

    Args:
        dbpath (str): Path to the scenario database
        solver (str or object): Solver name (``highs``, ``glpk``, ``cbc``, ``gurobi``, ``scipy``, ...) or adapter
        varstosave (str or list): Comma-separated variable names whose values are saved
        restrictvars (bool): Create variables only for combinations that can carry activity
        reportzeros (bool): Save zero values too
        continuoustransmission (bool): Model transmission line builds as continuous
        forcemip (bool): Pass the model to the solver as a MIP
        quiet (bool): Suppress low-priority status messages
        calcyears (list or str): Year groups to calculate; several groups mean limited foresight
        directmode (bool): Pass the model straight to the solver's API where supported
        startvalsdbpath (str): Database with results used as warm-start values
        startvalsvars (str): Comma-separated variables read for the warm start (all when empty)
        precalcresultspath (str): Pre-calculated database (or directory) copied over ``dbpath`` instead of calculating
        solver_parameters (dict): Solver options
        customconstraints (callable, str or list): Custom constraint plugins or plugin files
        configpath (str): Configuration file; ``nemo.ini``/``nemo.cfg`` in the working directory when omitted
        workers (int): Worker threads for loading and model building
        propagate_errors (bool): Let errors pass through untouched instead of the standardized message

    Returns:
        str: ``optimal`` or ``suboptimal``

    Raises:
        NemoError: Standardized error of the failing step
    """
    setup_logging(logging.INFO)

    with ErrorTrap("calculatescenario", propagate_errors):
        started = time.time()
        logger.info(f"Started scenario calculation for {dbpath}.")

        options = make_options(varstosave, restrictvars, reportzeros, continuoustransmission, forcemip, quiet,
                               calcyears, directmode, startvalsdbpath, startvalsvars, precalcresultspath,
                               solver_parameters, customconstraints, configpath, workers)
        quiet = options.quiet

        if options.precalcresultspath and _copy_precalculated(options.precalcresultspath, dbpath):
            return OPTIMAL

        check_calcyears(options.calcyears)
        run_include_script(options.beforescenariocalc, dbpath, quiet)

        _prepare_store(dbpath, quiet)
        try:
            data = load_scenario_data(dbpath, quiet=quiet, workers=options.workers)
            if options.calcyears:
                options.calcyears = filter_calcyears(options.calcyears, data.years, quiet)
            plugins = _plugins(customconstraints, options)
            status = ForesightOrchestrator(data, options, dbpath, solver, plugins).run()
        finally:
            _release_store(dbpath)

        run_include_script(options.afterscenariocalc, dbpath, quiet)
        logger.info(f"✓ Finished scenario calculation with status {status} "
                    f"in {time.time() - started:.1f} seconds.")
        return status


def build_scenario(dbpath, varstosave=DEFAULT_VARSTOSAVE, restrictvars=True, continuoustransmission=False,
                   forcemip=False, quiet=False, calcyears=None, customconstraints=None, configpath=None,
                   workers=None, propagate_errors=False):
    """
    Build the optimization model of a scenario without solving it.

    All requested years are modeled together (perfect foresight), even when
    ``calcyears`` lists several groups.

    Returns:
        ScenarioModel: Built model
    """
    setup_logging(logging.INFO)

    with ErrorTrap("build_scenario", propagate_errors):
        options = make_options(varstosave, restrictvars, False, continuoustransmission, forcemip, quiet,
                               calcyears, configpath=configpath, customconstraints=customconstraints,
                               workers=workers)
        check_calcyears(options.calcyears)
        data = load_scenario_data(dbpath, quiet=options.quiet, workers=options.workers)
        years = None
        if options.calcyears:
            options.calcyears = filter_calcyears(options.calcyears, data.years, options.quiet)
            years = [year for group in options.calcyears for year in group]
        return build_scenario_model(data, options, years, plugins=_plugins(customconstraints, options),
                                    dbpath=dbpath, workers=options.workers)


def writescenariomodel(dbpath, filename, **kwargs):
    """
    Write the optimization model of a scenario to an LP or MPS file.

    Args:
        dbpath (str): Path to the scenario database
        filename (str): Output file; the extension (``.lp`` or ``.mps``) selects the format
        **kwargs: Passed to ``build_scenario``

    Returns:
        str: The output file name
    """
    propagate_errors = kwargs.get("propagate_errors", False)
    model = build_scenario(dbpath, **kwargs)
    with ErrorTrap("writescenariomodel", propagate_errors):
        lp_model, _ = model.to_linopy()
        lp_model.to_file(filename)
        logger.info(f"✓ Wrote scenario model to {filename}.")
    return filename
