# nemopy energy system scenario library
"""
Least-cost energy system optimization over a SQLite scenario database.

This package provides a clean separation between:
- Scenario database structure and data loading
- Restriction analysis, chronology and selected-year intervals
- Model building and constraint families
- Solving, limited foresight and infeasibility diagnosis
- Results persistence and reporting
"""

from .config import DEFAULT_VARSTOSAVE, RunOptions
from .database import (SCHEMA_VERSION, convertscenariounits, createnemodb, dropresulttables, setparamdefault,
                       upgrade_database)
from .errors import (ConfigurationError, DataIntegrityError, InfeasibleModelError, NemoError, SchemaError,
                     SolverUnavailableError, SuboptimalSolutionWarning, UnclassifiedError)
from .infeasibility import find_infeasibilities
from .log import setup_logging
from .plugins import CustomConstraintContext
from .results import create_cost_chart, get_results_summary, print_results
from .scenario import build_scenario, calculatescenario, writescenariomodel

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_VARSTOSAVE", "RunOptions", "SCHEMA_VERSION", "createnemodb", "dropresulttables", "setparamdefault",
    "convertscenariounits", "upgrade_database",
    "NemoError", "SchemaError", "DataIntegrityError", "ConfigurationError", "SolverUnavailableError",
    "InfeasibleModelError", "UnclassifiedError", "SuboptimalSolutionWarning", "find_infeasibilities",
    "setup_logging", "CustomConstraintContext", "create_cost_chart", "get_results_summary", "print_results",
    "build_scenario", "calculatescenario", "writescenariomodel",
]
