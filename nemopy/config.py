"""
Run options and configuration file handling.

A configuration file named ``nemo.ini`` or ``nemo.cfg`` in the working
directory can override or extend the arguments of a calculation:

    [calculatescenarioargs]
    calcyears = 2020|2025,2030
    varstosave = vproductionbytechnology, vusebytechnology
    restrictvars = true

    [solver]
    parameters = time_limit=600,mip_rel_gap=0.01,presolve=on

    [includes]
    beforescenariocalc = before.py
    customconstraints = custom_constraints.py

Relative include paths are resolved against the working directory, wherever
the configuration file itself was found.
"""

import configparser
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("nemo.ini", "nemo.cfg")

DEFAULT_VARSTOSAVE = (
    "vdemandnn, vnewstoragecapacity, vaccumulatednewstoragecapacity, vstorageupperlimit, "
    "vstoragelowerlimit, vcapitalinvestmentstorage, vdiscountedcapitalinvestmentstorage, "
    "vsalvagevaluestorage, vdiscountedsalvagevaluestorage, vnewcapacity, vaccumulatednewcapacity, "
    "vtotalcapacityannual, vtotaltechnologyannualactivity, vtotalannualtechnologyactivitybymode, "
    "vproductionbytechnologyannual, vproductionnn, vusebytechnologyannual, vusenn, vtrade, "
    "vtradeannual, vproductionannualnn, vuseannualnn, vcapitalinvestment, "
    "vdiscountedcapitalinvestment, vsalvagevalue, vdiscountedsalvagevalue, voperatingcost, "
    "vdiscountedoperatingcost, vtotaldiscountedcost"
)

_BOOLEAN_KEYS = ("restrictvars", "reportzeros", "continuoustransmission", "forcemip", "quiet", "directmode")
_STRING_KEYS = ("startvalsdbpath", "startvalsvars", "precalcresultspath")


@dataclass
class RunOptions:
    """Options of one scenario calculation."""

    varstosave: list = field(default_factory=lambda: split_names(DEFAULT_VARSTOSAVE))
    calcyears: list = field(default_factory=list)
    restrictvars: bool = True
    reportzeros: bool = False
    continuoustransmission: bool = False
    forcemip: bool = False
    quiet: bool = False
    directmode: bool = False
    startvalsdbpath: str = ""
    startvalsvars: str = ""
    precalcresultspath: str = ""
    solver_parameters: dict = field(default_factory=dict)
    beforescenariocalc: str = ""
    afterscenariocalc: str = ""
    customconstraints: str = ""
    workers: int = None

    @property
    def restrictyears(self):
        return len(self.calcyears) > 0


def split_names(text):
    """Split a comma-delimited list into lowercase names without blanks or duplicates."""
    if not text:
        return []
    if not isinstance(text, str):
        text = ",".join(text)

    names = []
    for name in text.replace(" ", "").lower().split(","):
        if name and name not in names:
            names.append(name)
    return names


def parse_calcyears(text):
    """
    Parse a year-group specification such as ``2020|2025,2030``.

    Commas separate groups, pipes separate years within a group.

    Returns:
        list: List of year groups, each a list of ints
    """
    groups = []
    for group_text in text.split(","):
        group_text = group_text.strip()
        if not group_text:
            continue
        groups.append([int(year.strip()) for year in group_text.split("|") if year.strip()])
    return groups


def infer_value(text):
    """Convert a solver parameter value to int, float, bool or str, in that order of preference."""
    text = text.strip()
    for convert in (int, float):
        try:
            return convert(text)
        except ValueError:
            pass

    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return text


def parse_solver_parameters(text):
    """
    Parse ``name=value`` pairs separated by commas.

    Returns:
        dict: Parameter names mapped to typed values
    """
    parameters = {}
    for pair in text.split(","):
        if not pair.strip():
            continue
        if "=" not in pair:
            logger.warning(f"Ignoring solver parameter without a value: {pair.strip()}")
            continue
        name, value = pair.split("=", 1)
        parameters[name.strip()] = infer_value(value)
    return parameters


def find_config_file(directory=None):
    """Return the path of the first configuration file found in ``directory`` (default: cwd)."""
    directory = directory or os.getcwd()
    for filename in CONFIG_FILENAMES:
        path = os.path.join(directory, filename)
        if os.path.isfile(path):
            return path
    return None


def read_config(path=None):
    """
    Read a configuration file.

    Args:
        path (str): Explicit file path; when omitted the working directory is searched

    Returns:
        configparser.ConfigParser or None: Parsed configuration, None when no file exists
    """
    path = path or find_config_file()
    if path is None:
        return None

    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read(path, encoding="utf-8")
    except configparser.Error as e:
        logger.warning(f"Could not read configuration file {path}: {e}. Continuing without it.")
        return None

    parser.source_path = os.path.abspath(path)
    logger.info(f"Read configuration file {path}.")
    return parser


def _unquote(value):
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def _resolve_include(value):
    value = _unquote(value)
    if not value:
        return value
    return os.path.abspath(value)


def apply_config(options, parser):
    """
    Apply a parsed configuration file to run options.

    ``varstosave`` entries are added to the requested list; every other key
    replaces the argument value. Values that cannot be parsed are logged and
    ignored.

    Args:
        options (RunOptions): Options built from function arguments
        parser (configparser.ConfigParser): Parsed configuration file

    Returns:
        RunOptions: The same options object, updated in place
    """
    if parser is None:
        return options

    if parser.has_section("calculatescenarioargs"):
        section = parser["calculatescenarioargs"]

        if "calcyears" in section:
            try:
                options.calcyears = parse_calcyears(_unquote(section["calcyears"]))
            except ValueError as e:
                logger.warning(f"Could not parse calcyears in configuration file: {e}. Continuing.")

        if "varstosave" in section:
            for name in split_names(_unquote(section["varstosave"])):
                if name not in options.varstosave:
                    options.varstosave.append(name)

        for key in _BOOLEAN_KEYS:
            if key in section:
                try:
                    setattr(options, key, section.getboolean(key))
                except ValueError as e:
                    logger.warning(f"Could not parse {key} in configuration file: {e}. Continuing.")

        for key in _STRING_KEYS:
            if key in section:
                setattr(options, key, _unquote(section[key]))

    if parser.has_section("solver") and "parameters" in parser["solver"]:
        options.solver_parameters.update(parse_solver_parameters(_unquote(parser["solver"]["parameters"])))

    if parser.has_section("includes"):
        section = parser["includes"]
        for key in ("beforescenariocalc", "afterscenariocalc", "customconstraints"):
            if key in section:
                setattr(options, key, _resolve_include(section[key]))

    return options
