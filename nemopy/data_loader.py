"""
Data loading functions for scenario databases.

Dimensions become ordered lists, parameters become sparse DataFrames wrapped
in ``Parameter`` objects that fall back to the declared default, then to zero.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd

from .database import (PARAMETERS, STORAGE_FLAGS, check_referential_integrity, check_version, connect,
                       get_defaults, read_table, table_exists)
from .errors import DataIntegrityError
from .log import logmsg

logger = logging.getLogger(__name__)

YEARSPLIT_TOLERANCE = 1e-6


class Parameter:
    """
    Sparse parameter table with default-value fallback.

    Args:
        name (str): Table name
        dims (tuple): Subscript column names
        frame (pd.DataFrame): Explicit rows, subscript columns plus ``val``
        default (float): Declared default, None when the table has none
    """

    def __init__(self, name, dims, frame, default=None):
        self.name = name
        self.dims = tuple(dims)
        self.frame = frame.drop_duplicates(subset=list(self.dims), keep="last").reset_index(drop=True)
        self.default = default
        self._index = None

    def __repr__(self):
        return f"Parameter({self.name}, rows={len(self.frame)}, default={self.default})"

    def __len__(self):
        return len(self.frame)

    @property
    def fill(self):
        return 0.0 if self.default is None else self.default

    def has_values(self):
        """True when the parameter constrains anything (explicit rows or a default)."""
        return self.default is not None or len(self.frame) > 0

    def lookup(self, frame, column="val"):
        """
        Attach parameter values to ``frame`` (left join on the subscript columns).

        Missing combinations take the default, then zero.
        """
        values = self.frame.rename(columns={"val": column})
        joined = frame.merge(values, on=list(self.dims), how="left")
        joined[column] = joined[column].fillna(self.fill).astype(float)
        return joined

    def rows(self, frame, column="val"):
        """
        Attach values only where the parameter is defined (inner join, default expanded).

        Used for limits and targets, which constrain only where a value exists.
        """
        if self.default is not None:
            return self.lookup(frame, column)
        values = self.frame.rename(columns={"val": column})
        joined = frame.merge(values, on=list(self.dims), how="inner")
        joined[column] = joined[column].astype(float)
        return joined

    def value(self, *key):
        """Value for one subscript tuple."""
        if self._index is None:
            self._index = {tuple(row[:-1]): row[-1]
                           for row in self.frame[list(self.dims) + ["val"]].itertuples(index=False)}
        return float(self._index.get(tuple(key), self.fill))

    def restricted(self, years):
        """Copy of the parameter limited to rows in ``years``."""
        if "y" not in self.dims:
            return self
        return Parameter(self.name, self.dims, self.frame[self.frame["y"].isin(years)], self.default)


class ScenarioData:
    """In-memory scenario: ordered dimension sets and parameter tables."""

    def __init__(self, dbpath):
        self.dbpath = dbpath
        self.regions = []
        self.regiongroups = []
        self.technologies = []
        self.fuels = []
        self.emissions = []
        self.modes = []
        self.storages = []
        self.storage_flags = pd.DataFrame(columns=["s"] + list(STORAGE_FLAGS))
        self.timeslices = []
        self.years = []
        self.loaded_years = []
        self.nodes = pd.DataFrame(columns=["n", "r"])
        self.lines = pd.DataFrame()
        self.tsgroup1 = pd.DataFrame(columns=["name", "order", "multiplier"])
        self.tsgroup2 = pd.DataFrame(columns=["name", "order", "multiplier"])
        self.ltsgroup = pd.DataFrame(columns=["l", "lorder", "tg2", "tg1"])
        self.rrgroup = pd.DataFrame(columns=["rg", "r"])
        self.transmission_enabled = pd.DataFrame(columns=["r", "f", "y", "type"])
        self.params = {}

    def param(self, name):
        return self.params[name]

    @property
    def first_year(self):
        return self.years[0]

    def yearsplit(self, years=None):
        """Time slice widths as a frame (l, y, ys) for the given years."""
        years = self.loaded_years if years is None else years
        keys = cross_frame(l=self.timeslices, y=list(years))
        return self.params["YearSplit"].lookup(keys, "ys")

    def net_zero_storages(self, flag):
        """Storages with the net-zero ``flag`` (netzeroyear, netzerotg1 or netzerotg2) set."""
        flags = self.storage_flags
        return flags.loc[flags[flag].astype(bool), "s"].tolist()

    def transmission_years(self, years):
        enabled = self.transmission_enabled
        return enabled[enabled["y"].isin(years)]


def cross_frame(**dimensions):
    """Cartesian product of dimension lists as a DataFrame (column order as given)."""
    frame = pd.DataFrame({"_k": [0]})
    for name, values in dimensions.items():
        frame = frame.merge(pd.DataFrame({name: list(values), "_k": 0}), on="_k")
    return frame.drop(columns="_k").reset_index(drop=True)


def _to_years(series, table):
    try:
        return series.astype(str).str.strip().astype(np.int64)
    except ValueError as e:
        raise DataIntegrityError(f"{table} contains a year that is not an integer: {e}") from e


def _normalize(frame, dims, table):
    frame = frame.copy()
    for dim in dims:
        if dim == "y":
            frame[dim] = _to_years(frame[dim], table)
        else:
            frame[dim] = frame[dim].astype(str)
    frame["val"] = pd.to_numeric(frame["val"], errors="coerce")
    return frame.dropna(subset=["val"])


def _read_parameter_table(dbpath, table):
    """Read one parameter table on its own connection (runs in a worker thread)."""
    dims = PARAMETERS[table]
    conn = connect(dbpath)
    try:
        if not table_exists(conn, table):
            return table, pd.DataFrame(columns=list(dims) + ["val"])
        columns = ", ".join(f'"{dim}"' for dim in dims) + ", val"
        return table, read_table(conn, table, columns)
    finally:
        conn.close()


def _read_dimensions(conn, data):
    def values(table, key="val"):
        if not table_exists(conn, table):
            return []
        return [str(v) for v in read_table(conn, table, f'"{key}"')[key].dropna().tolist()]

    data.regions = values("REGION")
    data.regiongroups = values("REGIONGROUP")
    data.technologies = values("TECHNOLOGY")
    data.fuels = values("FUEL")
    data.emissions = values("EMISSION")
    data.modes = values("MODE_OF_OPERATION")
    data.storages = values("STORAGE")
    if data.storages:
        flags = read_table(conn, "STORAGE").rename(columns={"val": "s"})
        flags["s"] = flags["s"].astype(str)
        for flag, default in STORAGE_FLAGS.items():
            flags[flag] = flags[flag].fillna(default).astype(int) if flag in flags else default
        data.storage_flags = flags[["s"] + list(STORAGE_FLAGS)]
    data.timeslices = values("TIMESLICE")

    years = values("YEAR")
    try:
        parsed = sorted(int(year) for year in years)
    except ValueError as e:
        raise DataIntegrityError(f"YEAR contains a value that is not an integer: {e}") from e
    if len(set(parsed)) != len(parsed):
        raise DataIntegrityError("YEAR contains duplicate years")
    data.years = parsed

    if table_exists(conn, "TSGROUP1"):
        data.tsgroup1 = read_table(conn, "TSGROUP1", 'name, "order", multiplier')
    if table_exists(conn, "TSGROUP2"):
        data.tsgroup2 = read_table(conn, "TSGROUP2", 'name, "order", multiplier')
    if table_exists(conn, "LTsGroup"):
        data.ltsgroup = read_table(conn, "LTsGroup", "l, lorder, tg2, tg1")
    if table_exists(conn, "RRGroup"):
        data.rrgroup = read_table(conn, "RRGroup", "rg, r").astype(str)
    if table_exists(conn, "NODE"):
        data.nodes = read_table(conn, "NODE", "val as n, r").astype(str)
    if table_exists(conn, "TransmissionLine"):
        data.lines = read_table(conn, "TransmissionLine")
    if table_exists(conn, "TransmissionModelingEnabled"):
        enabled = read_table(conn, "TransmissionModelingEnabled", "r, f, y, type")
        enabled["r"] = enabled["r"].astype(str)
        enabled["f"] = enabled["f"].astype(str)
        enabled["y"] = _to_years(enabled["y"], "TransmissionModelingEnabled")
        enabled["type"] = enabled["type"].fillna(1).astype(int)
        data.transmission_enabled = enabled


def validate_yearsplit(data):
    """
    Check that time slice widths sum to 1 in every loaded year.

    Raises:
        DataIntegrityError: naming each offending year and its sum
    """
    if not data.timeslices or not data.loaded_years:
        return
    totals = data.yearsplit().groupby("y")["ys"].sum()
    bad = totals[(totals - 1.0).abs() > YEARSPLIT_TOLERANCE]
    if len(bad) > 0:
        details = ", ".join(f"{year}: {total:.6f}" for year, total in bad.items())
        raise DataIntegrityError(f"YearSplit must sum to 1 in each year; sums found {details}")


def load_scenario_data(dbpath, years=None, quiet=False, workers=None):
    """
    Load a scenario database into memory.

    Args:
        dbpath (str): Path to the scenario database
        years (iterable): Optional years to restrict year-subscripted rows to
        quiet (bool): Suppress low-priority status messages
        workers (int): Number of reader threads

    Returns:
        ScenarioData: Dimensions and parameters of the scenario
    """
    data = ScenarioData(dbpath)

    conn = connect(dbpath)
    try:
        check_version(conn, quiet)
        check_referential_integrity(conn)
        _read_dimensions(conn, data)
        defaults = get_defaults(conn)
    finally:
        conn.close()
    logmsg("Validated scenario database structure.", quiet)

    data.loaded_years = [year for year in data.years if years is None or year in set(years)]

    workers = workers or min(8, os.cpu_count() or 1)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        frames = dict(executor.map(lambda table: _read_parameter_table(dbpath, table), PARAMETERS))

    for table, frame in frames.items():
        dims = PARAMETERS[table]
        frame = _normalize(frame, dims, table)
        parameter = Parameter(table, dims, frame, defaults.get(table))
        if years is not None:
            parameter = parameter.restricted(data.loaded_years)
        data.params[table] = parameter

    validate_yearsplit(data)
    logmsg(f"Loaded {len(frames)} parameter tables for {len(data.loaded_years)} years.", quiet)
    return data
