# tests/conftest.py
"""
Shared fixtures: small synthetic scenario databases.

The base scenario has one region (R1), one fuel (ELC), one gas-fired
technology (GAS) and two time slices (DAY, NIGHT) of half a year each.
Demand is 10 per year, spread evenly over both slices, so the cheapest
plan builds 10 units of GAS capacity in the first year:

    capital 100 * 10 + variable 2 * 10 + fixed 1 * 10 = 1030 in the first year
    variable 2 * 10 + fixed 1 * 10                     =   30 in later years

Discount rate is zero and operational life is 3 years, so nothing is
salvaged at the end of a 2020-2022 run.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nemopy.database import connect, createnemodb

YEARS = (2020, 2021, 2022)


def insert(conn, table, columns, rows):
    """Insert rows into a table of a scenario database."""
    names = ", ".join(f'"{col}"' for col in columns)
    placeholders = ", ".join("?" for _ in columns)
    conn.executemany(f'INSERT INTO "{table}" ({names}) VALUES ({placeholders})', rows)


def write_base_scenario(path, years=YEARS, max_capacity=None, storage=False, min_capacity=None):
    """
    Write the single-technology scenario to ``path``.

    Args:
        path (str): Database file
        years (tuple): Scenario years
        max_capacity (dict): Optional TotalAnnualMaxCapacity of GAS by year
        storage (bool): Add a storage (STOR) with a charging (CHG) and discharging (DIS) technology
        min_capacity (dict): Optional TotalAnnualMinCapacity of GAS by year
    """
    createnemodb(path, defaultvals={"CapacityFactor": 1.0})
    conn = connect(path)
    try:
        with conn:
            technologies = ["GAS"] + (["CHG", "DIS"] if storage else [])
            insert(conn, "REGION", ["val"], [("R1",)])
            insert(conn, "FUEL", ["val"], [("ELC",)])
            insert(conn, "TECHNOLOGY", ["val"], [(t,) for t in technologies])
            insert(conn, "MODE_OF_OPERATION", ["val"], [("1",)])
            insert(conn, "YEAR", ["val"], [(str(y),) for y in years])
            insert(conn, "TIMESLICE", ["val"], [("DAY",), ("NIGHT",)])
            insert(conn, "TSGROUP1", ["name", "order", "multiplier"], [("Y", 1, 1)])
            insert(conn, "TSGROUP2", ["name", "order", "multiplier"], [("D", 1, 4380)])
            insert(conn, "LTsGroup", ["l", "lorder", "tg2", "tg1"], [("DAY", 1, "D", "Y"), ("NIGHT", 2, "D", "Y")])

            insert(conn, "YearSplit", ["l", "y", "val"], [(l, str(y), 0.5) for l in ("DAY", "NIGHT") for y in years])
            insert(conn, "DiscountRate", ["r", "val"], [("R1", 0.0)])
            insert(conn, "SpecifiedAnnualDemand", ["r", "f", "y", "val"], [("R1", "ELC", str(y), 10.0) for y in years])
            insert(conn, "SpecifiedDemandProfile", ["r", "f", "l", "y", "val"],
                   [("R1", "ELC", l, str(y), 0.5) for l in ("DAY", "NIGHT") for y in years])

            insert(conn, "OutputActivityRatio", ["r", "t", "f", "m", "y", "val"],
                   [("R1", "GAS", "ELC", "1", str(y), 1.0) for y in years])
            insert(conn, "CapacityToActivityUnit", ["r", "t", "val"], [("R1", t, 1.0) for t in technologies])
            insert(conn, "CapitalCost", ["r", "t", "y", "val"], [("R1", "GAS", str(y), 100.0) for y in years])
            insert(conn, "VariableCost", ["r", "t", "m", "y", "val"], [("R1", "GAS", "1", str(y), 2.0) for y in years])
            insert(conn, "FixedCost", ["r", "t", "y", "val"], [("R1", "GAS", str(y), 1.0) for y in years])
            insert(conn, "OperationalLife", ["r", "t", "val"], [("R1", t, 3) for t in technologies])

            if max_capacity:
                insert(conn, "TotalAnnualMaxCapacity", ["r", "t", "y", "val"],
                       [("R1", "GAS", str(y), v) for y, v in max_capacity.items()])
            if min_capacity:
                insert(conn, "TotalAnnualMinCapacity", ["r", "t", "y", "val"],
                       [("R1", "GAS", str(y), v) for y, v in min_capacity.items()])

            if storage:
                insert(conn, "STORAGE", ["val"], [("STOR",)])
                insert(conn, "InputActivityRatio", ["r", "t", "f", "m", "y", "val"],
                       [("R1", "CHG", "ELC", "1", str(y), 1.0) for y in years])
                insert(conn, "OutputActivityRatio", ["r", "t", "f", "m", "y", "val"],
                       [("R1", "DIS", "ELC", "1", str(y), 1.0) for y in years])
                insert(conn, "TechnologyToStorage", ["r", "t", "s", "m", "val"], [("R1", "CHG", "STOR", "1", 1.0)])
                insert(conn, "TechnologyFromStorage", ["r", "t", "s", "m", "val"], [("R1", "DIS", "STOR", "1", 1.0)])
                insert(conn, "OperationalLifeStorage", ["r", "s", "val"], [("R1", "STOR", 10)])
                insert(conn, "ResidualStorageCapacity", ["r", "s", "y", "val"],
                       [("R1", "STOR", str(y), 5.0) for y in years])
                insert(conn, "StorageLevelStart", ["r", "s", "val"], [("R1", "STOR", 2.0)])
    finally:
        conn.close()
    return path


@pytest.fixture
def scenario_db(tmp_path):
    """Path of the base scenario database."""
    return write_base_scenario(str(tmp_path / "base.sqlite"))


@pytest.fixture
def storage_db(tmp_path):
    """Path of the base scenario plus a storage."""
    return write_base_scenario(str(tmp_path / "storage.sqlite"), storage=True)


@pytest.fixture
def infeasible_db(tmp_path):
    """Base scenario whose GAS capacity is capped below demand in 2020."""
    return write_base_scenario(str(tmp_path / "infeasible.sqlite"), max_capacity={2020: 5.0})


@pytest.fixture
def empty_db(tmp_path):
    """Scenario database with the schema but no data."""
    path = str(tmp_path / "empty.sqlite")
    createnemodb(path)
    return path


@pytest.fixture
def no_config(tmp_path, monkeypatch):
    """Run from an empty directory so no nemo.ini is picked up."""
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir
