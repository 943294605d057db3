"""
Scenario database structure and maintenance functions.

A scenario lives in a single SQLite file holding dimension tables, parameter
tables, a DefaultParams table and, after a calculation, one result table per
saved variable.
"""

import logging
import sqlite3
import threading
import time

import pandas as pd

from .errors import ConfigurationError, DataIntegrityError, SchemaError
from .log import logmsg

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 10

# Dimension abbreviation -> (table, key column)
DIMENSION_KEYS = {
    "r": ("REGION", "val"),
    "rr": ("REGION", "val"),
    "rg": ("REGIONGROUP", "val"),
    "t": ("TECHNOLOGY", "val"),
    "f": ("FUEL", "val"),
    "e": ("EMISSION", "val"),
    "m": ("MODE_OF_OPERATION", "val"),
    "s": ("STORAGE", "val"),
    "l": ("TIMESLICE", "val"),
    "y": ("YEAR", "val"),
    "n": ("NODE", "val"),
    "n1": ("NODE", "val"),
    "n2": ("NODE", "val"),
    "tg1": ("TSGROUP1", "name"),
    "tg2": ("TSGROUP2", "name"),
}

SIMPLE_DIMENSIONS = ("REGION", "REGIONGROUP", "TECHNOLOGY", "FUEL", "EMISSION", "MODE_OF_OPERATION",
                     "STORAGE", "TIMESLICE", "YEAR")

# Parameter table -> subscript columns
PARAMETERS = {
    "AccumulatedAnnualDemand": ("r", "f", "y"),
    "AnnualEmissionLimit": ("r", "e", "y"),
    "AnnualExogenousEmission": ("r", "e", "y"),
    "AvailabilityFactor": ("r", "t", "y"),
    "CapacityFactor": ("r", "t", "l", "y"),
    "CapacityOfOneTechnologyUnit": ("r", "t", "y"),
    "CapacityToActivityUnit": ("r", "t"),
    "CapitalCost": ("r", "t", "y"),
    "CapitalCostStorage": ("r", "s", "y"),
    "DepreciationMethod": ("r",),
    "DiscountRate": ("r",),
    "EmissionActivityRatio": ("r", "t", "e", "m", "y"),
    "EmissionsPenalty": ("r", "e", "y"),
    "FixedCost": ("r", "t", "y"),
    "InputActivityRatio": ("r", "t", "f", "m", "y"),
    "InterestRateStorage": ("r", "s", "y"),
    "InterestRateTechnology": ("r", "t", "y"),
    "MinShareProduction": ("r", "t", "f", "y"),
    "MinStorageCharge": ("r", "s", "y"),
    "MinimumUtilization": ("r", "t", "l", "y"),
    "ModelPeriodEmissionLimit": ("r", "e"),
    "ModelPeriodExogenousEmission": ("r", "e"),
    "NodalDistributionDemand": ("n", "f", "y"),
    "NodalDistributionTechnologyCapacity": ("n", "t", "y"),
    "OperationalLife": ("r", "t"),
    "OperationalLifeStorage": ("r", "s"),
    "OutputActivityRatio": ("r", "t", "f", "m", "y"),
    "REMinProductionTarget": ("r", "f", "y"),
    "REMinProductionTargetRG": ("rg", "f", "y"),
    "RETagTechnology": ("r", "t", "y"),
    "RampRate": ("r", "t", "y", "l"),
    "RampingReset": ("r",),
    "ReserveMargin": ("r", "f", "y"),
    "ReserveMarginTagTechnology": ("r", "t", "f", "y"),
    "ResidualCapacity": ("r", "t", "y"),
    "ResidualStorageCapacity": ("r", "s", "y"),
    "SpecifiedAnnualDemand": ("r", "f", "y"),
    "SpecifiedDemandProfile": ("r", "f", "l", "y"),
    "StorageFullLoadHours": ("r", "s", "y"),
    "StorageLevelStart": ("r", "s"),
    "StorageMaxChargeRate": ("r", "s"),
    "StorageMaxDischargeRate": ("r", "s"),
    "TechnologyFromStorage": ("r", "t", "s", "m"),
    "TechnologyToStorage": ("r", "t", "s", "m"),
    "TotalAnnualMaxCapacity": ("r", "t", "y"),
    "TotalAnnualMaxCapacityInvestment": ("r", "t", "y"),
    "TotalAnnualMaxCapacityInvestmentStorage": ("r", "s", "y"),
    "TotalAnnualMaxCapacityStorage": ("r", "s", "y"),
    "TotalAnnualMinCapacity": ("r", "t", "y"),
    "TotalAnnualMinCapacityInvestment": ("r", "t", "y"),
    "TotalAnnualMinCapacityInvestmentStorage": ("r", "s", "y"),
    "TotalAnnualMinCapacityStorage": ("r", "s", "y"),
    "TotalTechnologyAnnualActivityLowerLimit": ("r", "t", "y"),
    "TotalTechnologyAnnualActivityUpperLimit": ("r", "t", "y"),
    "TotalTechnologyModelPeriodActivityLowerLimit": ("r", "t"),
    "TotalTechnologyModelPeriodActivityUpperLimit": ("r", "t"),
    "TradeRoute": ("r", "rr", "f", "y"),
    "TransmissionCapacityToActivityUnit": ("r", "f"),
    "VariableCost": ("r", "t", "m", "y"),
    "YearSplit": ("l", "y"),
}

# Parameters whose declared default is never applied
IGNORED_DEFAULTS = ("InputActivityRatio", "OutputActivityRatio")

# Structural tables with foreign-key columns checked like parameters
STRUCTURE_KEYS = {
    "LTsGroup": ("l", "tg1", "tg2"),
    "RRGroup": ("rg", "r"),
    "TransmissionModelingEnabled": ("r", "f", "y"),
    "NODE": ("r",),
    "TransmissionLine": ("n1", "n2", "f"),
}

# Per-storage net-zero flags on STORAGE with their column defaults
STORAGE_FLAGS = {"netzeroyear": 1, "netzerotg1": 0, "netzerotg2": 0}

_STRUCTURE_DDL = {
    "Version": 'CREATE TABLE IF NOT EXISTS "Version" ("version" INTEGER, PRIMARY KEY("version"))',
    "DefaultParams":
        'CREATE TABLE IF NOT EXISTS "DefaultParams" ("id" INTEGER NOT NULL UNIQUE, "tablename" TEXT NOT NULL UNIQUE, '
        '"val" REAL NOT NULL, PRIMARY KEY("id"))',
    "STORAGE":
        'CREATE TABLE IF NOT EXISTS "STORAGE" ("val" TEXT NOT NULL UNIQUE, "desc" TEXT, '
        '"netzeroyear" INTEGER NOT NULL DEFAULT 1, "netzerotg1" INTEGER NOT NULL DEFAULT 0, '
        '"netzerotg2" INTEGER NOT NULL DEFAULT 0, PRIMARY KEY("val"))',
    "TSGROUP1":
        'CREATE TABLE IF NOT EXISTS "TSGROUP1" ("name" TEXT NOT NULL UNIQUE, "desc" TEXT, "order" INTEGER NOT NULL UNIQUE, '
        '"multiplier" REAL NOT NULL DEFAULT 1, PRIMARY KEY("name"))',
    "TSGROUP2":
        'CREATE TABLE IF NOT EXISTS "TSGROUP2" ("name" TEXT NOT NULL UNIQUE, "desc" TEXT, "order" INTEGER NOT NULL UNIQUE, '
        '"multiplier" REAL NOT NULL DEFAULT 1, PRIMARY KEY("name"))',
    "LTsGroup":
        'CREATE TABLE IF NOT EXISTS "LTsGroup" ("id" INTEGER NOT NULL UNIQUE, "l" TEXT UNIQUE, "lorder" INTEGER, '
        '"tg2" TEXT, "tg1" TEXT, PRIMARY KEY("id"), FOREIGN KEY("l") REFERENCES "TIMESLICE"("val"), '
        'FOREIGN KEY("tg1") REFERENCES "TSGROUP1"("name"), FOREIGN KEY("tg2") REFERENCES "TSGROUP2"("name"))',
    "RRGroup":
        'CREATE TABLE IF NOT EXISTS "RRGroup" ("id" INTEGER NOT NULL UNIQUE, "rg" TEXT, "r" TEXT, PRIMARY KEY("id"), '
        'FOREIGN KEY("rg") REFERENCES "REGIONGROUP"("val"), FOREIGN KEY("r") REFERENCES "REGION"("val"))',
    "NODE":
        'CREATE TABLE IF NOT EXISTS "NODE" ("val" TEXT NOT NULL UNIQUE, "desc" TEXT, "r" TEXT, PRIMARY KEY("val"), '
        'FOREIGN KEY("r") REFERENCES "REGION"("val"))',
    "TransmissionLine":
        'CREATE TABLE IF NOT EXISTS "TransmissionLine" ("id" TEXT NOT NULL UNIQUE, "desc" TEXT, "n1" TEXT, "n2" TEXT, '
        '"f" TEXT, "maxflow" REAL, "reactance" REAL, "yconstruction" INTEGER, "capitalcost" REAL, "fixedcost" REAL, '
        '"variablecost" REAL, "operationallife" INTEGER NOT NULL, "efficiency" REAL NOT NULL DEFAULT 1, '
        '"interestrate" REAL, PRIMARY KEY("id"), FOREIGN KEY("n1") REFERENCES "NODE"("val"), '
        'FOREIGN KEY("n2") REFERENCES "NODE"("val"), FOREIGN KEY("f") REFERENCES "FUEL"("val"))',
    "TransmissionModelingEnabled":
        'CREATE TABLE IF NOT EXISTS "TransmissionModelingEnabled" ("id" INTEGER NOT NULL UNIQUE, "r" TEXT, "f" TEXT, '
        '"y" TEXT, "type" INTEGER DEFAULT 1, PRIMARY KEY("id"), FOREIGN KEY("r") REFERENCES "REGION"("val"), '
        'FOREIGN KEY("f") REFERENCES "FUEL"("val"), FOREIGN KEY("y") REFERENCES "YEAR"("val"))',
}

# Tables scaled by convertscenariounits, by unit of measure
UNIT_TABLES = {
    "energy": (
        "AccumulatedAnnualDemand", "ResidualStorageCapacity", "SpecifiedAnnualDemand", "StorageLevelStart",
        "StorageMaxChargeRate", "StorageMaxDischargeRate", "TotalAnnualMaxCapacityStorage",
        "TotalAnnualMaxCapacityInvestmentStorage", "TotalAnnualMinCapacityStorage",
        "TotalAnnualMinCapacityInvestmentStorage", "TotalTechnologyAnnualActivityLowerLimit",
        "TotalTechnologyAnnualActivityUpperLimit", "TotalTechnologyModelPeriodActivityLowerLimit",
        "TotalTechnologyModelPeriodActivityUpperLimit", "TransmissionCapacityToActivityUnit",
        "vaccumulatednewstoragecapacity", "vdemandnn", "vnewstoragecapacity", "vproductionannualnn",
        "vproductionbytechnology", "vproductionbytechnologyannual", "vproductionnn", "vrateofactivity",
        "vrateofactivitynodal", "vrateofdemand", "vrateofproduction", "vrateofproductionbytechnology",
        "vrateofproductionbytechnologybymode", "vrateofproductionnodal", "vrateofstoragechargenn",
        "vrateofstoragedischargenn", "vrateoftotalactivity", "vrateofuse", "vrateofusebytechnology",
        "vrateofusebytechnologybymode", "vrateofusenodal", "vstorageleveltsend", "vstorageleveltsgroup1end",
        "vstorageleveltsgroup1start", "vstorageleveltsgroup2end", "vstorageleveltsgroup2start",
        "vstoragelevelyearend", "vstoragelowerlimit", "vstorageupperlimit", "vtotalannualtechnologyactivitybymode",
        "vtotalreproductionannual", "vtotaltechnologyannualactivity", "vtotaltechnologymodelperiodactivity",
        "vtrade", "vtradeannual", "vuseannualnn", "vusebytechnology", "vusebytechnologyannual", "vusenn",
    ),
    "power": (
        "CapacityOfOneTechnologyUnit", "ResidualCapacity", "TotalAnnualMaxCapacity",
        "TotalAnnualMaxCapacityInvestment", "TotalAnnualMinCapacity", "TotalAnnualMinCapacityInvestment",
        "vaccumulatednewcapacity", "vnewcapacity", "vtotalcapacityannual",
    ),
    "emissions": (
        "AnnualEmissionLimit", "AnnualExogenousEmission", "ModelPeriodEmissionLimit", "ModelPeriodExogenousEmission",
        "vannualemissions", "vannualtechnologyemission", "vannualtechnologyemissionbymode", "vmodelperiodemissions",
    ),
    "cost": (
        "vannualfixedoperatingcost", "vannualtechnologyemissionspenalty",
        "vannualtechnologyemissionspenaltybyemission", "vannualvariableoperatingcost", "vcapitalinvestment",
        "vcapitalinvestmentstorage", "vcapitalinvestmenttransmission", "vdiscountedcapitalinvestment",
        "vdiscountedcapitalinvestmentstorage", "vdiscountedcapitalinvestmenttransmission",
        "vdiscountedoperatingcost", "vdiscountedoperatingcosttransmission", "vdiscountedsalvagevalue",
        "vdiscountedsalvagevaluestorage", "vdiscountedsalvagevaluetransmission",
        "vdiscountedtechnologyemissionspenalty", "vmodelperiodcostbyregion", "voperatingcost",
        "voperatingcosttransmission", "vsalvagevalue", "vsalvagevaluestorage", "vsalvagevaluetransmission",
        "vtotaldiscountedcost", "vtotaldiscountedcostbytechnology", "vtotaldiscountedstoragecost",
        "vtotaldiscountedtransmissioncostbyregion",
    ),
}

# Tables whose unit is a ratio of two units: (numerator, denominator)
UNIT_RATIOS = {
    "CapacityToActivityUnit": ("energy", "power"),
    "CapitalCost": ("cost", "power"),
    "FixedCost": ("cost", "power"),
    "CapitalCostStorage": ("cost", "energy"),
    "VariableCost": ("cost", "energy"),
    "EmissionActivityRatio": ("emissions", "energy"),
    "EmissionsPenalty": ("cost", "emissions"),
}

RESULT_STATUS_TABLE = "solvestatus"

write_lock = threading.RLock()


def connect(dbpath, timeout=30.0):
    """Open a connection to a scenario database."""
    return sqlite3.connect(dbpath, timeout=timeout)


def is_locked_error(error):
    return isinstance(error, sqlite3.OperationalError) and "locked" in str(error).lower()


def retry_on_lock(func, *args, attempts=20, delay=0.25, **kwargs):
    """
    Call ``func`` holding the write lock, retrying while SQLite reports a locked database.

    Args:
        func (callable): Write operation
        attempts (int): Maximum number of attempts
        delay (float): Initial wait between attempts in seconds, doubled up to 5 s

    Returns:
        Whatever ``func`` returns
    """
    wait = delay
    for attempt in range(1, attempts + 1):
        try:
            with write_lock:
                return func(*args, **kwargs)
        except sqlite3.OperationalError as e:
            if not is_locked_error(e) or attempt == attempts:
                raise
            logger.debug(f"Database locked, retrying in {wait:.2f} s (attempt {attempt} of {attempts})")
            time.sleep(wait)
            wait = min(wait * 2, 5.0)


def table_exists(conn, table):
    row = conn.execute("select count(*) from sqlite_master where type in ('table', 'view') and name = ?",
                       (table,)).fetchone()
    return row[0] > 0


def read_table(conn, table, columns="*"):
    """Read a whole table into a DataFrame."""
    return pd.read_sql_query(f'select {columns} from "{table}"', conn)


def _dimension_ddl(table):
    if table in _STRUCTURE_DDL:
        return _STRUCTURE_DDL[table]
    return f'CREATE TABLE IF NOT EXISTS "{table}" ("val" TEXT NOT NULL UNIQUE, "desc" TEXT, PRIMARY KEY("val"))'


def _parameter_ddl(table):
    dims = PARAMETERS[table]
    columns = ", ".join(f'"{dim}" TEXT' for dim in dims)
    foreign_keys = "".join(
        f', FOREIGN KEY("{dim}") REFERENCES "{DIMENSION_KEYS[dim][0]}"("{DIMENSION_KEYS[dim][1]}")' for dim in dims)
    return (f'CREATE TABLE IF NOT EXISTS "{table}" ("id" INTEGER NOT NULL UNIQUE, {columns}, '
            f'"val" REAL, PRIMARY KEY("id"){foreign_keys})')


def createnemodb(path, defaultvals=None):
    """
    Create an empty scenario database with the current schema.

    Args:
        path (str): Path of the SQLite file to create (existing tables are kept)
        defaultvals (dict): Optional mapping of parameter table names to default values
    """
    conn = connect(path)
    try:
        with conn:
            for table in SIMPLE_DIMENSIONS:
                conn.execute(_dimension_ddl(table))
            for ddl in _STRUCTURE_DDL.values():
                conn.execute(ddl)
            for table in PARAMETERS:
                conn.execute(_parameter_ddl(table))
            conn.execute('DELETE FROM "Version"')
            conn.execute('INSERT INTO "Version" ("version") VALUES (?)', (SCHEMA_VERSION,))
        for table, val in (defaultvals or {}).items():
            setparamdefault(conn, table, val)
    finally:
        conn.close()

    logger.info(f"✓ Created scenario database {path}")


def setparamdefault(conn, table, val):
    """
    Set the scenario-wide default value of a parameter table.

    Args:
        conn (sqlite3.Connection): Open scenario database
        table (str): Parameter table name
        val (float): Default value
    """
    if table not in PARAMETERS:
        raise ConfigurationError(f"{table} is not a parameter table and cannot have a default value")

    def _write():
        with conn:
            conn.execute('DELETE FROM "DefaultParams" WHERE tablename = ?', (table,))
            conn.execute('INSERT INTO "DefaultParams" ("tablename", "val") VALUES (?, ?)', (table, float(val)))

    retry_on_lock(_write)


def convertscenariounits(dbpath, energy_multiplier=1.0, power_multiplier=1.0, cost_multiplier=1.0,
                         emissions_multiplier=1.0, quiet=False):
    """
    Convert the units of measure of a scenario database in place.

    Parameter and result tables denominated in energy, power, cost or
    emissions units are multiplied by the matching multiplier; tables whose
    unit is a ratio (cost per unit of power, energy per unit of power, ...)
    by the ratio of multipliers. Declared defaults in DefaultParams are
    converted too. Energy and power units are assumed to be the same in
    every region.

    Args:
        dbpath (str): Path to the scenario database
        energy_multiplier (float): Factor applied to energy quantities
        power_multiplier (float): Factor applied to power quantities
        cost_multiplier (float): Factor applied to costs
        emissions_multiplier (float): Factor applied to emissions
        quiet (bool): Suppress low-priority status messages
    """
    multipliers = {"energy": energy_multiplier, "power": power_multiplier, "cost": cost_multiplier,
                   "emissions": emissions_multiplier}
    for kind, multiplier in multipliers.items():
        if not multiplier > 0:
            raise ConfigurationError(f"{kind}_multiplier must be positive, got {multiplier}")

    factors = {table: multipliers[kind] for kind, tables in UNIT_TABLES.items() for table in tables}
    factors.update({table: multipliers[numerator] / multipliers[denominator]
                    for table, (numerator, denominator) in UNIT_RATIOS.items()})

    conn = connect(dbpath)
    try:
        tables = {row[0] for row in conn.execute("select name from sqlite_master where type = 'table'")}

        def _write():
            with conn:
                conn.execute("BEGIN")
                for table, factor in factors.items():
                    if table not in tables or factor == 1.0:
                        continue
                    conn.execute(f'UPDATE "{table}" SET val = val * ?', (factor,))
                    if "DefaultParams" in tables:
                        conn.execute('UPDATE "DefaultParams" SET val = val * ? WHERE tablename = ?', (factor, table))

        retry_on_lock(_write)
    finally:
        conn.close()
    logmsg(f"Converted units in database at {dbpath}.", quiet, logger)


def _read_version(conn):
    if not table_exists(conn, "Version"):
        raise SchemaError("Scenario database has no Version table; it was not created for this engine")

    row = conn.execute('select max("version") from "Version"').fetchone()
    version = row[0] if row else None
    if version is None:
        raise SchemaError("Scenario database has an empty Version table")
    version = int(version)
    if version > SCHEMA_VERSION or (version < SCHEMA_VERSION and version not in _UPGRADES):
        raise SchemaError(f"Scenario database version is {version}; this engine supports versions "
                          f"{min(_UPGRADES)} to {SCHEMA_VERSION}")
    return version


def check_version(conn, quiet=True):
    """
    Return the schema version, upgrading a database of an earlier version first.

    Raises:
        SchemaError: When the database has no version, or one newer or older than any this engine knows
    """
    if _read_version(conn) < SCHEMA_VERSION:
        upgrade_database(conn, quiet)
    return SCHEMA_VERSION


def upgrade_database(conn, quiet=False):
    """
    Bring a scenario database to the current schema version one version at a time.

    Each step runs in its own transaction and records the version it
    reaches, so an interrupted upgrade resumes where it stopped.

    Returns:
        int: The schema version of the database afterwards
    """
    version = _read_version(conn)
    if version == SCHEMA_VERSION:
        return version

    # Views over renamed tables would block the rebuilds below
    drop_default_views(conn)

    def _step(step, target):
        with conn:
            conn.execute("BEGIN")
            step(conn)
            conn.execute('UPDATE "Version" SET "version" = ?', (target,))

    while version < SCHEMA_VERSION:
        retry_on_lock(_step, _UPGRADES[version], version + 1)
        version += 1
        logmsg(f"Upgraded database to version {version}.", quiet, logger)
    return version


def _columns(conn, table):
    return [row[1] for row in conn.execute(f'PRAGMA table_info("{table}")').fetchall()]


def _rebuild_table(conn, table, ddl):
    """Recreate ``table`` from ``ddl``, keeping the columns the old and new layouts share."""
    old_columns = _columns(conn, table)
    conn.execute(f'ALTER TABLE "{table}" RENAME TO "{table}_old"')
    conn.execute(ddl)
    shared = ", ".join(f'"{col}"' for col in _columns(conn, table) if col in old_columns)
    conn.execute(f'INSERT INTO "{table}" ({shared}) SELECT {shared} FROM "{table}_old"')
    conn.execute(f'DROP TABLE "{table}_old"')


def _upgrade_table(conn, table, ddl, column=None, removed=None):
    """Create ``table``, or rebuild it when it lacks ``column`` or still has ``removed``."""
    if not table_exists(conn, table):
        conn.execute(ddl)
        return
    columns = _columns(conn, table)
    if (column and column not in columns) or (removed and removed in columns):
        _rebuild_table(conn, table, ddl)


def _replace_parameter(conn, table, frame):
    """Replace a parameter table with the rows of ``frame`` in the current layout."""
    dims = PARAMETERS[table]
    conn.execute(f'DROP TABLE IF EXISTS "{table}"')
    conn.execute(_parameter_ddl(table))
    names = ", ".join(f'"{col}"' for col in dims + ("val",))
    placeholders = ", ".join("?" for _ in dims + ("val",))
    rows = frame[list(dims) + ["val"]].itertuples(index=False, name=None)
    conn.executemany(f'INSERT INTO "{table}" ({names}) VALUES ({placeholders})', list(rows))


def _with_defaults(conn, table, dims):
    """Rows of a table in a superseded layout, expanded over ``dims`` when it has a declared default."""
    columns = list(dims) + ["val"]
    if table_exists(conn, table):
        names = ", ".join(f'"{col}"' for col in columns)
        frame = pd.read_sql_query(f'select {names} from "{table}"', conn)
    else:
        frame = pd.DataFrame(columns=columns)
    frame = frame.astype({dim: str for dim in dims})

    row = None
    if table_exists(conn, "DefaultParams"):
        row = conn.execute('select val from "DefaultParams" where tablename = ?', (table,)).fetchone()
    if row is None:
        return frame

    keys = pd.DataFrame({"_k": [0]})
    for dim in dims:
        dim_table, key = DIMENSION_KEYS[dim]
        members = pd.read_sql_query(f'select "{key}" as "{dim}" from "{dim_table}"', conn).astype(str)
        keys = keys.merge(members.assign(_k=0), on="_k")
    keys = keys.drop(columns="_k").merge(frame, on=list(dims), how="left")
    keys["val"] = keys["val"].fillna(float(row[0]))
    return keys


def _v1_to_v2(conn):
    """Per-storage net-zero flags."""
    conn.execute(_STRUCTURE_DDL["STORAGE"])
    columns = _columns(conn, "STORAGE")
    for flag, default in STORAGE_FLAGS.items():
        if flag not in columns:
            conn.execute(f'ALTER TABLE "STORAGE" ADD COLUMN "{flag}" INTEGER NOT NULL DEFAULT {default}')


def _v2_to_v3(conn):
    """Transmission line efficiency."""
    _upgrade_table(conn, "TransmissionLine", _STRUCTURE_DDL["TransmissionLine"], column="efficiency")


def _v3_to_v4(conn):
    """Regional TransmissionCapacityToActivityUnit; old values apply to every region."""
    table = "TransmissionCapacityToActivityUnit"
    if not table_exists(conn, table):
        conn.execute(_parameter_ddl(table))
        return
    if "r" in _columns(conn, table):
        return
    conn.execute(f'ALTER TABLE "{table}" RENAME TO "{table}_old"')
    conn.execute(_parameter_ddl(table))
    conn.execute(f'INSERT INTO "{table}" ("r", "f", "val") SELECT r."val", t."f", t."val" '
                 f'FROM "{table}_old" t, "REGION" r')
    conn.execute(f'DROP TABLE "{table}_old"')


def _v4_to_v5(conn):
    """Ramp rates."""
    for table in ("RampRate", "RampingReset"):
        conn.execute(_parameter_ddl(table))


def _v5_to_v6(conn):
    """Minimum utilization."""
    conn.execute(_parameter_ddl("MinimumUtilization"))


def _v6_to_v7(conn):
    """Interest rates replace technology and storage discount rates."""
    for table in ("DiscountRateStorage", "DiscountRateTechnology"):
        conn.execute(f'DROP TABLE IF EXISTS "{table}"')
    for table in ("InterestRateStorage", "InterestRateTechnology"):
        conn.execute(_parameter_ddl(table))
    _upgrade_table(conn, "TransmissionLine", _STRUCTURE_DDL["TransmissionLine"], column="interestrate",
                   removed="discountrate")


def _v7_to_v8(conn):
    """Fuel-specific renewable targets replace RETagFuel; minimum production shares."""
    if table_exists(conn, "REMinProductionTarget") and "f" not in _columns(conn, "REMinProductionTarget"):
        targets = _with_defaults(conn, "REMinProductionTarget", ("r", "y"))
        tags = _with_defaults(conn, "RETagFuel", ("r", "f", "y"))
        tags = tags[tags["val"] == 1][["r", "f", "y"]]
        _replace_parameter(conn, "REMinProductionTarget", targets[targets["val"] > 0].merge(tags, on=["r", "y"]))
    conn.execute('DROP TABLE IF EXISTS "RETagFuel"')
    if table_exists(conn, "DefaultParams"):
        conn.execute('DELETE FROM "DefaultParams" WHERE tablename in (\'REMinProductionTarget\', \'RETagFuel\')')
    conn.execute(_parameter_ddl("MinShareProduction"))


def _v8_to_v9(conn):
    """Region groups and their renewable targets."""
    conn.execute(_dimension_ddl("REGIONGROUP"))
    conn.execute(_STRUCTURE_DDL["RRGroup"])
    conn.execute(_parameter_ddl("REMinProductionTargetRG"))


def _v9_to_v10(conn):
    """Fuel-specific reserve margins replace ReserveMarginTagFuel."""
    if table_exists(conn, "ReserveMargin") and "f" not in _columns(conn, "ReserveMargin"):
        tags = _with_defaults(conn, "ReserveMarginTagFuel", ("r", "f", "y"))
        tags = tags[tags["val"] == 1]
        # Only a single tagged fuel per region and year can be carried over
        fuels = tags[tags.groupby(["r", "y"])["f"].transform("count") == 1][["r", "f", "y"]]

        margins = _with_defaults(conn, "ReserveMargin", ("r", "y"))
        technologies = _with_defaults(conn, "ReserveMarginTagTechnology", ("r", "t", "y"))
        migrated = margins.merge(fuels, on=["r", "y"])
        if len(migrated) != len(margins):
            logger.warning("❌ Could not migrate some reserve margin data when upgrading to version 10; "
                           "check ReserveMargin and ReserveMarginTagTechnology")
        _replace_parameter(conn, "ReserveMargin", migrated)
        _replace_parameter(conn, "ReserveMarginTagTechnology",
                           technologies[technologies["val"] > 0].merge(fuels, on=["r", "y"]))
    conn.execute('DROP TABLE IF EXISTS "ReserveMarginTagFuel"')
    if table_exists(conn, "DefaultParams"):
        conn.execute('DELETE FROM "DefaultParams" WHERE tablename in '
                     '(\'ReserveMargin\', \'ReserveMarginTagTechnology\', \'ReserveMarginTagFuel\')')


# Schema version -> step to the next version
_UPGRADES = {
    1: _v1_to_v2,
    2: _v2_to_v3,
    3: _v3_to_v4,
    4: _v4_to_v5,
    5: _v5_to_v6,
    6: _v6_to_v7,
    7: _v7_to_v8,
    8: _v8_to_v9,
    9: _v9_to_v10,
}


def check_referential_integrity(conn):
    """
    Verify that every subscript value in parameter and structural tables is a dimension member.

    Raises:
        DataIntegrityError: listing each (table, column, undefined values)
    """
    tables = list(PARAMETERS.items()) + list(STRUCTURE_KEYS.items())
    problems = []

    for table, dims in tables:
        if not table_exists(conn, table):
            continue
        for dim in dims:
            dim_table, key = DIMENSION_KEYS[dim]
            if not table_exists(conn, dim_table):
                continue
            rows = conn.execute(
                f'select distinct p."{dim}" from "{table}" p where p."{dim}" is not null '
                f'and p."{dim}" not in (select d."{key}" from "{dim_table}" d)').fetchall()
            if rows:
                undefined = ", ".join(sorted(str(row[0]) for row in rows))
                problems.append(f"{table}.{dim} references undefined {dim_table} members: {undefined}")

    if problems:
        raise DataIntegrityError("; ".join(problems))


def get_defaults(conn):
    """Return declared parameter defaults as a dict (IAR/OAR defaults are dropped)."""
    if not table_exists(conn, "DefaultParams"):
        return {}
    frame = read_table(conn, "DefaultParams", 'tablename, val')
    return {row.tablename: float(row.val) for row in frame.itertuples()
            if row.tablename in PARAMETERS and row.tablename not in IGNORED_DEFAULTS}


def create_default_views(conn, tables=None):
    """
    Create transient ``<table>_def`` views showing default values, plus subscript indices.

    For a table with a declared default the view cross-joins its dimension
    tables and fills missing rows with the default; otherwise the view shows
    the stored rows.

    The calculation itself does not read these views: load_scenario_data
    applies defaults in memory. They are there for external readers such as
    include scripts, custom constraint plugins and reporting queries while a
    calculation runs, and drop_default_views removes them when it ends.
    """
    defaults = get_defaults(conn)
    tables = [table for table in (tables or PARAMETERS) if table_exists(conn, table)]

    def _create():
        with conn:
            for table in tables:
                dims = PARAMETERS[table]
                conn.execute(f'DROP VIEW IF EXISTS "{table}_def"')
                cols = ", ".join(f'"{dim}"' for dim in dims)
                if table in defaults:
                    selects = ", ".join(f'd{i}."{DIMENSION_KEYS[dim][1]}" as "{dim}"' for i, dim in enumerate(dims))
                    joins = " cross join ".join(f'"{DIMENSION_KEYS[dim][0]}" d{i}' for i, dim in enumerate(dims))
                    conditions = " and ".join(f'p."{dim}" = d{i}."{DIMENSION_KEYS[dim][1]}"'
                                              for i, dim in enumerate(dims))
                    conn.execute(f'CREATE VIEW "{table}_def" AS select {selects}, '
                                 f'ifnull(p.val, {defaults[table]}) as val from {joins} '
                                 f'left join "{table}" p on {conditions}')
                else:
                    conn.execute(f'CREATE VIEW "{table}_def" AS select {cols}, val from "{table}"')
                conn.execute(f'CREATE INDEX IF NOT EXISTS "{table}_nemo_idx" ON "{table}" ({cols})')

    retry_on_lock(_create)
    logger.debug(f"Created {len(tables)} parameter views")


def drop_default_views(conn):
    """Drop the transient views and indices created by create_default_views."""
    def _drop():
        with conn:
            for (name, kind) in conn.execute(
                    "select name, type from sqlite_master where (type = 'view' and name glob '*_def') "
                    "or (type = 'index' and name glob '*_nemo_idx')").fetchall():
                conn.execute(f'DROP {"VIEW" if kind == "view" else "INDEX"} IF EXISTS "{name}"')

    retry_on_lock(_drop)


def result_tables(conn):
    """Names of result tables (tables whose name starts with a lowercase v)."""
    rows = conn.execute("select name from sqlite_master where type = 'table' and name glob 'v*'").fetchall()
    return [row[0] for row in rows]


def dropresulttables(conn, quiet=True):
    """
    Drop all result tables, the solve status table and stored query statistics.
    """
    def _drop():
        with conn:
            for table in result_tables(conn) + [RESULT_STATUS_TABLE]:
                conn.execute(f'DROP TABLE IF EXISTS "{table}"')
            if table_exists(conn, "sqlite_stat1"):
                conn.execute("DELETE FROM sqlite_stat1")

    retry_on_lock(_drop)
    if not quiet:
        logger.info("Dropped pre-existing result tables from database.")
