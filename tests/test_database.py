"""
Tests for scenario database structure checks and maintenance.
"""

import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from conftest import insert
from nemopy.database import (SCHEMA_VERSION, check_referential_integrity, check_version, connect, convertscenariounits,
                             create_default_views, createnemodb, drop_default_views, dropresulttables, get_defaults,
                             read_table, result_tables, retry_on_lock, setparamdefault, table_exists,
                             upgrade_database)
from nemopy.errors import ConfigurationError, DataIntegrityError, SchemaError


class TestCreateDatabase:
    """Test database creation and versioning"""

    def test_created_database_has_current_version(self, empty_db):
        conn = connect(empty_db)
        try:
            assert check_version(conn) == SCHEMA_VERSION
            assert table_exists(conn, "YearSplit")
            assert table_exists(conn, "TransmissionLine")
        finally:
            conn.close()

    def test_default_values_are_written(self, tmp_path):
        path = str(tmp_path / "defaults.sqlite")
        createnemodb(path, defaultvals={"CapacityFactor": 1.0, "DiscountRate": 0.05})
        conn = connect(path)
        try:
            assert get_defaults(conn) == {"CapacityFactor": 1.0, "DiscountRate": 0.05}
        finally:
            conn.close()

    def test_activity_ratio_defaults_are_ignored(self, empty_db):
        conn = connect(empty_db)
        try:
            setparamdefault(conn, "OutputActivityRatio", 1.0)
            assert "OutputActivityRatio" not in get_defaults(conn)
        finally:
            conn.close()

    def test_setparamdefault_rejects_unknown_table(self, empty_db):
        conn = connect(empty_db)
        try:
            with pytest.raises(ConfigurationError):
                setparamdefault(conn, "NotAParameter", 1.0)
        finally:
            conn.close()

    def test_newer_version_raises(self, empty_db):
        conn = connect(empty_db)
        try:
            with conn:
                conn.execute('UPDATE "Version" SET version = 11')
            with pytest.raises(SchemaError, match="supports versions 1 to 10"):
                check_version(conn)
        finally:
            conn.close()

    def test_unknown_older_version_raises(self, empty_db):
        conn = connect(empty_db)
        try:
            with conn:
                conn.execute('UPDATE "Version" SET version = 0')
            with pytest.raises(SchemaError, match="version is 0"):
                check_version(conn)
        finally:
            conn.close()

    def test_missing_version_table_raises(self, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "plain.sqlite"))
        try:
            with pytest.raises(SchemaError):
                check_version(conn)
        finally:
            conn.close()


class TestReferentialIntegrity:
    """Test detection of parameter rows referencing undefined members"""

    def test_valid_scenario_passes(self, scenario_db):
        conn = connect(scenario_db)
        try:
            check_referential_integrity(conn)
        finally:
            conn.close()

    def test_undefined_members_are_listed(self, scenario_db):
        conn = connect(scenario_db)
        try:
            with conn:
                insert(conn, "CapitalCost", ["r", "t", "y", "val"], [("R1", "COAL", "2020", 5.0)])
            with pytest.raises(DataIntegrityError) as excinfo:
                check_referential_integrity(conn)
            assert "CapitalCost.t" in str(excinfo.value)
            assert "COAL" in str(excinfo.value)
        finally:
            conn.close()


class TestViewsAndResults:
    """Test transient views and result table maintenance"""

    def test_default_view_fills_missing_rows(self, scenario_db):
        conn = connect(scenario_db)
        try:
            create_default_views(conn, ["CapacityFactor"])
            frame = read_table(conn, "CapacityFactor_def")
            # 1 region x 1 technology x 2 slices x 3 years, all at the default
            assert len(frame) == 6
            assert (frame["val"] == 1.0).all()
            drop_default_views(conn)
            assert not table_exists(conn, "CapacityFactor_def")
        finally:
            conn.close()

    def test_dropresulttables_removes_only_results(self, scenario_db):
        conn = connect(scenario_db)
        try:
            with conn:
                conn.execute('CREATE TABLE "vnewcapacity" ("r" TEXT, "val" REAL)')
                conn.execute('CREATE TABLE "solvestatus" ("group" INTEGER)')
            assert result_tables(conn) == ["vnewcapacity"]
            dropresulttables(conn)
            assert result_tables(conn) == []
            assert not table_exists(conn, "solvestatus")
            assert table_exists(conn, "VariableCost")
        finally:
            conn.close()


class TestRetryOnLock:
    """Test retrying writes on a locked database"""

    @patch("nemopy.database.time.sleep")
    def test_retries_until_success(self, mock_sleep):
        func = MagicMock(side_effect=[sqlite3.OperationalError("database is locked"), "done"])
        assert retry_on_lock(func, 1, key="x") == "done"
        assert func.call_count == 2
        func.assert_called_with(1, key="x")
        mock_sleep.assert_called_once()

    @patch("nemopy.database.time.sleep")
    def test_other_errors_are_raised(self, mock_sleep):
        func = MagicMock(side_effect=sqlite3.OperationalError("no such table: x"))
        with pytest.raises(sqlite3.OperationalError):
            retry_on_lock(func)
        mock_sleep.assert_not_called()

    @patch("nemopy.database.time.sleep")
    def test_gives_up_after_attempts(self, mock_sleep):
        func = MagicMock(side_effect=sqlite3.OperationalError("database is locked"))
        with pytest.raises(sqlite3.OperationalError):
            retry_on_lock(func, attempts=3)
        assert func.call_count == 3


class TestUpgradeDatabase:
    """Test bringing databases of earlier schema versions to the current one"""

    def test_version_9_reserve_margin_moves_to_tagged_fuel(self, empty_db):
        conn = connect(empty_db)
        try:
            with conn:
                conn.execute('DROP TABLE "ReserveMargin"')
                conn.execute('DROP TABLE "ReserveMarginTagTechnology"')
                conn.execute('CREATE TABLE "ReserveMargin" ("id" INTEGER PRIMARY KEY, "r" TEXT, "y" TEXT, "val" REAL)')
                conn.execute('CREATE TABLE "ReserveMarginTagTechnology" '
                             '("id" INTEGER PRIMARY KEY, "r" TEXT, "t" TEXT, "y" TEXT, "val" REAL)')
                conn.execute('CREATE TABLE "ReserveMarginTagFuel" '
                             '("id" INTEGER PRIMARY KEY, "r" TEXT, "f" TEXT, "y" TEXT, "val" REAL)')
                insert(conn, "ReserveMargin", ["r", "y", "val"], [("R1", "2020", 1.15)])
                insert(conn, "ReserveMarginTagTechnology", ["r", "t", "y", "val"], [("R1", "GAS", "2020", 1.0)])
                insert(conn, "ReserveMarginTagFuel", ["r", "f", "y", "val"], [("R1", "ELC", "2020", 1.0)])
                conn.execute('UPDATE "Version" SET version = 9')

            assert check_version(conn, quiet=True) == SCHEMA_VERSION
            assert conn.execute('select version from "Version"').fetchone()[0] == SCHEMA_VERSION

            margin = read_table(conn, "ReserveMargin", '"r", "f", "y", "val"')
            assert margin.values.tolist() == [["R1", "ELC", "2020", 1.15]]
            tagged = read_table(conn, "ReserveMarginTagTechnology", '"r", "t", "f", "y", "val"')
            assert tagged.values.tolist() == [["R1", "GAS", "ELC", "2020", 1.0]]
            assert not table_exists(conn, "ReserveMarginTagFuel")
        finally:
            conn.close()

    def test_ambiguous_reserve_margin_fuel_is_reported(self, empty_db, caplog):
        conn = connect(empty_db)
        try:
            with conn:
                conn.execute('DROP TABLE "ReserveMargin"')
                conn.execute('CREATE TABLE "ReserveMargin" ("id" INTEGER PRIMARY KEY, "r" TEXT, "y" TEXT, "val" REAL)')
                conn.execute('CREATE TABLE "ReserveMarginTagFuel" '
                             '("id" INTEGER PRIMARY KEY, "r" TEXT, "f" TEXT, "y" TEXT, "val" REAL)')
                insert(conn, "ReserveMargin", ["r", "y", "val"], [("R1", "2020", 1.15)])
                insert(conn, "ReserveMarginTagFuel", ["r", "f", "y", "val"],
                       [("R1", "ELC", "2020", 1.0), ("R1", "H2", "2020", 1.0)])
                conn.execute('UPDATE "Version" SET version = 9')

            upgrade_database(conn, quiet=True)
            assert len(read_table(conn, "ReserveMargin")) == 0
            assert "reserve margin" in caplog.text
        finally:
            conn.close()

    def test_version_1_storage_gets_net_zero_flags(self, empty_db):
        conn = connect(empty_db)
        try:
            with conn:
                conn.execute('DROP TABLE "STORAGE"')
                conn.execute('CREATE TABLE "STORAGE" ("val" TEXT NOT NULL UNIQUE, "desc" TEXT, PRIMARY KEY("val"))')
                insert(conn, "STORAGE", ["val"], [("STOR",)])
                conn.execute('UPDATE "Version" SET version = 1')

            assert upgrade_database(conn, quiet=True) == SCHEMA_VERSION
            flags = read_table(conn, "STORAGE", '"val", "netzeroyear", "netzerotg1", "netzerotg2"')
            assert flags.values.tolist() == [["STOR", 1, 0, 0]]
            assert table_exists(conn, "RampRate")
            assert table_exists(conn, "InterestRateTechnology")
            assert table_exists(conn, "REMinProductionTargetRG")
        finally:
            conn.close()


class TestConvertScenarioUnits:
    """Test unit conversion of a scenario database"""

    @staticmethod
    def values(dbpath, table):
        conn = connect(dbpath)
        try:
            return read_table(conn, table)["val"].tolist()
        finally:
            conn.close()

    def test_tables_scale_by_their_units(self, scenario_db):
        convertscenariounits(scenario_db, energy_multiplier=1000.0, power_multiplier=2.0, cost_multiplier=3.0,
                             emissions_multiplier=4.0, quiet=True)
        assert self.values(scenario_db, "SpecifiedAnnualDemand") == pytest.approx([10000.0] * 3)
        assert self.values(scenario_db, "CapitalCost") == pytest.approx([150.0] * 3)
        assert self.values(scenario_db, "VariableCost") == pytest.approx([0.006] * 3)
        # Unitless parameters are left alone
        assert self.values(scenario_db, "YearSplit") == pytest.approx([0.5] * 6)

    def test_inverse_conversion_restores_values(self, scenario_db):
        before = {table: self.values(scenario_db, table)
                  for table in ("SpecifiedAnnualDemand", "CapitalCost", "FixedCost", "VariableCost")}
        convertscenariounits(scenario_db, energy_multiplier=3.6, power_multiplier=1000.0, cost_multiplier=0.9,
                             quiet=True)
        convertscenariounits(scenario_db, energy_multiplier=1 / 3.6, power_multiplier=1 / 1000.0,
                             cost_multiplier=1 / 0.9, quiet=True)
        for table, values in before.items():
            assert self.values(scenario_db, table) == pytest.approx(values)

    def test_defaults_are_converted(self, empty_db):
        conn = connect(empty_db)
        try:
            setparamdefault(conn, "CapitalCost", 10.0)
            setparamdefault(conn, "CapacityFactor", 0.5)
        finally:
            conn.close()
        convertscenariounits(empty_db, power_multiplier=0.5, quiet=True)
        conn = connect(empty_db)
        try:
            assert get_defaults(conn) == pytest.approx({"CapitalCost": 20.0, "CapacityFactor": 0.5})
        finally:
            conn.close()

    def test_non_positive_multiplier_raises(self, scenario_db):
        with pytest.raises(ConfigurationError, match="cost_multiplier"):
            convertscenariounits(scenario_db, cost_multiplier=0.0, quiet=True)
