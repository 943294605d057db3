"""
Tests for loading scenario databases into memory.
"""

import pandas as pd
import pytest

from nemopy.data_loader import Parameter, cross_frame, load_scenario_data
from nemopy.database import connect
from nemopy.errors import DataIntegrityError, SchemaError


@pytest.fixture
def sample_parameter():
    """Create a sample parameter for testing"""
    frame = pd.DataFrame({"r": ["R1", "R1"], "t": ["GAS", "COAL"], "y": [2020, 2020], "val": [5.0, 0.0]})
    return Parameter("TotalAnnualMaxCapacity", ("r", "t", "y"), frame)


class TestParameter:
    """Test default handling of sparse parameters"""

    def test_lookup_fills_missing_with_zero(self, sample_parameter):
        keys = pd.DataFrame({"r": ["R1", "R1"], "t": ["GAS", "WIND"], "y": [2020, 2020]})
        frame = sample_parameter.lookup(keys, "limit")
        assert frame["limit"].tolist() == [5.0, 0.0]

    def test_lookup_uses_default(self):
        param = Parameter("CapacityFactor", ("r", "t"), pd.DataFrame(columns=["r", "t", "val"]), default=0.8)
        frame = param.lookup(pd.DataFrame({"r": ["R1"], "t": ["GAS"]}))
        assert frame["val"].tolist() == [0.8]
        assert param.has_values()

    def test_rows_keeps_only_defined_combinations(self, sample_parameter):
        keys = pd.DataFrame({"r": ["R1", "R1"], "t": ["GAS", "WIND"], "y": [2020, 2020]})
        frame = sample_parameter.rows(keys, "limit")
        assert frame["t"].tolist() == ["GAS"]

    def test_value_and_restricted(self, sample_parameter):
        assert sample_parameter.value("R1", "GAS", 2020) == 5.0
        assert sample_parameter.value("R1", "WIND", 2020) == 0.0
        assert len(sample_parameter.restricted([2025])) == 0

    def test_cross_frame(self):
        frame = cross_frame(r=["R1", "R2"], y=[2020, 2021])
        assert list(frame.columns) == ["r", "y"]
        assert len(frame) == 4


class TestLoadScenarioData:
    """Test loading the base scenario"""

    def test_dimensions_and_years(self, scenario_db):
        data = load_scenario_data(scenario_db, quiet=True)
        assert data.regions == ["R1"]
        assert data.technologies == ["GAS"]
        assert data.years == [2020, 2021, 2022]
        assert data.loaded_years == [2020, 2021, 2022]
        assert data.first_year == 2020

    def test_parameters_are_typed(self, scenario_db):
        data = load_scenario_data(scenario_db, quiet=True)
        demand = data.param("SpecifiedAnnualDemand").frame
        assert demand["y"].dtype == "int64"
        assert data.param("CapacityFactor").default == 1.0
        assert data.param("VariableCost").value("R1", "GAS", "1", 2021) == 2.0

    def test_year_restriction(self, scenario_db):
        data = load_scenario_data(scenario_db, years=[2021], quiet=True)
        assert data.loaded_years == [2021]
        assert set(data.param("CapitalCost").frame["y"]) == {2021}

    def test_yearsplit_must_sum_to_one(self, scenario_db):
        conn = connect(scenario_db)
        with conn:
            conn.execute('UPDATE "YearSplit" SET val = 0.4 WHERE l = \'DAY\' AND y = \'2021\'')
        conn.close()
        with pytest.raises(DataIntegrityError, match="2021"):
            load_scenario_data(scenario_db, quiet=True)

    def test_non_integer_year_raises(self, scenario_db):
        conn = connect(scenario_db)
        with conn:
            conn.execute('INSERT INTO "YEAR" (val) VALUES (\'soon\')')
        conn.close()
        with pytest.raises(DataIntegrityError):
            load_scenario_data(scenario_db, quiet=True)

    def test_wrong_version_raises(self, scenario_db):
        conn = connect(scenario_db)
        with conn:
            conn.execute('UPDATE "Version" SET version = 11')
        conn.close()
        with pytest.raises(SchemaError):
            load_scenario_data(scenario_db, quiet=True)

    def test_storage_net_zero_flags(self, storage_db):
        data = load_scenario_data(storage_db, quiet=True)
        assert data.net_zero_storages("netzeroyear") == ["STOR"]
        assert data.net_zero_storages("netzerotg1") == []

        conn = connect(storage_db)
        with conn:
            conn.execute('UPDATE "STORAGE" SET netzeroyear = 0, netzerotg2 = 1')
        conn.close()
        data = load_scenario_data(storage_db, quiet=True)
        assert data.net_zero_storages("netzeroyear") == []
        assert data.net_zero_storages("netzerotg2") == ["STOR"]
