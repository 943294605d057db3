"""
End-to-end tests for the scenario calculation entry points.
"""

import shutil
from unittest.mock import patch

import pandas as pd
import pytest

from nemopy.database import connect, result_tables, table_exists
from nemopy.errors import ConfigurationError, InfeasibleModelError, UnclassifiedError
from nemopy.scenario import build_scenario, calculatescenario, make_options, writescenariomodel


def costs(dbpath):
    conn = connect(dbpath)
    try:
        frame = pd.read_sql_query('select y, val from "vtotaldiscountedcost"', conn)
    finally:
        conn.close()
    return dict(zip(frame["y"].astype(int), frame["val"]))


def tables(dbpath):
    conn = connect(dbpath)
    try:
        return result_tables(conn)
    finally:
        conn.close()


class TestCalculateScenario:
    """Test costs of the base scenario under different year selections"""

    def test_all_years(self, scenario_db, no_config):
        assert calculatescenario(scenario_db, solver="scipy", quiet=True) == "optimal"
        assert costs(scenario_db) == pytest.approx({2020: 1030.0, 2021: 30.0, 2022: 30.0})
        assert "vnewcapacity" in tables(scenario_db)

    def test_selected_years(self, scenario_db, no_config):
        calculatescenario(scenario_db, solver="scipy", calcyears=[[2020, 2022]], quiet=True)
        assert costs(scenario_db) == pytest.approx({2020: 1030.0, 2022: 60.0})

    def test_limited_foresight_matches_perfect_foresight(self, scenario_db, no_config):
        calculatescenario(scenario_db, solver="scipy", calcyears="2020,2021|2022", quiet=True)
        assert costs(scenario_db) == pytest.approx({2020: 1030.0, 2021: 30.0, 2022: 30.0})
        conn = connect(scenario_db)
        try:
            status = pd.read_sql_query('select * from "solvestatus"', conn)
        finally:
            conn.close()
        assert status["group"].tolist() == [1, 2]

    def test_direct_highs(self, scenario_db, no_config):
        assert calculatescenario(scenario_db, solver="highs", directmode=True, quiet=True) == "optimal"
        assert costs(scenario_db)[2020] == pytest.approx(1030.0)

    def test_default_views_are_removed(self, scenario_db, no_config):
        calculatescenario(scenario_db, solver="scipy", quiet=True)
        conn = connect(scenario_db)
        try:
            assert not table_exists(conn, "CapacityFactor_def")
        finally:
            conn.close()

    def test_precalculated_results_are_copied(self, scenario_db, no_config, tmp_path):
        calculatescenario(scenario_db, solver="scipy", quiet=True)
        target = str(tmp_path / "copy" / "base.sqlite")
        (tmp_path / "copy").mkdir()
        shutil.copyfile(scenario_db, target)
        conn = connect(target)
        with conn:
            conn.execute('DROP TABLE "vtotaldiscountedcost"')
        conn.close()

        with patch("nemopy.scenario.ForesightOrchestrator") as orchestrator:
            status = calculatescenario(target, solver="scipy", precalcresultspath=str(tmp_path), quiet=True)
        assert status == "optimal"
        orchestrator.assert_not_called()
        assert costs(target)[2020] == pytest.approx(1030.0)

    def test_config_file_in_working_directory(self, scenario_db, no_config):
        (no_config / "nemo.ini").write_text("[calculatescenarioargs]\ncalcyears = 2020|2022\n"
                                            "varstosave = vproductionnn\n")
        calculatescenario(scenario_db, solver="scipy", varstosave="vnewcapacity", quiet=True)
        assert set(costs(scenario_db)) == {2020, 2022}
        assert {"vnewcapacity", "vproductionnn", "vtotaldiscountedcost"} <= set(tables(scenario_db))


class TestCalculationErrors:
    """Test standardized errors and cleanup after failures"""

    def test_infeasible_scenario(self, infeasible_db, no_config):
        with pytest.raises(InfeasibleModelError) as excinfo:
            calculatescenario(infeasible_db, solver="scipy", quiet=True)
        assert str(excinfo.value).startswith("Scenario calculation failed with InfeasibleModelError")
        assert excinfo.value.model is not None
        assert tables(infeasible_db) == []

    def test_invalid_calcyears(self, scenario_db, no_config):
        with pytest.raises(ConfigurationError, match="Scenario calculation failed"):
            calculatescenario(scenario_db, solver="scipy", calcyears=[[2022], [2020]], quiet=True)

    def test_propagate_errors_keeps_original(self, scenario_db, no_config):
        with pytest.raises(ConfigurationError) as excinfo:
            calculatescenario(scenario_db, solver="scipy", calcyears=[[2022], [2020]], quiet=True,
                              propagate_errors=True)
        assert not str(excinfo.value).startswith("Scenario calculation failed")

    @patch("nemopy.scenario.load_scenario_data", side_effect=KeyError("boom"))
    def test_unexpected_errors_are_unclassified(self, mock_load, scenario_db, no_config):
        with pytest.raises(UnclassifiedError, match="boom"):
            calculatescenario(scenario_db, solver="scipy", quiet=True)
        with pytest.raises(KeyError):
            calculatescenario(scenario_db, solver="scipy", quiet=True, propagate_errors=True)
        assert mock_load.call_count == 2


class TestModelOutput:
    """Test building and writing the model without solving"""

    def test_make_options_always_saves_total_cost(self, no_config):
        options = make_options(varstosave="vnewcapacity", calcyears=[2020, 2021])
        assert options.varstosave == ["vnewcapacity", "vtotaldiscountedcost"]
        assert options.calcyears == [[2020, 2021]]

    def test_build_scenario(self, scenario_db, no_config):
        model = build_scenario(scenario_db, quiet=True)
        assert model.num_constraints > 0
        assert "vtotaldiscountedcost" in model.variables
        assert model.solution is None

    def test_writescenariomodel(self, scenario_db, no_config, tmp_path):
        filename = str(tmp_path / "scenario.lp")
        assert writescenariomodel(scenario_db, filename, quiet=True) == filename
        with open(filename) as lp_file:
            assert "min" in lp_file.read().lower()
