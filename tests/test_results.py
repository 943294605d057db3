"""
Tests for saving and summarizing results.
"""

import numpy as np
import pandas as pd
import pytest

from nemopy.database import connect, read_table
from nemopy.model import ScenarioModel
from nemopy.results import (create_cost_chart, get_results_summary, print_results, record_solve_status,
                            result_frame, save_results)


@pytest.fixture
def solved_model():
    """Solved model with one yearly family, one yearless family and one cost family"""
    model = ScenarioModel()
    model.add_variables("vtotalcapacityannual", ("r", "t", "y"),
                        pd.DataFrame({"r": ["R1"] * 3, "t": ["GAS", "GAS", "WIND"], "y": [2020, 2021, 2020]}))
    model.add_variables("vmodelperiodcostbyregion", ("r",), pd.DataFrame({"r": ["R1"]}))
    model.add_variables("vtotaldiscountedcost", ("r", "y"), pd.DataFrame({"r": ["R1", "R1"], "y": [2020, 2021]}))
    model.set_solution(np.array([10.0, 10.0, 0.0, 1060.0, 1030.0, 30.0]), 1060.0)
    return model


def saved(dbpath, table):
    conn = connect(dbpath)
    try:
        return read_table(conn, table)
    finally:
        conn.close()


class TestSaveResults:
    """Test writing result tables"""

    def test_result_frame_skips_zeros(self, solved_model):
        frame = result_frame(solved_model, "vtotalcapacityannual", "2026-01-01 00:00:00.000")
        assert frame["t"].tolist() == ["GAS", "GAS"]
        assert frame["y"].tolist() == ["2020", "2021"]
        assert list(frame.columns) == ["r", "t", "y", "val", "solvedtm"]

    def test_result_frame_reports_zeros(self, solved_model):
        frame = result_frame(solved_model, "vtotalcapacityannual", "now", reportzeros=True)
        assert len(frame) == 3

    def test_save_results(self, scenario_db, solved_model):
        written = save_results(scenario_db, solved_model, ["vtotalcapacityannual", "vtotaldiscountedcost",
                                                           "vnotinmodel"], "t1", quiet=True)
        assert written == {"vtotalcapacityannual": 2, "vtotaldiscountedcost": 2}
        frame = saved(scenario_db, "vtotalcapacityannual")
        assert frame["val"].tolist() == [10.0, 10.0]
        assert set(frame["solvedtm"]) == {"t1"}

    def test_year_tables_append_and_others_are_recreated(self, scenario_db, solved_model):
        names = ["vtotalcapacityannual", "vmodelperiodcostbyregion"]
        save_results(scenario_db, solved_model, names, "t1", quiet=True)
        save_results(scenario_db, solved_model, names, "t2", quiet=True)
        assert len(saved(scenario_db, "vtotalcapacityannual")) == 4
        assert saved(scenario_db, "vmodelperiodcostbyregion")["solvedtm"].tolist() == ["t2"]

    def test_replace_recreates_year_tables(self, scenario_db, solved_model):
        save_results(scenario_db, solved_model, ["vtotalcapacityannual"], "t1", quiet=True)
        save_results(scenario_db, solved_model, ["vtotalcapacityannual"], "t2", quiet=True, replace=True)
        assert saved(scenario_db, "vtotalcapacityannual")["solvedtm"].tolist() == ["t2", "t2"]

    def test_record_solve_status(self, scenario_db):
        record_solve_status(scenario_db, 1, "optimal", False, "t1")
        record_solve_status(scenario_db, 2, "suboptimal", True, "t2")
        frame = saved(scenario_db, "solvestatus")
        assert frame["status"].tolist() == ["optimal", "suboptimal"]
        assert frame["warning"].tolist() == [0, 1]


class TestResultsSummary:
    """Test reporting on saved results"""

    def test_no_results(self, scenario_db, capsys):
        assert get_results_summary(scenario_db)["status"] == "no_results"
        assert create_cost_chart(scenario_db) is None
        print_results(scenario_db)
        assert "No results" in capsys.readouterr().out

    def test_summary_and_report(self, scenario_db, solved_model, capsys):
        save_results(scenario_db, solved_model, ["vtotalcapacityannual", "vtotaldiscountedcost"], "t1", quiet=True)
        record_solve_status(scenario_db, 1, "optimal", False, "t1")

        summary = get_results_summary(scenario_db)
        assert summary["status"] == "success"
        assert summary["total_discounted_cost"] == pytest.approx(1060.0)
        assert summary["cost_by_year"] == {2020: 1030.0, 2021: 30.0}
        assert summary["capacity"] == {"GAS": {2020: 10.0, 2021: 10.0}}
        assert summary["solve_status"][0]["status"] == "optimal"

        print_results(scenario_db)
        out = capsys.readouterr().out
        assert "SCENARIO RESULTS" in out
        assert "1,060.00" in out

    def test_cost_chart_written(self, scenario_db, solved_model, tmp_path):
        save_results(scenario_db, solved_model, ["vtotalcapacityannual", "vtotaldiscountedcost"], "t1", quiet=True)
        filename = str(tmp_path / "costs.html")
        fig = create_cost_chart(scenario_db, filename)
        assert len(fig.data) == 2
        assert (tmp_path / "costs.html").exists()
