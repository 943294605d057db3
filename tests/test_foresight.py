"""
Tests for year groups and limited-foresight solving.
"""

import pandas as pd
import pytest

from nemopy.database import connect
from nemopy.errors import ConfigurationError
from nemopy.foresight import check_calcyears, filter_calcyears
from nemopy.scenario import calculatescenario

STORAGE_VARS = "vstoragelevelyearend, vstorageleveltsgroup1start, vtotalcapacityannual"


def levels(dbpath, table):
    conn = connect(dbpath)
    try:
        frame = pd.read_sql_query(f'select y, val from "{table}"', conn)
    finally:
        conn.close()
    frame["y"] = frame["y"].astype(int)
    return frame.groupby("y")["val"].sum()


class TestCheckCalcyears:
    """Test validation of year groups"""

    @pytest.mark.parametrize("calcyears", [[], [[]], [[2020, 2025], [2030]], [[2020]]])
    def test_valid_groups(self, calcyears):
        check_calcyears(calcyears)

    def test_empty_group_alongside_others(self):
        with pytest.raises(ConfigurationError, match="empty"):
            check_calcyears([[2020], []])

    def test_years_not_increasing(self):
        with pytest.raises(ConfigurationError, match="strictly increasing"):
            check_calcyears([[2025, 2020]])

    def test_overlapping_groups(self):
        with pytest.raises(ConfigurationError, match="overlaps"):
            check_calcyears([[2020, 2025], [2025, 2030]])


class TestFilterCalcyears:
    """Test removal of years the scenario does not define"""

    def test_undefined_years_are_dropped(self, caplog):
        assert filter_calcyears([[2019, 2020], [2021]], [2020, 2021, 2022], quiet=True) == [[2020], [2021]]
        assert "2019" in caplog.text

    def test_nothing_left_falls_back_to_all_years(self):
        assert filter_calcyears([[2030]], [2021, 2020]) == [[2020, 2021]]

    def test_groups_without_defined_years_are_removed(self):
        assert filter_calcyears([[2020], [2040]], [2020, 2021]) == [[2020]]


class TestLimitedForesight:
    """Test state handed from one year group to the next"""

    def test_storage_level_continues_across_groups(self, storage_db, no_config):
        status = calculatescenario(storage_db, solver="scipy", varstosave=STORAGE_VARS,
                                   calcyears=[[2020, 2021], [2022]], reportzeros=True, quiet=True)
        assert status == "optimal"

        year_end = levels(storage_db, "vstoragelevelyearend")
        year_start = levels(storage_db, "vstorageleveltsgroup1start")
        assert year_start[2020] == pytest.approx(2.0, abs=1e-6)
        assert year_start[2021] == pytest.approx(year_end[2020], abs=1e-6)
        # 2022 is solved in the second group
        assert year_start[2022] == pytest.approx(year_end[2021], abs=1e-6)

    def test_capacity_carries_over(self, scenario_db, no_config):
        calculatescenario(scenario_db, solver="scipy", varstosave="vnewcapacity, vtotalcapacityannual",
                          calcyears=[[2020], [2021, 2022]], quiet=True)
        capacity = levels(scenario_db, "vtotalcapacityannual")
        built = levels(scenario_db, "vnewcapacity")
        assert capacity.tolist() == pytest.approx([10.0, 10.0, 10.0])
        assert built.index.tolist() == [2020]
