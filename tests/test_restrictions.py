"""
Tests for restriction analysis of activity subscripts.
"""

import pytest

from conftest import write_base_scenario
from nemopy.data_loader import load_scenario_data
from nemopy.restrictions import analyze_restrictions


@pytest.fixture
def storage_data(tmp_path):
    path = write_base_scenario(str(tmp_path / "restrict.sqlite"), storage=True)
    return load_scenario_data(path, quiet=True)


class TestAnalyzeRestrictions:
    """Test pruning of combinations without activity ratios"""

    def test_restricted_domain_has_only_ratio_combinations(self, storage_data):
        domain = analyze_restrictions(storage_data, [2020, 2021], restrictvars=True, workers=2)
        # 3 technologies with one ratio each, 2 slices, 2 years
        assert len(domain.activity) == 3 * 2 * 2
        assert set(domain.activity["t"]) == {"GAS", "CHG", "DIS"}
        assert set(domain.production["t"]) == {"GAS", "DIS"}
        assert set(domain.use["t"]) == {"CHG"}
        assert domain.restricted

    def test_unrestricted_domain_is_full_product(self, storage_data):
        domain = analyze_restrictions(storage_data, [2020], restrictvars=False)
        assert len(domain.activity) == 3 * 2 * 1
        assert not domain.restricted

    def test_zero_ratios_are_pruned(self, storage_data):
        frame = storage_data.param("OutputActivityRatio").frame
        frame.loc[frame["t"] == "DIS", "val"] = 0.0
        domain = analyze_restrictions(storage_data, [2020], restrictvars=True)
        assert "DIS" not in set(domain.activity["t"])
        assert "DIS" not in set(domain.production["t"])

    def test_annual_and_total_views(self, storage_data):
        domain = analyze_restrictions(storage_data, [2020, 2022])
        assert list(domain.total_activity.columns) == ["r", "t", "l", "y"]
        assert len(domain.annual_activity) == 3 * 2
