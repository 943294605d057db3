"""
Tests for locating conflicting constraints in infeasible models.
"""

import pytest

from nemopy.errors import ConfigurationError
from nemopy.infeasibility import FeasibilityOracle, ddmin, find_infeasibilities, shortest_infeasible_prefix
from nemopy.scenario import build_scenario


class CountingPredicate:
    """Holds when every required item is present"""

    def __init__(self, required):
        self.required = set(required)
        self.calls = 0

    def __call__(self, items):
        self.calls += 1
        return self.required <= set(items)

    def is_infeasible(self, rows):
        return self(rows)


class TestDeltaDebugging:
    """Test the generic reduction steps"""

    def test_ddmin_finds_required_items(self):
        test = CountingPredicate([3, 7])
        assert ddmin(list(range(10)), test) == [3, 7]
        assert test.calls < 45

    def test_ddmin_single_item(self):
        assert ddmin(list(range(16)), CountingPredicate([11])) == [11]

    def test_ddmin_keeps_all_needed(self):
        assert ddmin([1, 2, 3], CountingPredicate([1, 2, 3])) == [1, 2, 3]

    def test_shortest_prefix(self):
        oracle = CountingPredicate([2, 5])
        assert shortest_infeasible_prefix(list(range(10)), oracle) == 6


class TestFindInfeasibilities:
    """Test localization on a scenario with a capacity cap below demand"""

    def test_conflict_is_minimal(self, infeasible_db, no_config):
        model = build_scenario(infeasible_db, quiet=True)
        found = find_infeasibilities(model, quiet=True)

        assert "TCC1_TotalAnnualMaxCapacityConstraint[R1, GAS, 2020]" in found
        assert any(name.startswith("EBa11_EnergyBalanceEachTS5[") for name in found)

        names = model.constraint_names()
        rows = [names.index(name) for name in found]
        oracle = FeasibilityOracle(model)
        assert oracle.is_infeasible(rows)
        for row in rows:
            assert not oracle.is_infeasible([other for other in rows if other != row])

    def test_feasible_model_raises(self, scenario_db, no_config):
        model = build_scenario(scenario_db, quiet=True)
        with pytest.raises(ConfigurationError, match="feasible"):
            find_infeasibilities(model, quiet=True)
