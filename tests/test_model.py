"""
Tests for the variable and constraint registry.
"""

import numpy as np
import pandas as pd
import pytest

from nemopy.model import FORCE_MIP_VARIABLE, ConstraintFamily, ScenarioModel, terms


@pytest.fixture
def model():
    """Model with capacity (r, y) and activity (r, l, y) families"""
    model = ScenarioModel("test")
    model.add_variables("vcap", ("r", "y"), pd.DataFrame({"r": ["R1", "R1"], "y": [2020, 2021]}))
    model.add_variables("vact", ("r", "l", "y"),
                        pd.DataFrame({"r": ["R1"] * 4, "l": ["D", "N", "D", "N"], "y": [2020, 2020, 2021, 2021]}),
                        upper=8.0)
    return model


class TestVariables:
    """Test variable declaration and lookup"""

    def test_labels_are_consecutive(self, model):
        assert model.num_variables == 6
        assert model.variable("vcap").labels.tolist() == [0, 1]
        assert model.variable("vact").labels.tolist() == [2, 3, 4, 5]
        assert model.variable("vact").label("R1", "N", 2021) == 5

    def test_lookup_with_renamed_columns(self, model):
        frame = pd.DataFrame({"r": ["R1", "R1"], "yy": [2021, 2030]})
        labels = model.variable("vcap").lookup(frame, on={"y": "yy"})
        assert labels.tolist() == [1, -1]

    def test_duplicate_keys_are_collapsed(self):
        model = ScenarioModel()
        family = model.add_variables("v", ("r",), pd.DataFrame({"r": ["A", "A", "B"]}))
        assert family.size == 2

    def test_duplicate_family_raises(self, model):
        with pytest.raises(ValueError):
            model.add_variables("vcap", ("r",), pd.DataFrame({"r": ["R1"]}))


class TestConstraintFamily:
    """Test assembly of staged constraint families"""

    def test_terms_are_aggregated_per_row(self, model):
        activity = model.variable("vact").keys
        capacity_terms = terms(activity[["r", "y"]].drop_duplicates(), model.variable("vcap"), ("r", "y"), -1.0)
        activity_terms = terms(activity, model.variable("vact"), ("r", "y"), 0.5)
        family = ConstraintFamily.from_terms("cap", ("r", "y"), [activity_terms, capacity_terms], "<=")
        assert family.size == 2
        assert family.indptr.tolist() == [0, 3, 6]
        assert family.cols[:3].tolist() == [0, 2, 3]
        assert family.coeffs[:3].tolist() == [-1.0, 0.5, 0.5]

    def test_missing_variables_are_dropped(self, model):
        frame = pd.DataFrame({"r": ["R1", "R1"], "y": [2020, 2030]})
        assert len(terms(frame, model.variable("vcap"), ("r", "y"))) == 1

    def test_rhs_frame_adds_rows_without_terms(self, model):
        frame = pd.DataFrame({"r": ["R1"], "y": [2020]})
        rhs = pd.DataFrame({"r": ["R1", "R1"], "y": [2020, 2022], "rhs": [3.0, 4.0]})
        family = ConstraintFamily.from_terms("min", ("r", "y"), [terms(frame, model.variable("vcap"), ("r", "y"))],
                                             ">=", rhs)
        assert family.size == 2
        assert family.rhs.tolist() == [3.0, 4.0]
        assert np.diff(family.indptr).tolist() == [1, 0]

    def test_empty_family_is_none(self, model):
        frame = pd.DataFrame({"r": ["R9"], "y": [2020]})
        assert ConstraintFamily.from_terms("x", ("r", "y"), [terms(frame, model.variable("vcap"), ("r", "y"))],
                                           "==") is None

    def test_unknown_sense_raises(self):
        with pytest.raises(ValueError):
            ConstraintFamily("bad", (), pd.DataFrame(index=[0]), [0, 0], [], [], "<", [0.0])


class TestScenarioModel:
    """Test the assembled matrix form"""

    def test_matrix_and_names(self, model):
        model.merge(ConstraintFamily.from_terms(
            "limit", ("r", "y"), [terms(model.variable("vcap").keys, model.variable("vcap"), ("r", "y"))],
            "<=", 5.0))
        model.add_constraint("pin", {("vact", ("R1", "D", 2020)): 1.0}, "==", 2.0)
        model.set_objective([0, 1], [10.0, 10.0])

        matrix = model.matrix()
        assert matrix.A.shape == (3, 6)
        assert matrix.row_upper.tolist() == [5.0, 5.0, 2.0]
        assert matrix.row_lower[:2].tolist() == [-np.inf, -np.inf]
        assert matrix.c.tolist() == [10.0, 10.0, 0.0, 0.0, 0.0, 0.0]
        assert matrix.col_upper.tolist()[2:] == [8.0] * 4
        assert model.constraint_names() == ["limit[R1, 2020]", "limit[R1, 2021]", "pin"]

    def test_subset_keeps_selected_rows(self, model):
        model.merge(ConstraintFamily.from_terms(
            "limit", ("r", "y"), [terms(model.variable("vcap").keys, model.variable("vcap"), ("r", "y"))],
            ">=", 1.0))
        subset = model.subset([1])
        assert subset.A.shape == (1, 6)
        assert subset.A.toarray()[0].tolist() == [0.0, 1.0, 0.0, 0.0, 0.0, 0.0]
        assert subset.row_lower.tolist() == [1.0]

    def test_empty_row_violations(self, model):
        rhs = pd.DataFrame({"r": ["R1", "R1"], "y": [2030, 2031], "rhs": [1.0, 0.0]})
        model.merge(ConstraintFamily.from_terms("demand", ("r", "y"), [], ">=", rhs))
        assert model.empty_row_violations() == ["demand[R1, 2030]"]

    def test_solution_values(self, model):
        model.set_solution(np.arange(6, dtype=float), objective_value=1.0)
        assert model.values("vcap").loc[("R1", 2021)] == 1.0
        frame = model.value_frame("vact")
        assert frame["val"].tolist() == [2.0, 3.0, 4.0, 5.0]
        assert list(frame.columns) == ["r", "l", "y", "val"]

    def test_integer_family_makes_mip(self, model):
        assert not model.is_mip
        model.add_variables("vbuild", ("r",), pd.DataFrame({"r": ["R1"]}), integer=True)
        assert model.is_mip
        assert model.matrix().integrality.tolist()[-1] == 1

    def test_force_mip_adds_integer_column_to_linopy_model(self, model):
        model.set_objective([0, 1], [1.0, 1.0])
        lp_model, _ = model.to_linopy()
        assert FORCE_MIP_VARIABLE not in list(lp_model.variables)

        model.force_mip = True
        assert model.is_mip
        lp_model, label_map = model.to_linopy()
        assert FORCE_MIP_VARIABLE in list(lp_model.variables.integers)
        assert len(label_map) == model.num_variables
