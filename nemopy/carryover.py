"""
State carried from one foresight group to the next.
"""

from dataclasses import dataclass, field

import pandas as pd

# Variables whose values in the last modeled year of a group are kept for
# interpolation across the group boundary
BOUNDARY_VARIABLES = (
    "vtotalcapacityannual",
    "vtotalannualtechnologyactivitybymode",
    "vtotaltechnologyannualactivity",
    "vannualemissions",
    "voperatingcosttransmission",
)


def _frame(*columns):
    return pd.DataFrame({column: pd.Series(dtype="int64" if column == "y" else "object") for column in columns}
                        | {"val": pd.Series(dtype=float)})


@dataclass
class CarryoverState:
    """
    End-of-group results that become boundary conditions of the next group.

    An empty state (``last_year`` None) describes the start of a run.
    """

    last_year: int = None
    new_capacity: pd.DataFrame = field(default_factory=lambda: _frame("r", "t", "y"))
    new_storage: pd.DataFrame = field(default_factory=lambda: _frame("r", "s", "y"))
    storage_level: pd.DataFrame = field(default_factory=lambda: _frame("r", "s"))
    line_builds: pd.DataFrame = field(default_factory=lambda: _frame("tr", "y"))
    period_activity: pd.DataFrame = field(default_factory=lambda: _frame("r", "t"))
    period_emissions: pd.DataFrame = field(default_factory=lambda: _frame("r", "e"))
    period_cost: pd.DataFrame = field(default_factory=lambda: _frame("r"))
    last_values: dict = field(default_factory=dict)

    @property
    def is_start(self):
        return self.last_year is None

    def boundary_values(self, name):
        """Values of ``name`` in the previous group's last modeled year, or None."""
        return self.last_values.get(name)

    def advance(self, model, years):
        """
        State after solving ``model`` for ``years``.

        Args:
            model (ScenarioModel): Solved model of the group
            years (list): Years modeled in the group

        Returns:
            CarryoverState: New state; this one is left unchanged
        """
        last_year = max(years)

        def values(name):
            if not model.has_variable(name):
                return None
            return model.value_frame(name)

        def appended(current, name):
            frame = values(name)
            if frame is None:
                return current
            return pd.concat([current, frame], ignore_index=True)

        def replaced(current, name):
            frame = values(name)
            return current if frame is None else frame

        storage_level = self.storage_level
        level = values("vstoragelevelyearend")
        if level is not None:
            storage_level = level[level["y"] == last_year].drop(columns="y").reset_index(drop=True)

        last_values = {}
        for name in BOUNDARY_VARIABLES:
            frame = values(name)
            if frame is not None and "y" in frame.columns:
                last_values[name] = frame[frame["y"] == last_year].reset_index(drop=True)

        return CarryoverState(
            last_year=last_year,
            new_capacity=appended(self.new_capacity, "vnewcapacity"),
            new_storage=appended(self.new_storage, "vnewstoragecapacity"),
            storage_level=storage_level,
            line_builds=appended(self.line_builds, "vtransmissionbuilt"),
            period_activity=replaced(self.period_activity, "vtotaltechnologymodelperiodactivity"),
            period_emissions=replaced(self.period_emissions, "vmodelperiodemissions"),
            period_cost=replaced(self.period_cost, "vmodelperiodcostbyregion"),
            last_values=last_values,
        )
