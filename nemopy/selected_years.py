"""
Interval approximation for calculations over a subset of scenario years.

Each modeled year closes an interval that starts just after the previous
modeled year (or at the scenario's first year). Skipped years in an interval
are not modeled:

* investment in the modeled year is spread uniformly over its interval when
  discounting;
* quantities of skipped years (capacity, activity, emissions) are linear
  interpolations between the bracketing modeled years; in the first interval
  of a run, where no earlier modeled year exists, the modeled year's value is
  held flat.

With every scenario year modeled each interval holds one year and the
weights reduce to the plain annual formulation.
"""

import pandas as pd


class YearIntervals:
    """
    Intervals and interpolation weights for a set of modeled years.

    Args:
        scenario_years (list): All years defined in the scenario
        modeled_years (list): Years modeled in this calculation (or foresight group)
        previous_year (int): Last modeled year of the previous foresight group, if any
        first_year (int): Discounting base year, the scenario's first year by default
    """

    def __init__(self, scenario_years, modeled_years, previous_year=None, first_year=None):
        self.scenario_years = sorted(int(year) for year in scenario_years)
        self.modeled_years = sorted(int(year) for year in modeled_years)
        self.previous_year = previous_year
        self.first_year = self.scenario_years[0] if first_year is None else first_year

        self.intervals = {}
        self.previous = {}
        prior = previous_year
        for year in self.modeled_years:
            lower = prior if prior is not None else self.scenario_years[0] - 1
            self.intervals[year] = [x for x in self.scenario_years if lower < x <= year]
            self.previous[year] = prior
            prior = year

    @property
    def is_full(self):
        """True when no year is skipped."""
        return all(len(years) == 1 for years in self.intervals.values())

    def interval(self, year):
        return self.intervals[year]

    def length(self, year):
        return len(self.intervals[year])

    def capital_factor(self, year, rate):
        """Average discount factor over the interval of ``year`` (investment spread evenly)."""
        years = self.intervals[year]
        return sum((1.0 + rate) ** -(x - self.first_year) for x in years) / len(years)

    def weights(self):
        """
        Interpolation weights as a DataFrame.

        Columns: y (modeled year), x (calendar year in its interval),
        wcur (weight of y), yprev (previous modeled year or <NA>),
        wprev (weight of yprev).
        """
        rows = []
        for year in self.modeled_years:
            prior = self.previous[year]
            for x in self.intervals[year]:
                if prior is None:
                    wcur = 1.0
                else:
                    wcur = (x - prior) / (year - prior)
                rows.append((year, x, wcur, prior, 1.0 - wcur))

        frame = pd.DataFrame(rows, columns=["y", "x", "wcur", "yprev", "wprev"])
        frame["yprev"] = frame["yprev"].astype("Int64")
        return frame

    def year_weights(self):
        """Total weight of each modeled year's quantity inside the modeled range (Series by year)."""
        weights = self.weights()
        current = weights.groupby("y")["wcur"].sum()
        prior = weights.dropna(subset=["yprev"]).groupby("yprev")["wprev"].sum()
        prior.index = prior.index.astype(int)
        total = current.add(prior[prior.index.isin(self.modeled_years)], fill_value=0.0)
        return total
