"""
Chronological ordering of time slices.

Time slices are grouped in two levels. Within a year, group-1 blocks follow
one another in ``order``; each group-1 block repeats its sequence of group-2
blocks ``multiplier`` times, and each group-2 block repeats its sequence of
one-hour slices ``multiplier`` times. The nested repetition must cover the
8760 hours of a year exactly.
"""

import logging
from dataclasses import dataclass

import pandas as pd

from .errors import DataIntegrityError

logger = logging.getLogger(__name__)

HOURS_PER_YEAR = 8760
IDENTITY_TOLERANCE = 1e-6


@dataclass
class Chronology:
    """
    Resolved chronology.

    ``slices`` has one row per time slice in yearly order with columns
    l, tg1, tg1o, tg1m, tg2, tg2o, tg2m, lo, seq, prev_l, first_in_tg2,
    last_in_tg2, first_in_tg1, first_in_year, last_in_year.
    ``tg2_blocks`` has one row per (tg1, tg2) with columns tg1, tg2, tg2m,
    first_l, last_l, prev_tg2, first_in_tg1, last_in_tg1.
    ``tg1_blocks`` has one row per tg1 with columns tg1, tg1m, first_tg2,
    last_tg2, prev_tg1, first_in_year, last_in_year.
    """

    slices: pd.DataFrame
    tg2_blocks: pd.DataFrame
    tg1_blocks: pd.DataFrame

    @property
    def hours(self):
        counts = self.slices.groupby(["tg1", "tg2"]).size().rename("count").reset_index()
        blocks = self.tg2_blocks.merge(counts, on=["tg1", "tg2"]).merge(self.tg1_blocks[["tg1", "tg1m"]], on="tg1")
        return float((blocks["count"] * blocks["tg2m"] * blocks["tg1m"]).sum())

    def ramp_reset(self, level):
        """
        Boolean Series (indexed by slice) marking slices exempt from ramp limits.

        Level 0 exempts the first slice of the year, level 1 adds the first
        slice of each group 1, level 2 adds the first slice of each group 2.
        """
        frame = self.slices.set_index("l")
        reset = frame["first_in_year"].copy()
        if level >= 1:
            reset |= frame["first_in_tg1"]
        if level >= 2:
            reset |= frame["first_in_tg2"]
        return reset


def resolve_chronology(tsgroup1, tsgroup2, ltsgroup, timeslices=None):
    """
    Build the ordered-hours model from the time slice group tables.

    Args:
        tsgroup1 (pd.DataFrame): Columns name, order, multiplier
        tsgroup2 (pd.DataFrame): Columns name, order, multiplier
        ltsgroup (pd.DataFrame): Columns l, lorder, tg2, tg1
        timeslices (list): All time slices of the scenario; each must be grouped exactly once

    Returns:
        Chronology or None: None when no time slice grouping is defined

    Raises:
        DataIntegrityError: When grouping references are incomplete or the
            multipliers do not add up to 8760 hours
    """
    if ltsgroup is None or len(ltsgroup) == 0:
        return None

    groups = ltsgroup[["l", "lorder", "tg2", "tg1"]].copy()
    groups["l"] = groups["l"].astype(str)
    groups["tg1"] = groups["tg1"].astype(str)
    groups["tg2"] = groups["tg2"].astype(str)

    if groups["l"].duplicated().any():
        duplicated = ", ".join(sorted(groups.loc[groups["l"].duplicated(), "l"].unique()))
        raise DataIntegrityError(f"Time slices assigned to more than one group: {duplicated}")
    if timeslices is not None:
        missing = sorted(set(timeslices) - set(groups["l"]))
        if missing:
            raise DataIntegrityError(f"Time slices missing from LTsGroup: {', '.join(missing)}")

    g1 = tsgroup1.rename(columns={"name": "tg1", "order": "tg1o", "multiplier": "tg1m"})[["tg1", "tg1o", "tg1m"]]
    g2 = tsgroup2.rename(columns={"name": "tg2", "order": "tg2o", "multiplier": "tg2m"})[["tg2", "tg2o", "tg2m"]]
    g1 = g1.astype({"tg1": str})
    g2 = g2.astype({"tg2": str})

    slices = groups.merge(g1, on="tg1", how="left").merge(g2, on="tg2", how="left")
    unresolved = slices[slices["tg1o"].isna() | slices["tg2o"].isna()]
    if len(unresolved) > 0:
        raise DataIntegrityError("LTsGroup references undefined time slice groups for slices: "
                                 + ", ".join(sorted(unresolved["l"])))

    slices = slices.rename(columns={"lorder": "lo"})
    slices = slices.sort_values(["tg1o", "tg2o", "lo"]).reset_index(drop=True)
    slices["seq"] = range(len(slices))
    slices["tg1m"] = slices["tg1m"].astype(float)
    slices["tg2m"] = slices["tg2m"].astype(float)

    slices["prev_l"] = slices["l"].shift(1)
    block = slices.groupby(["tg1", "tg2"], sort=False)
    slices["first_in_tg2"] = block.cumcount() == 0
    slices["last_in_tg2"] = block.cumcount(ascending=False) == 0
    slices["first_in_tg1"] = slices.groupby("tg1", sort=False).cumcount() == 0
    slices["first_in_year"] = slices["seq"] == 0
    slices["last_in_year"] = slices["seq"] == len(slices) - 1

    tg2_blocks = (slices.groupby(["tg1", "tg2"], sort=False)
                  .agg(tg1o=("tg1o", "first"), tg2o=("tg2o", "first"), tg2m=("tg2m", "first"),
                       first_l=("l", "first"), last_l=("l", "last"))
                  .reset_index()
                  .sort_values(["tg1o", "tg2o"])
                  .reset_index(drop=True))
    tg2_blocks["prev_tg2"] = tg2_blocks.groupby("tg1", sort=False)["tg2"].shift(1)
    tg2_blocks["first_in_tg1"] = tg2_blocks["prev_tg2"].isna()
    tg2_blocks["last_in_tg1"] = tg2_blocks.groupby("tg1", sort=False).cumcount(ascending=False) == 0

    tg1_blocks = (tg2_blocks.groupby("tg1", sort=False)
                  .agg(tg1o=("tg1o", "first"), first_tg2=("tg2", "first"), last_tg2=("tg2", "last"))
                  .reset_index()
                  .sort_values("tg1o")
                  .reset_index(drop=True))
    tg1_blocks = tg1_blocks.merge(g1[["tg1", "tg1m"]], on="tg1")
    tg1_blocks["tg1m"] = tg1_blocks["tg1m"].astype(float)
    tg1_blocks["prev_tg1"] = tg1_blocks["tg1"].shift(1)
    tg1_blocks["first_in_year"] = tg1_blocks.index == 0
    tg1_blocks["last_in_year"] = tg1_blocks.index == len(tg1_blocks) - 1

    chronology = Chronology(slices=slices, tg2_blocks=tg2_blocks, tg1_blocks=tg1_blocks)

    hours = chronology.hours
    if abs(hours - HOURS_PER_YEAR) > IDENTITY_TOLERANCE:
        raise DataIntegrityError(
            f"Time slice group multipliers describe {hours:g} hours per year instead of {HOURS_PER_YEAR}; "
            "check TSGROUP1 and TSGROUP2 multipliers and LTsGroup")

    logger.debug(f"Resolved chronology: {len(tg1_blocks)} group-1 blocks, {len(tg2_blocks)} group-2 blocks, "
                 f"{len(slices)} time slices")
    return chronology
