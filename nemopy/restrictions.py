"""
Restriction analysis: which activity subscripts can carry a nonzero value.

A (region, technology, mode, year) combination without any nonzero input or
output activity ratio can never produce or consume a fuel, so no activity
variables are created for it when restriction is enabled.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pandas as pd

from .data_loader import cross_frame

logger = logging.getLogger(__name__)

CHUNK_ROWS = 10000


@dataclass
class ActivityDomain:
    """Subscript domains for activity, production and use."""

    activity: pd.DataFrame      # r, l, t, m, y
    production: pd.DataFrame    # r, l, t, m, f, y, oar
    use: pd.DataFrame           # r, l, t, m, f, y, iar
    restricted: bool

    @property
    def total_activity(self):
        return self.activity[["r", "t", "l", "y"]].drop_duplicates().reset_index(drop=True)

    @property
    def annual_activity(self):
        return self.activity[["r", "t", "m", "y"]].drop_duplicates().reset_index(drop=True)


def _nonzero_combinations(chunk):
    nonzero = chunk[chunk["val"] != 0]
    return nonzero[["r", "t", "m", "y"]].drop_duplicates()


def _scan_ratios(frames, workers):
    """Find (r, t, m, y) with any nonzero ratio, one task per chunk of rows."""
    chunks = []
    for frame in frames:
        for start in range(0, len(frame), CHUNK_ROWS):
            chunks.append(frame.iloc[start:start + CHUNK_ROWS])
    if not chunks:
        return pd.DataFrame(columns=["r", "t", "m", "y"])

    with ThreadPoolExecutor(max_workers=workers) as executor:
        results = list(executor.map(_nonzero_combinations, chunks))
    return pd.concat(results, ignore_index=True).drop_duplicates().reset_index(drop=True)


def analyze_restrictions(data, years, restrictvars=True, workers=None):
    """
    Determine the activity domain for the given years.

    Args:
        data (ScenarioData): Loaded scenario
        years (list): Years being modeled
        restrictvars (bool): Prune combinations without nonzero activity ratios;
            when False the full region x slice x technology x mode x year product is used
        workers (int): Number of worker threads for the ratio scan

    Returns:
        ActivityDomain: activity, production and use domains
    """
    years = list(years)
    oar = data.param("OutputActivityRatio").frame
    iar = data.param("InputActivityRatio").frame
    oar = oar[oar["y"].isin(years)]
    iar = iar[iar["y"].isin(years)]
    slices = data.yearsplit(years)[["l", "y"]]

    if restrictvars:
        workers = workers or min(8, os.cpu_count() or 1)
        combos = _scan_ratios([oar, iar], workers)
        combos = combos[combos["r"].isin(data.regions) & combos["t"].isin(data.technologies)
                        & combos["m"].isin(data.modes)]
        activity = combos.merge(slices, on="y")
    else:
        activity = cross_frame(r=data.regions, t=data.technologies, m=data.modes, y=years).merge(slices, on="y")

    activity = activity[["r", "l", "t", "m", "y"]].astype({"y": "int64"}).reset_index(drop=True)

    production = activity.merge(oar[oar["val"] != 0].rename(columns={"val": "oar"}), on=["r", "t", "m", "y"])
    use = activity.merge(iar[iar["val"] != 0].rename(columns={"val": "iar"}), on=["r", "t", "m", "y"])

    logger.debug(f"Activity domain: {len(activity)} combinations "
                 f"({'restricted' if restrictvars else 'unrestricted'})")
    return ActivityDomain(
        activity=activity,
        production=production[["r", "l", "t", "m", "f", "y", "oar"]].reset_index(drop=True),
        use=use[["r", "l", "t", "m", "f", "y", "iar"]].reset_index(drop=True),
        restricted=restrictvars,
    )
