"""
Storage variable and constraint families.

Storage levels follow the chronology of time slices: each slice is one hour
that repeats inside its group-2 block, group-2 blocks repeat inside their
group-1 block, and group-1 blocks follow one another through the year.
"""

import logging

import pandas as pd

from .chronology import HOURS_PER_YEAR
from .constraints import interval_totals, with_rhs
from .errors import ConfigurationError
from .model import INF, ConstraintFamily, terms

logger = logging.getLogger(__name__)

RSY = ("r", "s", "y")
RSLY = ("r", "s", "l", "y")
TG1 = ("r", "s", "tg1", "y")
TG2 = ("r", "s", "tg1", "tg2", "y")


def storage_links(b, table):
    """Activity rows of technologies charging (TechnologyToStorage) or discharging a storage."""
    links = b.param(table).frame
    links = links[(links["val"] > 0) & links["s"].isin(b.data.storages)]
    return b.domain.activity.merge(links.rename(columns={"val": "ratio"})[["r", "t", "s", "m", "ratio"]],
                                   on=["r", "t", "m"])


def year_start(b, frame):
    """
    Attach the start-of-year storage level to rows with ``r``, ``s`` and ``y``.

    Adds ``_yprev`` (previous modeled year whose year-end level carries over,
    NaN for the first year of the group) and ``_start`` (constant starting
    level for the first year: StorageLevelStart at the start of a run, the
    previous group's year-end level otherwise).
    """
    previous = dict(zip(b.years[1:], b.years[:-1]))
    frame = frame.reset_index(drop=True)
    frame["_yprev"] = frame["y"].map(previous)

    if b.carry.is_start:
        initial = b.param("StorageLevelStart").lookup(frame[["r", "s"]].drop_duplicates(), "_start")
    else:
        initial = b.carry.storage_level.rename(columns={"val": "_start"})
    frame = frame.merge(initial[["r", "s", "_start"]], on=["r", "s"], how="left")
    first = frame["_yprev"].isna()
    frame["_start"] = frame["_start"].astype(float).fillna(0.0).where(first, 0.0)
    return frame


def _linked(frame):
    linked = frame[frame["_yprev"].notna()]
    return linked.astype({"_yprev": "int64"})


def declare_variables(b):
    data = b.data
    if not data.storages:
        return
    if b.chronology is None:
        raise ConfigurationError("Storage requires time slice grouping; define TSGROUP1, TSGROUP2 and LTsGroup "
                                 f"for storages {', '.join(data.storages)}")

    model = b.model
    rsy = b.rsy
    chronology = b.chronology

    rsly = b.cross(r=data.regions, s=data.storages).merge(
        chronology.slices[["l"]], how="cross").merge(pd.DataFrame({"y": b.years}), how="cross")
    model.add_variables("vrateofstoragechargenn", RSLY, rsly)
    model.add_variables("vrateofstoragedischargenn", RSLY, rsly)
    model.add_variables("vstorageleveltsend", RSLY, rsly)

    tg1 = rsy.merge(chronology.tg1_blocks[["tg1"]], how="cross")
    model.add_variables("vstorageleveltsgroup1start", TG1, tg1)
    model.add_variables("vstorageleveltsgroup1end", TG1, tg1)
    tg2 = rsy.merge(chronology.tg2_blocks[["tg1", "tg2"]], how="cross")
    model.add_variables("vstorageleveltsgroup2start", TG2, tg2)
    model.add_variables("vstorageleveltsgroup2end", TG2, tg2)
    model.add_variables("vstoragelevelyearend", RSY, rsy)

    for name in ("vstoragelowerlimit", "vstorageupperlimit", "vaccumulatednewstoragecapacity",
                 "vnewstoragecapacity", "vcapitalinvestmentstorage", "vdiscountedcapitalinvestmentstorage",
                 "vsalvagevaluestorage", "vdiscountedsalvagevaluestorage"):
        model.add_variables(name, RSY, rsy)
    model.add_variables("vtotaldiscountedstoragecost", RSY, rsy, lower=-INF)


def _storage_modeled(b):
    return b.has("vstorageleveltsend")


# Charging and discharging

def charge_and_discharge(b):
    if not _storage_modeled(b):
        return None
    families = []
    for table, name, family_name in (
            ("TechnologyToStorage", "vrateofstoragechargenn", "NS1_RateOfStorageCharge"),
            ("TechnologyFromStorage", "vrateofstoragedischargenn", "NS2_RateOfStorageDischarge")):
        rate = b.var(name)
        families.append(ConstraintFamily.from_terms(
            family_name, RSLY,
            [terms(storage_links(b, table), b.var("vrateofactivity"), RSLY, "ratio"),
             terms(rate.keys, rate, RSLY, -1.0)],
            "=="))
    return families


def rate_limits(b):
    if not _storage_modeled(b):
        return None
    families = []
    for table, name, family_name in (
            ("StorageMaxChargeRate", "vrateofstoragechargenn", "NS15_StorageMaxChargeRate"),
            ("StorageMaxDischargeRate", "vrateofstoragedischargenn", "NS16_StorageMaxDischargeRate")):
        rate = b.var(name)
        frame = b.param(table).rows(rate.keys, "limit")
        if len(frame):
            families.append(ConstraintFamily.from_terms(family_name, RSLY, [terms(frame, rate, RSLY)], "<=",
                                                        with_rhs(frame, RSLY, frame["limit"])))
    return families


# Chronological levels

def slice_levels(b):
    """Level at the end of each slice: slice start plus one hour of net charging."""
    if not _storage_modeled(b):
        return None
    level = b.var("vstorageleveltsend")
    frame = level.keys.merge(b.chronology.slices[["l", "tg1", "tg2", "first_in_tg2", "prev_l"]], on="l")
    first = frame[frame["first_in_tg2"].astype(bool)]
    later = frame[~frame["first_in_tg2"].astype(bool)]
    hour = 1.0 / HOURS_PER_YEAR
    return ConstraintFamily.from_terms(
        "NS3_StorageLevelTsEnd", RSLY,
        [terms(frame, level, RSLY),
         terms(first, b.var("vstorageleveltsgroup2start"), RSLY, -1.0),
         terms(later, level, RSLY, -1.0, on={"l": "prev_l"}),
         terms(frame, b.var("vrateofstoragechargenn"), RSLY, -hour),
         terms(frame, b.var("vrateofstoragedischargenn"), RSLY, hour)],
        "==")


def group1_starts(b):
    if not _storage_modeled(b):
        return None
    start = b.var("vstorageleveltsgroup1start")
    frame = start.keys.merge(b.chronology.tg1_blocks[["tg1", "first_in_year", "prev_tg1"]], on="tg1")
    first = year_start(b, frame[frame["first_in_year"].astype(bool)])
    later = frame[~frame["first_in_year"].astype(bool)]
    return ConstraintFamily.from_terms(
        "NS4_StorageLevelTsGroup1Start", TG1,
        [terms(frame, start, TG1),
         terms(_linked(first), b.var("vstoragelevelyearend"), TG1, -1.0, on={"y": "_yprev"}),
         terms(later, b.var("vstorageleveltsgroup1end"), TG1, -1.0, on={"tg1": "prev_tg1"})],
        "==", with_rhs(first, TG1, first["_start"]))


def group2_starts(b):
    if not _storage_modeled(b):
        return None
    start = b.var("vstorageleveltsgroup2start")
    frame = start.keys.merge(b.chronology.tg2_blocks[["tg1", "tg2", "first_in_tg1", "prev_tg2"]],
                             on=["tg1", "tg2"])
    first = frame[frame["first_in_tg1"].astype(bool)]
    later = frame[~frame["first_in_tg1"].astype(bool)]
    return ConstraintFamily.from_terms(
        "NS5_StorageLevelTsGroup2Start", TG2,
        [terms(frame, start, TG2),
         terms(first, b.var("vstorageleveltsgroup1start"), TG2, -1.0),
         terms(later, b.var("vstorageleveltsgroup2end"), TG2, -1.0, on={"tg2": "prev_tg2"})],
        "==")


def group2_ends(b):
    """A group-2 block repeats its slices ``multiplier`` times."""
    if not _storage_modeled(b):
        return None
    end = b.var("vstorageleveltsgroup2end")
    frame = end.keys.merge(b.chronology.tg2_blocks[["tg1", "tg2", "tg2m", "last_l"]], on=["tg1", "tg2"])
    frame["_keep"] = frame["tg2m"] - 1.0
    frame["_last"] = -frame["tg2m"]
    return ConstraintFamily.from_terms(
        "NS6_StorageLevelTsGroup2End", TG2,
        [terms(frame, end, TG2),
         terms(frame, b.var("vstorageleveltsgroup2start"), TG2, "_keep"),
         terms(frame, b.var("vstorageleveltsend"), TG2, "_last", on={"l": "last_l"})],
        "==")


def group1_ends(b):
    if not _storage_modeled(b):
        return None
    end = b.var("vstorageleveltsgroup1end")
    frame = end.keys.merge(b.chronology.tg1_blocks[["tg1", "tg1m", "last_tg2"]], on="tg1")
    frame["_keep"] = frame["tg1m"] - 1.0
    frame["_last"] = -frame["tg1m"]
    return ConstraintFamily.from_terms(
        "NS7_StorageLevelTsGroup1End", TG1,
        [terms(frame, end, TG1),
         terms(frame, b.var("vstorageleveltsgroup1start"), TG1, "_keep"),
         terms(frame, b.var("vstorageleveltsgroup2end"), TG1, "_last", on={"tg2": "last_tg2"})],
        "==")


def _flagged(b, frame, flag):
    return frame[frame["s"].isin(b.data.net_zero_storages(flag))]


def year_ends(b):
    """Year-end level: start of year plus the net charge of the whole year."""
    if not _storage_modeled(b):
        return None
    end = b.var("vstoragelevelyearend")
    frame = year_start(b, end.keys)
    rates = b.var("vrateofstoragechargenn").keys.merge(b.ys, on=["l", "y"])
    rates["_discharge"] = -rates["ys"]
    families = [ConstraintFamily.from_terms(
        "NS8_StorageLevelYearEnd", RSY,
        [terms(frame, end, RSY, -1.0),
         terms(_linked(frame), end, RSY, 1.0, on={"y": "_yprev"}),
         terms(rates, b.var("vrateofstoragechargenn"), RSY, "ys"),
         terms(rates, b.var("vrateofstoragedischargenn"), RSY, "_discharge")],
        "==", with_rhs(frame, RSY, -frame["_start"]))]

    # Storages flagged netzeroyear end each year at the level they started it
    flagged = _flagged(b, frame, "netzeroyear")
    if len(flagged):
        families.append(ConstraintFamily.from_terms(
            "NS8a_StorageLevelYearEndNetZero", RSY,
            [terms(flagged, end, RSY, -1.0), terms(_linked(flagged), end, RSY, 1.0, on={"y": "_yprev"})],
            "==", with_rhs(flagged, RSY, -flagged["_start"])))
    return families


def net_zero_groups(b):
    if not _storage_modeled(b):
        return None
    families = []
    start = b.var("vstorageleveltsgroup1start")
    flagged = _flagged(b, start.keys, "netzerotg1")
    if len(flagged):
        families.append(ConstraintFamily.from_terms(
            "NS7a_StorageLevelTsGroup1NetZero", TG1,
            [terms(flagged, start, TG1), terms(flagged, b.var("vstorageleveltsgroup1end"), TG1, -1.0)],
            "=="))
    start = b.var("vstorageleveltsgroup2start")
    flagged = _flagged(b, start.keys, "netzerotg2")
    if len(flagged):
        families.append(ConstraintFamily.from_terms(
            "NS6a_StorageLevelTsGroup2NetZero", TG2,
            [terms(flagged, start, TG2), terms(flagged, b.var("vstorageleveltsgroup2end"), TG2, -1.0)],
            "=="))
    return families


def level_limits(b):
    """Every chronological level stays between the storage's lower and upper limits."""
    if not _storage_modeled(b):
        return None
    families = []
    for name, dims, label in (("vstorageleveltsend", RSLY, "TsEnd"),
                              ("vstorageleveltsgroup1start", TG1, "TsGroup1Start"),
                              ("vstorageleveltsgroup1end", TG1, "TsGroup1End"),
                              ("vstorageleveltsgroup2start", TG2, "TsGroup2Start"),
                              ("vstorageleveltsgroup2end", TG2, "TsGroup2End"),
                              ("vstoragelevelyearend", RSY, "YearEnd")):
        level = b.var(name)
        for bound, sense in (("vstoragelowerlimit", ">="), ("vstorageupperlimit", "<=")):
            families.append(ConstraintFamily.from_terms(
                f"NS9_StorageLevel{label}{'Lower' if sense == '>=' else 'Upper'}Limit", dims,
                [terms(level.keys, level, dims), terms(level.keys, b.var(bound), dims, -1.0)],
                sense))
    return families


# Storage capacity

def storage_capacity(b):
    if not _storage_modeled(b):
        return None
    rsy = b.rsy
    life = b.param("OperationalLifeStorage").lookup(b.cross(r=b.data.regions, s=b.data.storages), "ols")
    frame = rsy.merge(life, on=["r", "s"])

    pairs = frame.merge(pd.DataFrame({"yy": b.years}), how="cross")
    age = pairs["y"] - pairs["yy"]
    pairs = pairs[(age >= 0) & (age < pairs["ols"])]

    carried = frame.merge(b.carry.new_storage.rename(columns={"y": "yy", "val": "newcap"}), on=["r", "s"])
    age = carried["y"] - carried["yy"]
    carried = carried[(age >= 0) & (age < carried["ols"])]
    carried_rhs = carried.groupby(list(RSY), as_index=False)["newcap"].sum()
    carried_rhs["rhs"] = -carried_rhs["newcap"]

    accumulated = ConstraintFamily.from_terms(
        "SI2_AccumulatedNewStorageCapacity", RSY,
        [terms(pairs, b.var("vnewstoragecapacity"), RSY, on={"y": "yy"}),
         terms(frame, b.var("vaccumulatednewstoragecapacity"), RSY, -1.0)],
        "==", carried_rhs)

    residual = b.param("ResidualStorageCapacity").lookup(rsy, "rsc")
    upper = ConstraintFamily.from_terms(
        "SI1_StorageUpperLimit", RSY,
        [terms(residual, b.var("vaccumulatednewstoragecapacity"), RSY),
         terms(residual, b.var("vstorageupperlimit"), RSY, -1.0)],
        "==", with_rhs(residual, RSY, -residual["rsc"]))

    minimum = b.param("MinStorageCharge").lookup(rsy, "msc")
    minimum["coeff"] = minimum["msc"]
    lower = ConstraintFamily.from_terms(
        "SI3_StorageLowerLimit", RSY,
        [terms(minimum, b.var("vstorageupperlimit"), RSY, "coeff"),
         terms(minimum, b.var("vstoragelowerlimit"), RSY, -1.0)],
        "==")
    return [accumulated, upper, lower]


def full_load_hours(b):
    """New storage capacity sized to run the discharging technologies' new capacity for the given hours."""
    if not _storage_modeled(b):
        return None
    hours = b.param("StorageFullLoadHours")
    if not hours.has_values():
        return None
    frame = hours.rows(b.rsy, "flh")

    links = b.param("TechnologyFromStorage").frame
    links = links[links["val"] > 0][["r", "t", "s"]].drop_duplicates()
    discharging = frame.merge(links, on=["r", "s"])
    discharging = b.param("CapacityToActivityUnit").lookup(discharging, "cta")
    discharging["coeff"] = -discharging["flh"] * discharging["cta"] / HOURS_PER_YEAR
    return ConstraintFamily.from_terms(
        "NS18_FullLoadHours", RSY,
        [terms(frame, b.var("vnewstoragecapacity"), RSY),
         terms(discharging, b.var("vnewcapacity"), RSY, "coeff")],
        "==")


def storage_capacity_limits(b):
    if not _storage_modeled(b):
        return None
    families = []
    for table, name, sense, family_name in (
            ("TotalAnnualMaxCapacityStorage", "vstorageupperlimit", "<=", "SCC1_TotalAnnualMaxCapacityStorage"),
            ("TotalAnnualMinCapacityStorage", "vstorageupperlimit", ">=", "SCC2_TotalAnnualMinCapacityStorage")):
        param = b.param(table)
        if not param.has_values():
            continue
        frame = param.rows(b.rsy, "limit")
        families.append(ConstraintFamily.from_terms(family_name, RSY, [terms(frame, b.var(name), RSY)], sense,
                                                    with_rhs(frame, RSY, frame["limit"])))

    for table, sense, family_name in (
            ("TotalAnnualMaxCapacityInvestmentStorage", "<=", "NCC1S_TotalAnnualMaxNewCapacityStorage"),
            ("TotalAnnualMinCapacityInvestmentStorage", ">=", "NCC2S_TotalAnnualMinNewCapacityStorage")):
        param = b.param(table)
        if not param.has_values():
            continue
        frame = interval_totals(b, param, b.rsy)
        families.append(ConstraintFamily.from_terms(family_name, RSY,
                                                    [terms(frame, b.var("vnewstoragecapacity"), RSY)], sense,
                                                    with_rhs(frame, RSY, frame["limit"])))
    return families


# Storage costs

def storage_costs(b):
    if not _storage_modeled(b):
        return None
    frame = b.param("CapitalCostStorage").lookup(b.rsy, "cc")
    frame = b.param("OperationalLifeStorage").lookup(frame, "ols")
    frame["_salvage"] = -frame["cc"] * b.salvage_factors(frame, "ols")
    frame["_salvagedisc"] = b.salvage_discount(frame)
    frame = b.param("InterestRateStorage").lookup(frame, "ir")
    frame = frame.merge(b.discount_rates(), on="r", how="left")
    frame["_capdisc"] = b.capital_factors(frame) * b.finance_factors(frame["ir"], frame["ols"], frame["dr"])

    return [
        ConstraintFamily.from_terms(
            "SI4_UndiscountedCapitalInvestmentStorage", RSY,
            [terms(frame, b.var("vnewstoragecapacity"), RSY, "cc"),
             terms(frame, b.var("vcapitalinvestmentstorage"), RSY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "SI5_DiscountingCapitalInvestmentStorage", RSY,
            [terms(frame, b.var("vcapitalinvestmentstorage"), RSY, "_capdisc"),
             terms(frame, b.var("vdiscountedcapitalinvestmentstorage"), RSY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "SI6_SalvageValueStorage", RSY,
            [terms(frame, b.var("vsalvagevaluestorage"), RSY),
             terms(frame, b.var("vnewstoragecapacity"), RSY, "_salvage")],
            "=="),
        ConstraintFamily.from_terms(
            "SI9_SalvageValueStorageDiscountedToStartYear", RSY,
            [terms(frame, b.var("vsalvagevaluestorage"), RSY, "_salvagedisc"),
             terms(frame, b.var("vdiscountedsalvagevaluestorage"), RSY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "SI10_TotalDiscountedCostByStorage", RSY,
            [terms(frame, b.var("vdiscountedcapitalinvestmentstorage"), RSY),
             terms(frame, b.var("vdiscountedsalvagevaluestorage"), RSY, -1.0),
             terms(frame, b.var("vtotaldiscountedstoragecost"), RSY, -1.0)],
            "=="),
    ]


FAMILIES = [
    charge_and_discharge,
    rate_limits,
    slice_levels,
    group1_starts,
    group2_starts,
    group2_ends,
    group1_ends,
    year_ends,
    net_zero_groups,
    level_limits,
    storage_capacity,
    full_load_hours,
    storage_capacity_limits,
    storage_costs,
]
