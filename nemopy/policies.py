"""
Policy constraint families: capacity and activity limits, reserve margin,
renewable targets, minimum production shares, minimum utilization, ramping
and emissions.
"""

import logging

import pandas as pd

from .constraints import RFY, RTY, interval_totals, negated, with_rhs
from .errors import ConfigurationError
from .model import ConstraintFamily, terms

logger = logging.getLogger(__name__)

RTEY = ("r", "t", "e", "y")
REY = ("r", "e", "y")
DEFAULT_RAMPING_RESET = 2


def emission_ratios(b):
    """Nonzero emission activity ratios on the annual activity domain: (r, t, e, m, y, ear)."""
    ratios = b.param("EmissionActivityRatio").frame
    ratios = ratios[(ratios["val"] != 0) & ratios["e"].isin(b.data.emissions)]
    return b.domain.annual_activity.merge(ratios.rename(columns={"val": "ear"}), on=["r", "t", "m", "y"])


def _limit(b, table, frame, variable, dims, sense, family_name, column="limit"):
    param = b.param(table)
    if not param.has_values():
        return None
    rows = param.rows(frame, column)
    return ConstraintFamily.from_terms(family_name, dims, [terms(rows, variable, dims)], sense,
                                       with_rhs(rows, dims, rows[column]))


def declare_variables(b):
    model = b.model
    data = b.data
    rty = b.rty

    if b.param("REMinProductionTarget").has_values() or b.param("REMinProductionTargetRG").has_values():
        model.add_variables("vtotalreproductionannual", RFY, b.rfy)

    if data.emissions:
        ratios = emission_ratios(b)
        model.add_variables("vannualtechnologyemissionbymode", ("r", "t", "e", "m", "y"), ratios)
        rtey = b.cross(r=data.regions, t=data.technologies, e=data.emissions, y=b.years)
        model.add_variables("vannualtechnologyemission", RTEY, rtey)
        model.add_variables("vannualtechnologyemissionspenaltybyemission", RTEY, rtey)
        model.add_variables("vannualtechnologyemissionspenalty", RTY, rty)
        model.add_variables("vdiscountedtechnologyemissionspenalty", RTY, rty)
        model.add_variables("vannualemissions", REY, b.cross(r=data.regions, e=data.emissions, y=b.years))
        model.add_variables("vmodelperiodemissions", ("r", "e"), b.cross(r=data.regions, e=data.emissions))


# Capacity and activity limits

def capacity_limits(b):
    capacity = b.var("vtotalcapacityannual")
    return [
        _limit(b, "TotalAnnualMaxCapacity", b.rty, capacity, RTY, "<=", "TCC1_TotalAnnualMaxCapacityConstraint"),
        _limit(b, "TotalAnnualMinCapacity", b.rty, capacity, RTY, ">=", "TCC2_TotalAnnualMinCapacityConstraint"),
    ]


def new_capacity_limits(b):
    """Investment limits; a modeled year builds for every year of its interval."""
    families = []
    for table, sense, family_name in (
            ("TotalAnnualMaxCapacityInvestment", "<=", "NCC1_TotalAnnualMaxNewCapacityConstraint"),
            ("TotalAnnualMinCapacityInvestment", ">=", "NCC2_TotalAnnualMinNewCapacityConstraint")):
        param = b.param(table)
        if not param.has_values():
            continue
        frame = interval_totals(b, param, b.rty)
        families.append(ConstraintFamily.from_terms(family_name, RTY, [terms(frame, b.var("vnewcapacity"), RTY)],
                                                    sense, with_rhs(frame, RTY, frame["limit"])))
    return families


def annual_activity_limits(b):
    activity = b.var("vtotaltechnologyannualactivity")
    return [
        _limit(b, "TotalTechnologyAnnualActivityUpperLimit", b.rty, activity, RTY, "<=",
               "AAC2_TotalAnnualTechnologyActivityUpperLimit"),
        _limit(b, "TotalTechnologyAnnualActivityLowerLimit", b.rty, activity, RTY, ">=",
               "AAC3_TotalAnnualTechnologyActivityLowerLimit"),
    ]


def model_period_activity_limits(b):
    """
    Model-period activity limits.

    The lower limit only binds in the last foresight group, when the whole
    period's activity is known.
    """
    activity = b.var("vtotaltechnologymodelperiodactivity")
    families = [_limit(b, "TotalTechnologyModelPeriodActivityUpperLimit", activity.keys, activity, ("r", "t"),
                       "<=", "TAC2_TotalModelHorizonTechnologyActivityUpperLimit")]
    if b.final_group:
        families.append(_limit(b, "TotalTechnologyModelPeriodActivityLowerLimit", activity.keys, activity,
                               ("r", "t"), ">=", "TAC3_TotalModelHorizonTechnologyActivityLowerLimit"))
    return families


# Reserve margin and renewables

def reserve_margin(b):
    """Tagged capacity covers the margin above production in every slice."""
    margin = b.param("ReserveMargin")
    if not margin.has_values():
        return None
    dims = ("r", "l", "f", "y")
    rows = margin.rows(b.rfy, "rm")
    rows = rows[rows["rm"] > 0].merge(b.ys[["l", "y"]], on="y")
    if len(rows) == 0:
        return None
    rows["coeff"] = -rows["rm"]

    tagged = b.param("ReserveMarginTagTechnology").rows(
        b.cross(r=b.data.regions, t=b.data.technologies, f=b.data.fuels, y=b.years), "tag")
    tagged = tagged[tagged["tag"] != 0]
    tagged = b.param("CapacityToActivityUnit").lookup(tagged, "cta")
    tagged = tagged.merge(rows[list(dims)], on=["r", "f", "y"])
    tagged["coeff"] = tagged["tag"] * tagged["cta"]

    return ConstraintFamily.from_terms(
        "RM3_ReserveMargin_TechnologiesIncluded_In_Activity_Units", dims,
        [terms(tagged, b.var("vtotalcapacityannual"), dims, "coeff"),
         terms(rows, b.var("vrateofproduction"), dims, "coeff")],
        ">=")


def renewable_production(b):
    if not b.has("vtotalreproductionannual"):
        return None
    total = b.var("vtotalreproductionannual")
    production = b.var("vproductionbytechnologyannual")
    tagged = b.param("RETagTechnology").lookup(production.keys, "tag")
    tagged = tagged[tagged["tag"] != 0]
    return ConstraintFamily.from_terms(
        "RE4_EnergyConstraint", RFY,
        [terms(tagged, production, RFY, "tag"), terms(total.keys, total, RFY, -1.0)],
        "==")


def renewable_targets(b):
    if not b.has("vtotalreproductionannual"):
        return None
    families = []

    target = b.param("REMinProductionTarget")
    if target.has_values():
        rows = target.rows(b.rfy, "target")
        rows = rows[rows["target"] > 0]
        rows["coeff"] = -rows["target"]
        families.append(ConstraintFamily.from_terms(
            "RE5_FuelUseByTechnologyAnnual", RFY,
            [terms(rows, b.var("vtotalreproductionannual"), RFY),
             terms(rows, b.var("vproductionannualnn"), RFY, "coeff")],
            ">="))

    group_target = b.param("REMinProductionTargetRG")
    if group_target.has_values() and b.data.regiongroups:
        dims = ("rg", "f", "y")
        rows = group_target.rows(b.cross(rg=b.data.regiongroups, f=b.data.fuels, y=b.years), "target")
        rows = rows[rows["target"] > 0].merge(b.data.rrgroup[["rg", "r"]], on="rg")
        rows["coeff"] = -rows["target"]
        families.append(ConstraintFamily.from_terms(
            "RE5RG_FuelUseByTechnologyAnnualRegionGroup", dims,
            [terms(rows, b.var("vtotalreproductionannual"), dims),
             terms(rows, b.var("vproductionannualnn"), dims, "coeff")],
            ">="))
    return families


def minimum_production_share(b):
    share = b.param("MinShareProduction")
    if not share.has_values():
        return None
    dims = ("r", "t", "f", "y")
    production = b.var("vproductionbytechnologyannual")
    rows = share.rows(b.cross(r=b.data.regions, t=b.data.technologies, f=b.data.fuels, y=b.years), "share")
    rows = rows[rows["share"] > 0]
    rows["coeff"] = -rows["share"]
    return ConstraintFamily.from_terms(
        "MinShareProduction", dims,
        [terms(rows, production, dims), terms(rows, b.var("vproductionannualnn"), dims, "coeff")],
        ">=")


def minimum_utilization(b):
    utilization = b.param("MinimumUtilization")
    if not utilization.has_values():
        return None
    dims = ("r", "t", "l", "y")
    rows = utilization.rows(b.domain.total_activity, "mu")
    rows = rows[rows["mu"] > 0]
    rows = b.param("CapacityFactor").lookup(rows, "cf")
    rows = b.param("CapacityToActivityUnit").lookup(rows, "cta")
    rows["coeff"] = -rows["mu"] * rows["cf"] * rows["cta"]
    return ConstraintFamily.from_terms(
        "MinimumUtilization", dims,
        [terms(rows, b.var("vrateoftotalactivity"), dims),
         terms(rows, b.var("vtotalcapacityannual"), dims, "coeff")],
        ">=")


def ramping(b):
    """
    Limit the change of a technology's activity between consecutive slices.

    ``RampingReset`` decides which slices start fresh: 0 the first slice of
    the year, 1 also the first slice of each group 1, 2 also the first slice
    of each group 2.
    """
    ramp = b.param("RampRate")
    if not ramp.has_values():
        return None
    if b.chronology is None:
        raise ConfigurationError("RampRate requires time slice grouping; define TSGROUP1, TSGROUP2 and LTsGroup")

    dims = ("r", "t", "l", "y")
    rows = ramp.rows(b.domain.total_activity, "rr")
    rows = rows[(rows["rr"] > 0) & (rows["rr"] < 1)]

    reset = b.param("RampingReset")
    levels = pd.DataFrame({"r": b.data.regions}).merge(reset.frame.rename(columns={"val": "level"}), on="r",
                                                       how="left")
    levels["level"] = levels["level"].fillna(DEFAULT_RAMPING_RESET if reset.default is None else reset.default)
    exempt = pd.concat([b.chronology.ramp_reset(int(level)).rename("exempt").reset_index().assign(r=region)
                        for region, level in zip(levels["r"], levels["level"])], ignore_index=True)

    rows = rows.merge(exempt, on=["r", "l"]).merge(b.chronology.slices[["l", "prev_l"]], on="l")
    rows = rows[~rows["exempt"].astype(bool) & rows["prev_l"].notna()]
    if len(rows) == 0:
        return None
    rows = b.param("CapacityToActivityUnit").lookup(rows, "cta")
    rows["_up"] = -rows["rr"] * rows["cta"]
    rows["_down"] = rows["rr"] * rows["cta"]

    activity = b.var("vrateoftotalactivity")
    capacity = b.var("vtotalcapacityannual")
    change = [terms(rows, activity, dims), terms(rows, activity, dims, -1.0, on={"l": "prev_l"})]
    return [
        ConstraintFamily.from_terms("RampUp", dims, change + [terms(rows, capacity, dims, "_up")], "<="),
        ConstraintFamily.from_terms("RampDown", dims, change + [terms(rows, capacity, dims, "_down")], ">="),
    ]


# Emissions

def technology_emissions(b):
    if not b.data.emissions:
        return None
    by_mode = b.var("vannualtechnologyemissionbymode")
    dims = ("r", "t", "e", "m", "y")
    ratios = emission_ratios(b)
    emission = b.var("vannualtechnologyemission")
    return [
        ConstraintFamily.from_terms(
            "E1_AnnualEmissionProductionByMode", dims,
            [terms(ratios, b.var("vtotalannualtechnologyactivitybymode"), dims, "ear"),
             terms(ratios, by_mode, dims, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "E2_AnnualEmissionProduction", RTEY,
            [terms(by_mode.keys, by_mode, RTEY), terms(emission.keys, emission, RTEY, -1.0)],
            "=="),
    ]


def emission_penalties(b):
    if not b.data.emissions:
        return None
    emission = b.var("vannualtechnologyemission")
    by_emission = b.var("vannualtechnologyemissionspenaltybyemission")
    penalty = b.var("vannualtechnologyemissionspenalty")
    frame = b.param("EmissionsPenalty").lookup(emission.keys, "ep")

    ratios = b.param("EmissionActivityRatio").frame
    ratios = ratios[(ratios["val"] != 0) & ratios["e"].isin(b.data.emissions)]
    ratios = b.param("EmissionsPenalty").lookup(ratios.rename(columns={"val": "ear"}), "ep")
    ratios["val"] = ratios["ear"] * ratios["ep"]
    rate = ratios.groupby(["r", "t", "m", "y"], as_index=False)["val"].sum()

    by_mode = b.var("vtotalannualtechnologyactivitybymode")
    found, constants = b.interpolate(by_mode.keys, RTY, by_mode, rate=rate)
    found = negated(found)
    discounted = b.var("vdiscountedtechnologyemissionspenalty")

    return [
        ConstraintFamily.from_terms(
            "E3_EmissionsPenaltyByTechAndEmission", RTEY,
            [terms(frame, emission, RTEY, "ep"), terms(frame, by_emission, RTEY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "E4_EmissionsPenaltyByTechnology", RTY,
            [terms(by_emission.keys, by_emission, RTY), terms(penalty.keys, penalty, RTY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "E5_DiscountedEmissionsPenaltyByTechnology", RTY,
            [terms(discounted.keys, discounted, RTY)] + found,
            "==", constants),
    ]


def annual_emissions(b):
    if not b.data.emissions:
        return None
    emission = b.var("vannualtechnologyemission")
    annual = b.var("vannualemissions")
    period = b.var("vmodelperiodemissions")

    accounting = ConstraintFamily.from_terms(
        "E6_EmissionsAccounting1", REY,
        [terms(emission.keys, emission, REY), terms(annual.keys, annual, REY, -1.0)],
        "==")

    dims = ("r", "e")
    found, constants = b.interpolate(annual.keys, dims, annual, discount=False)
    rhs = [constants]
    if b.carry.is_start:
        exogenous = b.param("ModelPeriodExogenousEmission").lookup(period.keys, "rhs")
        rhs.append(exogenous[["r", "e", "rhs"]])
    rhs.append(b.carry.period_emissions.rename(columns={"val": "rhs"})[["r", "e", "rhs"]])
    rhs = pd.concat(rhs, ignore_index=True)
    rhs["rhs"] = -rhs["rhs"].astype(float)
    period_total = ConstraintFamily.from_terms(
        "E7_EmissionsAccounting2", dims,
        found + [terms(period.keys, period, dims, -1.0)],
        "==", rhs)
    return [accounting, period_total]


def emission_limits(b):
    if not b.data.emissions:
        return None
    families = []

    limit = b.param("AnnualEmissionLimit")
    if limit.has_values():
        annual = b.var("vannualemissions")
        rows = limit.rows(annual.keys, "limit")
        rows = b.param("AnnualExogenousEmission").lookup(rows, "exogenous")
        families.append(ConstraintFamily.from_terms(
            "E8_AnnualEmissionsLimit", REY, [terms(rows, annual, REY)], "<=",
            with_rhs(rows, REY, rows["limit"] - rows["exogenous"])))

    period = b.var("vmodelperiodemissions")
    families.append(_limit(b, "ModelPeriodEmissionLimit", period.keys, period, ("r", "e"), "<=",
                           "E9_ModelPeriodEmissionsLimit"))
    return families


FAMILIES = [
    capacity_limits,
    new_capacity_limits,
    annual_activity_limits,
    model_period_activity_limits,
    reserve_margin,
    renewable_production,
    renewable_targets,
    minimum_production_share,
    minimum_utilization,
    ramping,
    technology_emissions,
    emission_penalties,
    annual_emissions,
    emission_limits,
]
