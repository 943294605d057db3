"""
Core variable and constraint families: activity, capacity, production and
use, demand balances, trade and technology costs.

Every ``FAMILIES`` entry takes a BuildContext and returns one or more staged
ConstraintFamily objects (or None when the family has no rows).
"""

import logging

import numpy as np
import pandas as pd

from .model import INF, ConstraintFamily, terms

logger = logging.getLogger(__name__)

RTY = ("r", "t", "y")
RLFY = ("r", "l", "f", "y")
RFY = ("r", "f", "y")


def negated(frames):
    """Term frames with flipped coefficient signs."""
    result = []
    for frame in frames:
        frame = frame.copy()
        frame["coeff"] = -frame["coeff"]
        result.append(frame)
    return result


def with_rhs(frame, dims, values):
    """Right-hand side frame from subscripts and values."""
    rhs = frame[list(dims)].copy()
    rhs["rhs"] = np.asarray(values, dtype=float)
    return rhs


def interval_totals(b, param, frame, column="limit"):
    """
    Sum a year-subscripted parameter over the calendar years each modeled year represents.

    Rows of ``frame`` without a value in any of their interval years are dropped.
    """
    keys = [col for col in param.dims if col in frame.columns]
    expanded = frame[keys].drop_duplicates().merge(b.intervals.weights()[["y", "x"]], on="y")
    expanded = expanded.rename(columns={"y": "_ymod"}).rename(columns={"x": "y"})
    expanded = param.rows(expanded, column)
    expanded = expanded.drop(columns="y").rename(columns={"_ymod": "y"})
    return expanded.groupby(keys, as_index=False)[column].sum()


def slice_frame(b):
    """(r, l, f, y) rows for every region, fuel and time slice of the modeled years."""
    return b.cross(r=b.data.regions, f=b.data.fuels).merge(b.ys[["l", "y"]], how="cross")[list(RLFY)]


def transmission_fuels(b):
    """(r, f, y) combinations balanced at the node level."""
    enabled = b.data.transmission_years(b.years)
    return enabled[["r", "f", "y"]].drop_duplicates()


def non_nodal(b, frame):
    """Rows of ``frame`` whose (r, f, y) is balanced at the region level."""
    nodal = transmission_fuels(b)
    if len(nodal) == 0:
        return frame
    marked = frame.merge(nodal.assign(_nodal=True), on=["r", "f", "y"], how="left")
    return frame[marked["_nodal"].isna().to_numpy()]


def demand_frame(b):
    """Specified demand per slice: (r, l, f, y, demand, ys)."""
    annual = b.param("SpecifiedAnnualDemand").rows(b.rfy, "sad")
    annual = annual[annual["sad"] != 0]
    frame = annual.merge(b.ys, on="y")
    frame = b.param("SpecifiedDemandProfile").lookup(frame, "sdp")
    frame["demand"] = frame["sad"] * frame["sdp"]
    return frame[["r", "l", "f", "y", "demand", "ys"]]


def trade_routes(b):
    """(r, rr, f, y, trv) for every trade route, in both directions."""
    keys = b.cross(r=b.data.regions, rr=b.data.regions, f=b.data.fuels, y=b.years)
    routes = b.param("TradeRoute").rows(keys, "trv")
    routes = routes[(routes["trv"] != 0) & (routes["r"] != routes["rr"])]
    reverse = routes.rename(columns={"r": "rr", "rr": "r"})
    both = pd.concat([routes, reverse], ignore_index=True)
    return both.drop_duplicates(subset=["r", "rr", "f", "y"]).reset_index(drop=True)


def declare_variables(b):
    model = b.model
    data = b.data
    domain = b.domain
    rty = b.rty

    model.add_variables("vrateofactivity", ("r", "l", "t", "m", "y"), domain.activity)
    model.add_variables("vrateoftotalactivity", ("r", "t", "l", "y"), domain.total_activity)
    model.add_variables("vtotalannualtechnologyactivitybymode", ("r", "t", "m", "y"), domain.annual_activity)
    model.add_variables("vtotaltechnologyannualactivity", RTY, rty)
    model.add_variables("vtotaltechnologymodelperiodactivity", ("r", "t"),
                        b.cross(r=data.regions, t=data.technologies))

    model.add_variables("vnewcapacity", RTY, rty)
    model.add_variables("vaccumulatednewcapacity", RTY, rty)
    model.add_variables("vtotalcapacityannual", RTY, rty)

    units = b.param("CapacityOfOneTechnologyUnit").rows(rty, "cot")
    model.add_variables("vnumberofnewtechnologyunits", RTY, units[units["cot"] != 0], integer=True)

    production = domain.production
    use = domain.use
    if b.saving("vrateofproductionbytechnologybymode"):
        model.add_variables("vrateofproductionbytechnologybymode", ("r", "l", "t", "m", "f", "y"), production)
    if b.saving("vrateofusebytechnologybymode"):
        model.add_variables("vrateofusebytechnologybymode", ("r", "l", "t", "m", "f", "y"), use)
    model.add_variables("vrateofproductionbytechnology", ("r", "l", "t", "f", "y"), production)
    model.add_variables("vrateofusebytechnology", ("r", "l", "t", "f", "y"), use)
    if b.saving("vproductionbytechnology"):
        model.add_variables("vproductionbytechnology", ("r", "l", "t", "f", "y"), production)
    if b.saving("vusebytechnology"):
        model.add_variables("vusebytechnology", ("r", "l", "t", "f", "y"), use)
    model.add_variables("vproductionbytechnologyannual", ("r", "t", "f", "y"), production)
    model.add_variables("vusebytechnologyannual", ("r", "t", "f", "y"), use)

    slices = slice_frame(b)
    for name in ("vrateofproduction", "vrateofuse", "vproductionnn", "vusenn"):
        model.add_variables(name, RLFY, slices)
    model.add_variables("vproductionannualnn", RFY, b.rfy)
    model.add_variables("vuseannualnn", RFY, b.rfy)

    if b.saving("vrateofdemand") or b.saving("vdemandnn"):
        demand = demand_frame(b)
        model.add_variables("vrateofdemand", RLFY, demand)
        model.add_variables("vdemandnn", RLFY, demand)

    routes = trade_routes(b)
    model.add_variables("vtrade", ("r", "rr", "l", "f", "y"), routes.merge(b.ys[["l", "y"]], on="y"),
                        lower=-INF)
    model.add_variables("vtradeannual", ("r", "rr", "f", "y"), routes, lower=-INF)

    for name in ("vcapitalinvestment", "vdiscountedcapitalinvestment", "vsalvagevalue",
                 "vdiscountedsalvagevalue", "vannualvariableoperatingcost", "vannualfixedoperatingcost",
                 "voperatingcost", "vdiscountedoperatingcost", "vtotaldiscountedcostbytechnology"):
        model.add_variables(name, RTY, rty, lower=-INF)
    model.add_variables("vtotaldiscountedcost", ("r", "y"), b.cross(r=data.regions, y=b.years), lower=-INF)
    model.add_variables("vmodelperiodcostbyregion", ("r",), pd.DataFrame({"r": data.regions}), lower=-INF)


# Capacity

def total_new_capacity(b):
    """Accumulated new capacity: builds still within their operational life, including earlier groups."""
    life = b.param("OperationalLife").lookup(b.cross(r=b.data.regions, t=b.data.technologies), "ol")
    rty = b.rty.merge(life, on=["r", "t"])

    pairs = rty.merge(pd.DataFrame({"yy": b.years}), how="cross")
    age = pairs["y"] - pairs["yy"]
    pairs = pairs[(age >= 0) & (age < pairs["ol"])]

    carried = b.carry.new_capacity.rename(columns={"y": "yy", "val": "newcap"})
    carried = rty.merge(carried, on=["r", "t"])
    age = carried["y"] - carried["yy"]
    carried = carried[(age >= 0) & (age < carried["ol"])]
    rhs = carried.groupby(list(RTY), as_index=False)["newcap"].sum()
    rhs["rhs"] = -rhs["newcap"]

    return ConstraintFamily.from_terms(
        "CAa1_TotalNewCapacity", RTY,
        [terms(pairs, b.var("vnewcapacity"), RTY, on={"y": "yy"}),
         terms(rty, b.var("vaccumulatednewcapacity"), RTY, -1.0)],
        "==", rhs)


def total_annual_capacity(b):
    frame = b.param("ResidualCapacity").lookup(b.rty, "rc")
    return ConstraintFamily.from_terms(
        "CAa2_TotalAnnualCapacity", RTY,
        [terms(frame, b.var("vaccumulatednewcapacity"), RTY),
         terms(frame, b.var("vtotalcapacityannual"), RTY, -1.0)],
        "==", with_rhs(frame, RTY, -frame["rc"]))


def total_activity(b):
    dims = ("r", "t", "l", "y")
    return ConstraintFamily.from_terms(
        "CAa3_TotalActivityOfEachTechnology", dims,
        [terms(b.domain.activity, b.var("vrateofactivity"), dims),
         terms(b.domain.total_activity, b.var("vrateoftotalactivity"), dims, -1.0)],
        "==")


def constraint_capacity(b):
    dims = ("r", "t", "l", "y")
    frame = b.param("CapacityFactor").lookup(b.domain.total_activity, "cf")
    frame = b.param("CapacityToActivityUnit").lookup(frame, "cta")
    frame["coeff"] = -frame["cf"] * frame["cta"]
    return ConstraintFamily.from_terms(
        "CAa4_ConstraintCapacity", dims,
        [terms(frame, b.var("vrateoftotalactivity"), dims),
         terms(frame, b.var("vtotalcapacityannual"), dims, "coeff")],
        "<=")


def new_capacity_units(b):
    units = b.var("vnumberofnewtechnologyunits")
    if units.size == 0:
        return None
    frame = b.param("CapacityOfOneTechnologyUnit").lookup(units.keys, "cot")
    frame["coeff"] = -frame["cot"]
    return ConstraintFamily.from_terms(
        "CAa5_TotalNewCapacity", RTY,
        [terms(frame, b.var("vnewcapacity"), RTY),
         terms(frame, units, RTY, "coeff")],
        "==")


def availability_factor(b):
    availability = b.param("AvailabilityFactor")
    if not availability.has_values():
        return None
    frame = availability.rows(b.rty, "af")

    slices = frame[list(RTY)].merge(b.ys, on="y")
    slices = b.param("CapacityFactor").lookup(slices, "cf")
    slices["cfys"] = slices["cf"] * slices["ys"]
    weighted = slices.groupby(list(RTY), as_index=False)["cfys"].sum()

    frame = frame.merge(weighted, on=list(RTY), how="left").fillna({"cfys": 0.0})
    frame = b.param("CapacityToActivityUnit").lookup(frame, "cta")
    frame["coeff"] = -frame["af"] * frame["cta"] * frame["cfys"]
    return ConstraintFamily.from_terms(
        "CAb1_PlannedMaintenance", RTY,
        [terms(frame, b.var("vtotaltechnologyannualactivity"), RTY),
         terms(frame, b.var("vtotalcapacityannual"), RTY, "coeff")],
        "<=")


# Activity totals

def annual_activity_by_mode(b):
    dims = ("r", "t", "m", "y")
    frame = b.domain.activity.merge(b.ys, on=["l", "y"])
    return ConstraintFamily.from_terms(
        "Acc3_AverageAnnualRateOfActivity", dims,
        [terms(frame, b.var("vrateofactivity"), dims, "ys"),
         terms(b.domain.annual_activity, b.var("vtotalannualtechnologyactivitybymode"), dims, -1.0)],
        "==")


def annual_activity(b):
    frame = b.domain.total_activity.merge(b.ys, on=["l", "y"])
    return ConstraintFamily.from_terms(
        "AAC1_TotalAnnualTechnologyActivity", RTY,
        [terms(frame, b.var("vrateoftotalactivity"), RTY, "ys"),
         terms(b.rty, b.var("vtotaltechnologyannualactivity"), RTY, -1.0)],
        "==")


def model_period_activity(b):
    dims = ("r", "t")
    found, constants = b.interpolate(b.rty, dims, b.var("vtotaltechnologyannualactivity"), discount=False)
    period = b.var("vtotaltechnologymodelperiodactivity")

    rhs = pd.concat([constants, b.carry.period_activity.rename(columns={"val": "rhs"})[["r", "t", "rhs"]]],
                    ignore_index=True)
    rhs["rhs"] = -rhs["rhs"].astype(float)
    return ConstraintFamily.from_terms(
        "TAC1_TotalModelHorizonTechnologyActivity", dims,
        found + [terms(period.keys, period, dims, -1.0)],
        "==", rhs)


# Production and use

def _by_technology(b, kind):
    """Rate of production/use by technology (and by mode when saved)."""
    frame = b.domain.production if kind == "production" else b.domain.use
    ratio = "oar" if kind == "production" else "iar"
    by_tech = b.var(f"vrateof{'production' if kind == 'production' else 'use'}bytechnology")
    dims = ("r", "l", "t", "f", "y")
    families = []

    by_mode_name = f"vrateof{'production' if kind == 'production' else 'use'}bytechnologybymode"
    if b.has(by_mode_name):
        mode_dims = ("r", "l", "t", "m", "f", "y")
        families.append(ConstraintFamily.from_terms(
            "EBa1_RateOfFuelProduction1" if kind == "production" else "EBa4_RateOfFuelUse1", mode_dims,
            [terms(frame, b.var("vrateofactivity"), mode_dims, ratio),
             terms(frame, b.var(by_mode_name), mode_dims, -1.0)],
            "=="))

    families.append(ConstraintFamily.from_terms(
        "EBa2_RateOfFuelProduction2" if kind == "production" else "EBa5_RateOfFuelUse2", dims,
        [terms(frame, b.var("vrateofactivity"), dims, ratio),
         terms(by_tech.keys, by_tech, dims, -1.0)],
        "=="))
    return families


def production_by_technology(b):
    return _by_technology(b, "production")


def use_by_technology(b):
    return _by_technology(b, "use")


def _regional_rate(b, kind):
    by_tech = b.var(f"vrateof{kind}bytechnology")
    rate = b.var(f"vrateof{kind}")
    return ConstraintFamily.from_terms(
        "EBa3_RateOfFuelProduction3" if kind == "production" else "EBa6_RateOfFuelUse3", RLFY,
        [terms(by_tech.keys, by_tech, RLFY),
         terms(rate.keys, rate, RLFY, -1.0)],
        "==")


def regional_production_rate(b):
    return _regional_rate(b, "production")


def regional_use_rate(b):
    return _regional_rate(b, "use")


def slice_totals(b):
    families = []
    for kind, name, family_name in (("production", "vproductionnn", "EBa7_EnergyBalanceEachTS1"),
                                    ("use", "vusenn", "EBa8_EnergyBalanceEachTS2")):
        rate = b.var(f"vrateof{kind}")
        frame = rate.keys.merge(b.ys, on=["l", "y"])
        families.append(ConstraintFamily.from_terms(
            family_name, RLFY,
            [terms(frame, rate, RLFY, "ys"),
             terms(frame, b.var(name), RLFY, -1.0)],
            "=="))
    return families


def demand_reporting(b):
    if not b.has("vrateofdemand"):
        return None
    frame = demand_frame(b)
    frame = frame[frame["ys"] != 0]
    return [
        ConstraintFamily.from_terms("EQ_SpecifiedDemand", RLFY,
                                    [terms(frame, b.var("vrateofdemand"), RLFY)],
                                    "==", with_rhs(frame, RLFY, frame["demand"] / frame["ys"])),
        ConstraintFamily.from_terms("EBa9_EnergyBalanceEachTS3", RLFY,
                                    [terms(frame, b.var("vdemandnn"), RLFY)],
                                    "==", with_rhs(frame, RLFY, frame["demand"])),
    ]


def trade_balance(b):
    trade = b.var("vtrade")
    if trade.size == 0:
        return None
    frame = trade.keys[trade.keys["r"] < trade.keys["rr"]]
    dims = ("r", "rr", "l", "f", "y")
    return ConstraintFamily.from_terms(
        "EBa10_EnergyBalanceEachTS4", dims,
        [terms(frame, trade, dims),
         terms(frame, trade, dims, 1.0, on={"r": "rr", "rr": "r"})],
        "==")


def energy_balance_each_slice(b):
    """Production covers demand, use and net exports in every slice (region-level fuels)."""
    slices = non_nodal(b, slice_frame(b))
    demand = non_nodal(b, demand_frame(b))

    found = [terms(slices, b.var("vproductionnn"), RLFY),
             terms(slices, b.var("vusenn"), RLFY, -1.0)]
    trade = b.var("vtrade")
    if trade.size:
        routes = non_nodal(b, trade.keys.merge(trade_routes(b), on=["r", "rr", "f", "y"]))
        routes["coeff"] = -routes["trv"]
        found.append(terms(routes, trade, RLFY, "coeff"))

    return ConstraintFamily.from_terms("EBa11_EnergyBalanceEachTS5", RLFY, found, ">=",
                                       with_rhs(demand, RLFY, demand["demand"]))


def annual_totals(b):
    families = []
    for name, annual, family_name in (("vproductionnn", "vproductionannualnn", "EBb1_EnergyBalanceEachYear1"),
                                      ("vusenn", "vuseannualnn", "EBb2_EnergyBalanceEachYear2")):
        per_slice = b.var(name)
        families.append(ConstraintFamily.from_terms(
            family_name, RFY,
            [terms(per_slice.keys, per_slice, RFY),
             terms(b.rfy, b.var(annual), RFY, -1.0)],
            "=="))

    trade = b.var("vtrade")
    if trade.size:
        dims = ("r", "rr", "f", "y")
        annual = b.var("vtradeannual")
        families.append(ConstraintFamily.from_terms(
            "EBb3_EnergyBalanceEachYear3", dims,
            [terms(trade.keys, trade, dims), terms(annual.keys, annual, dims, -1.0)],
            "=="))
    return families


def annual_energy_balance(b):
    accumulated = b.param("AccumulatedAnnualDemand")
    if not accumulated.has_values():
        return None
    frame = non_nodal(b, accumulated.rows(b.rfy, "aad"))
    frame = frame[frame["aad"] != 0]
    if len(frame) == 0:
        return None

    found = [terms(frame, b.var("vproductionannualnn"), RFY),
             terms(frame, b.var("vuseannualnn"), RFY, -1.0)]
    annual = b.var("vtradeannual")
    if annual.size:
        routes = annual.keys.merge(trade_routes(b), on=["r", "rr", "f", "y"])
        routes = routes.merge(frame[list(RFY)], on=list(RFY))
        routes["coeff"] = -routes["trv"]
        found.append(terms(routes, annual, RFY, "coeff"))
    return ConstraintFamily.from_terms("EBb4_EnergyBalanceEachYear4", RFY, found, ">=",
                                       with_rhs(frame, RFY, frame["aad"]))


def technology_slice_totals(b):
    families = []
    dims = ("r", "l", "t", "f", "y")
    for kind, family_name in (("production", "Acc1_FuelProductionByTechnology"),
                              ("use", "Acc2_FuelUseByTechnology")):
        name = f"v{kind}bytechnology"
        if not b.has(name):
            continue
        rate = b.var(f"vrateof{kind}bytechnology")
        frame = rate.keys.merge(b.ys, on=["l", "y"])
        families.append(ConstraintFamily.from_terms(
            family_name, dims,
            [terms(frame, rate, dims, "ys"), terms(frame, b.var(name), dims, -1.0)],
            "=="))
    return families


def technology_annual_totals(b):
    families = []
    dims = ("r", "t", "f", "y")
    for kind, family_name in (("production", "RE1_FuelProductionByTechnologyAnnual"),
                              ("use", "Acc5_FuelUseByTechnologyAnnual")):
        rate = b.var(f"vrateof{kind}bytechnology")
        annual = b.var(f"v{kind}bytechnologyannual")
        frame = rate.keys.merge(b.ys, on=["l", "y"])
        families.append(ConstraintFamily.from_terms(
            family_name, dims,
            [terms(frame, rate, dims, "ys"), terms(annual.keys, annual, dims, -1.0)],
            "=="))
    return families


# Costs

def capital_investment(b):
    frame = b.param("CapitalCost").lookup(b.rty, "cc")
    frame["coeff"] = frame["cc"]
    undiscounted = ConstraintFamily.from_terms(
        "CC1_UndiscountedCapitalInvestment", RTY,
        [terms(frame, b.var("vnewcapacity"), RTY, "coeff"),
         terms(frame, b.var("vcapitalinvestment"), RTY, -1.0)],
        "==")

    frame = b.param("InterestRateTechnology").lookup(frame, "ir")
    frame = b.param("OperationalLife").lookup(frame, "ol")
    frame = frame.merge(b.discount_rates(), on="r", how="left")
    frame["coeff"] = b.capital_factors(frame) * b.finance_factors(frame["ir"], frame["ol"], frame["dr"])
    discounted = ConstraintFamily.from_terms(
        "CC2_DiscountingCapitalInvestment", RTY,
        [terms(frame, b.var("vcapitalinvestment"), RTY, "coeff"),
         terms(frame, b.var("vdiscountedcapitalinvestment"), RTY, -1.0)],
        "==")
    return [undiscounted, discounted]


def salvage_value(b):
    frame = b.param("CapitalCost").lookup(b.rty, "cc")
    frame = b.param("OperationalLife").lookup(frame, "ol")
    frame["coeff"] = -frame["cc"] * b.salvage_factors(frame, "ol")
    salvage = ConstraintFamily.from_terms(
        "SV1_SalvageValue", RTY,
        [terms(frame, b.var("vsalvagevalue"), RTY),
         terms(frame, b.var("vnewcapacity"), RTY, "coeff")],
        "==")

    frame["disc"] = b.salvage_discount(frame)
    discounted = ConstraintFamily.from_terms(
        "SV4_SalvageValueDiscToStartYr", RTY,
        [terms(frame, b.var("vsalvagevalue"), RTY, "disc"),
         terms(frame, b.var("vdiscountedsalvagevalue"), RTY, -1.0)],
        "==")
    return [salvage, discounted]


def operating_costs(b):
    rty = b.rty
    by_mode = b.var("vtotalannualtechnologyactivitybymode")

    variable = b.param("VariableCost").lookup(by_mode.keys, "vc")
    variable_cost = ConstraintFamily.from_terms(
        "OC1_OperatingCostsVariable", RTY,
        [terms(variable, by_mode, RTY, "vc"),
         terms(rty, b.var("vannualvariableoperatingcost"), RTY, -1.0)],
        "==")

    fixed = b.param("FixedCost").lookup(rty, "fc")
    fixed_cost = ConstraintFamily.from_terms(
        "OC2_OperatingCostsFixedAnnual", RTY,
        [terms(fixed, b.var("vtotalcapacityannual"), RTY, "fc"),
         terms(rty, b.var("vannualfixedoperatingcost"), RTY, -1.0)],
        "==")

    total = ConstraintFamily.from_terms(
        "OC3_OperatingCostsTotalAnnual", RTY,
        [terms(rty, b.var("vannualfixedoperatingcost"), RTY),
         terms(rty, b.var("vannualvariableoperatingcost"), RTY),
         terms(rty, b.var("voperatingcost"), RTY, -1.0)],
        "==")

    fixed_terms, fixed_constants = b.interpolate(rty, RTY, b.var("vtotalcapacityannual"),
                                                 rate=b.param("FixedCost"))
    variable_terms, variable_constants = b.interpolate(by_mode.keys, RTY, by_mode,
                                                       rate=b.param("VariableCost"))
    discounted = ConstraintFamily.from_terms(
        "OC4_DiscountedOperatingCostsTotalAnnual", RTY,
        [terms(rty, b.var("vdiscountedoperatingcost"), RTY)] + negated(fixed_terms + variable_terms),
        "==", pd.concat([fixed_constants, variable_constants], ignore_index=True))
    return [variable_cost, fixed_cost, total, discounted]


def total_discounted_cost_by_technology(b):
    rty = b.rty
    found = [terms(rty, b.var("vdiscountedoperatingcost"), RTY),
             terms(rty, b.var("vdiscountedcapitalinvestment"), RTY),
             terms(rty, b.var("vdiscountedsalvagevalue"), RTY, -1.0),
             terms(rty, b.var("vtotaldiscountedcostbytechnology"), RTY, -1.0)]
    if b.has("vdiscountedtechnologyemissionspenalty"):
        found.append(terms(rty, b.var("vdiscountedtechnologyemissionspenalty"), RTY))
    return ConstraintFamily.from_terms("TDC1_TotalDiscountedCostByTechnology", RTY, found, "==")


def total_discounted_cost(b):
    dims = ("r", "y")
    total = b.var("vtotaldiscountedcost")
    found = [terms(b.rty, b.var("vtotaldiscountedcostbytechnology"), dims),
             terms(total.keys, total, dims, -1.0)]
    if b.has("vtotaldiscountedstoragecost"):
        storage_cost = b.var("vtotaldiscountedstoragecost")
        found.append(terms(storage_cost.keys, storage_cost, dims))
    if b.has("vtotaldiscountedtransmissioncostbyregion"):
        line_cost = b.var("vtotaldiscountedtransmissioncostbyregion")
        found.append(terms(line_cost.keys, line_cost, dims))
    return ConstraintFamily.from_terms("TDC2_TotalDiscountedCost", dims, found, "==")


def model_period_cost(b):
    period = b.var("vmodelperiodcostbyregion")
    total = b.var("vtotaldiscountedcost")
    carried = b.carry.period_cost.rename(columns={"val": "rhs"})[["r", "rhs"]].copy()
    carried["rhs"] = -carried["rhs"].astype(float)
    return ConstraintFamily.from_terms(
        "Acc4_ModelPeriodCostByRegion", ("r",),
        [terms(total.keys, total, ("r",)), terms(period.keys, period, ("r",), -1.0)],
        "==", carried)


FAMILIES = [
    total_new_capacity,
    total_annual_capacity,
    total_activity,
    constraint_capacity,
    new_capacity_units,
    availability_factor,
    annual_activity_by_mode,
    annual_activity,
    model_period_activity,
    production_by_technology,
    use_by_technology,
    regional_production_rate,
    regional_use_rate,
    slice_totals,
    demand_reporting,
    trade_balance,
    energy_balance_each_slice,
    annual_totals,
    annual_energy_balance,
    technology_slice_totals,
    technology_annual_totals,
    capital_investment,
    salvage_value,
    operating_costs,
    total_discounted_cost_by_technology,
    total_discounted_cost,
    model_period_cost,
]
