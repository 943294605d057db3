"""
Transmission variable and constraint families.

Region/fuel/year combinations listed in TransmissionModelingEnabled are
balanced per node instead of per region. The modeling type selects how line
flows behave:

* 1: DC power flow (flow follows voltage angle differences)
* 2: DC power flow; candidate lines use a disjunctive (big-M) form
* 3: pipeline flow (flows limited by line capacity only)

Candidate lines (no construction year) are built by the model; other lines
exist from their construction year for their operational life.
"""

import logging
import math

import numpy as np
import pandas as pd

from .constraints import demand_frame, negated, with_rhs
from .errors import ConfigurationError
from .model import INF, ConstraintFamily, terms

logger = logging.getLogger(__name__)

TRY = ("tr", "y")
TRLY = ("tr", "l", "y")
NLY = ("n", "l", "y")
NLFY = ("n", "l", "f", "y")
LINE_COLUMNS = ("maxflow", "reactance", "yconstruction", "capitalcost", "fixedcost", "variablecost",
                "operationallife", "efficiency", "interestrate")


def active_lines(b):
    """
    Transmission lines in modeled years with transmission enabled for their fuel.

    Returns:
        pd.DataFrame: One row per (tr, y) with n1, n2, f, r (region of n1), type and line attributes
    """
    lines = b.data.lines
    enabled = b.data.transmission_years(b.years)
    if len(lines) == 0 or len(enabled) == 0:
        return pd.DataFrame(columns=["tr", "n1", "n2", "f", "r", "y", "type"] + list(LINE_COLUMNS))

    lines = lines.rename(columns={"id": "tr"}).copy()
    for column in ("tr", "n1", "n2", "f"):
        lines[column] = lines[column].astype(str)
    for column in LINE_COLUMNS:
        lines[column] = pd.to_numeric(lines[column], errors="coerce") if column in lines else np.nan
    lines["efficiency"] = lines["efficiency"].fillna(1.0)
    for column in ("capitalcost", "fixedcost", "variablecost", "interestrate"):
        lines[column] = lines[column].fillna(0.0)
    lines["operationallife"] = lines["operationallife"].fillna(0.0)

    lines = lines.merge(b.data.nodes.rename(columns={"n": "n1"}), on="n1")
    return lines.merge(enabled, on=["r", "f"]).reset_index(drop=True)


def nodal_fuels(b):
    """(n, r, f, y) for every node of a region whose fuel is balanced per node."""
    enabled = b.data.transmission_years(b.years)[["r", "f", "y"]].drop_duplicates()
    return b.data.nodes.merge(enabled, on="r")


def _is_candidate(lines):
    return lines["yconstruction"].isna()


def _exists_bounds(lines):
    """Fixed existence of exogenous lines; candidate lines range over [0, 1]."""
    candidate = _is_candidate(lines).to_numpy()
    built = lines["yconstruction"].to_numpy(dtype=float)
    years = lines["y"].to_numpy(dtype=float)
    life = lines["operationallife"].to_numpy(dtype=float)
    alive = (years >= built) & (years < built + life)
    lower = np.where(candidate, 0.0, alive.astype(float))
    upper = np.where(candidate, 1.0, alive.astype(float))
    return lower, upper


def validate_transmission(b, lines):
    """Raise ConfigurationError when enabled transmission lacks a required parameter."""
    enabled = b.data.transmission_years(b.years)[["r", "f"]].drop_duplicates()
    units = b.param("TransmissionCapacityToActivityUnit").rows(enabled, "tcta")
    missing = enabled.merge(units, on=["r", "f"], how="left")
    missing = missing[missing["tcta"].isna() | (missing["tcta"] == 0)]
    if len(missing):
        pairs = ", ".join(f"{r}/{f}" for r, f in zip(missing["r"], missing["f"]))
        raise ConfigurationError(f"TransmissionCapacityToActivityUnit is required for transmission-enabled "
                                 f"region/fuel combinations: {pairs}")

    angled = lines[lines["type"].isin([1, 2])]
    bad = angled[angled["reactance"].isna() | (angled["reactance"] == 0)]["tr"].unique()
    if len(bad):
        raise ConfigurationError(f"Transmission lines modeled with DC power flow need a nonzero reactance: "
                                 f"{', '.join(sorted(bad))}")

    bad = lines[_is_candidate(lines) & lines["maxflow"].isna()]["tr"].unique()
    if len(bad):
        raise ConfigurationError(f"Candidate transmission lines need a maxflow: {', '.join(sorted(bad))}")


def declare_variables(b):
    if len(b.data.transmission_years(b.years)) == 0:
        return
    lines = active_lines(b)
    validate_transmission(b, lines)

    model = b.model
    domain = b.domain
    nodes = nodal_fuels(b)

    # Nodal activity for technologies with a nodal capacity share in a region with nodal fuels
    shares = b.param("NodalDistributionTechnologyCapacity").rows(
        nodes[["n", "r", "y"]].drop_duplicates().merge(pd.DataFrame({"t": b.data.technologies}), how="cross"),
        "ndtc")
    shares = shares[shares["ndtc"] > 0]
    nodal_activity = domain.activity.merge(shares[["n", "r", "t", "y"]], on=["r", "t", "y"])
    model.add_variables("vrateofactivitynodal", ("n", "l", "t", "m", "y"), nodal_activity)

    slices = nodes.merge(b.ys[["l", "y"]], on="y")
    model.add_variables("vrateofproductionnodal", NLFY, slices)
    model.add_variables("vrateofusenodal", NLFY, slices)

    candidate = lines[_is_candidate(lines)]
    model.add_variables("vtransmissionbuilt", TRY, candidate, upper=1.0,
                        integer=not b.options.continuoustransmission)
    lower, upper = _exists_bounds(lines)
    model.add_variables("vtransmissionexists", TRY, lines, lower=lower, upper=upper)

    flows = lines.merge(b.ys[["l", "y"]], on="y")
    model.add_variables("vtransmissionbyline", TRLY, flows, lower=-INF)
    _, exists_upper = _exists_bounds(flows)
    limit = np.where(_is_candidate(flows) | flows["maxflow"].isna(), INF, flows["maxflow"].to_numpy(dtype=float))
    direction_upper = np.where(exists_upper > 0, limit, 0.0)
    model.add_variables("vtransmissionbylineforward", TRLY, flows, upper=direction_upper)
    model.add_variables("vtransmissionbylinereverse", TRLY, flows, upper=direction_upper)

    angled = flows[flows["type"].isin([1, 2])]
    angle_nodes = pd.concat([angled[["n1", "l", "y"]].rename(columns={"n1": "n"}),
                             angled[["n2", "l", "y"]].rename(columns={"n2": "n"})], ignore_index=True)
    model.add_variables("vvoltageangle", NLY, angle_nodes, lower=-math.pi, upper=math.pi)

    for name in ("vcapitalinvestmenttransmission", "vdiscountedcapitalinvestmenttransmission",
                 "vsalvagevaluetransmission", "vdiscountedsalvagevaluetransmission",
                 "voperatingcosttransmission", "vdiscountedoperatingcosttransmission"):
        model.add_variables(name, TRY, lines, lower=-INF)
    model.add_variables("vtotaldiscountedtransmissioncostbyregion", ("r", "y"), lines[["r", "y"]], lower=-INF)


# Nodal activity, production and use

def nodal_activity(b):
    if not b.has("vrateofactivitynodal"):
        return None
    nodal = b.var("vrateofactivitynodal")
    frame = nodal.keys.merge(b.data.nodes, on="n")
    regional = frame[["r", "l", "t", "m", "y"]].drop_duplicates()
    dims = ("r", "l", "t", "m", "y")
    distribution = ConstraintFamily.from_terms(
        "TrNodalActivity", dims,
        [terms(frame, nodal, dims), terms(regional, b.var("vrateofactivity"), dims, -1.0)],
        "==")

    rows = b.param("NodalDistributionTechnologyCapacity").lookup(frame, "ndtc")
    rows = b.param("CapacityFactor").lookup(rows, "cf")
    rows = b.param("CapacityToActivityUnit").lookup(rows, "cta")
    rows["coeff"] = -rows["ndtc"] * rows["cf"] * rows["cta"]
    capacity_dims = ("n", "t", "l", "y")
    capacity = ConstraintFamily.from_terms(
        "TrNodalCapacity", capacity_dims,
        [terms(rows, nodal, capacity_dims),
         terms(rows.drop_duplicates(subset=list(capacity_dims)), b.var("vtotalcapacityannual"), capacity_dims,
               "coeff")],
        "<=")
    return [distribution, capacity]


def nodal_production_and_use(b):
    if not b.has("vrateofproductionnodal"):
        return None
    families = []
    nodal = b.var("vrateofactivitynodal")
    activity = nodal.keys.merge(b.data.nodes, on="n")
    for kind, frame, ratio in (("production", b.domain.production, "oar"), ("use", b.domain.use, "iar")):
        rate = b.var(f"vrateof{kind}nodal")
        linked = activity.merge(frame, on=["r", "l", "t", "m", "y"])
        families.append(ConstraintFamily.from_terms(
            f"TrNodal{kind.capitalize()}", NLFY,
            [terms(linked, nodal, NLFY, ratio), terms(rate.keys, rate, NLFY, -1.0)],
            "=="))
    return families


def nodal_balance(b):
    """Nodal production plus net imports covers the node's share of demand in every slice."""
    if not b.has("vrateofproductionnodal"):
        return None
    production = b.var("vrateofproductionnodal")
    rows = production.keys.merge(b.data.nodes, on="n").merge(b.ys, on=["l", "y"])
    rows["_use"] = -rows["ys"]

    found = [terms(rows, production, NLFY, "ys"), terms(rows, b.var("vrateofusenodal"), NLFY, "_use")]

    if b.has("vtransmissionbyline"):
        flows = b.var("vtransmissionbyline").keys.merge(active_lines(b), on=TRY).merge(b.ys, on=["l", "y"])
        flows = b.param("TransmissionCapacityToActivityUnit").lookup(flows, "tcta")
        flows["_out"] = -flows["tcta"] * flows["ys"]
        flows["_in"] = flows["tcta"] * flows["ys"] * flows["efficiency"]
        forward = b.var("vtransmissionbylineforward")
        reverse = b.var("vtransmissionbylinereverse")
        at_n1 = flows.rename(columns={"n1": "n"})
        at_n2 = flows.rename(columns={"n2": "n"})
        found += [terms(at_n1, forward, NLFY, "_out"), terms(at_n1, reverse, NLFY, "_in"),
                  terms(at_n2, forward, NLFY, "_in"), terms(at_n2, reverse, NLFY, "_out")]

    demand = demand_frame(b).merge(nodal_fuels(b)[["n", "r", "f", "y"]], on=["r", "f", "y"])
    demand = b.param("NodalDistributionDemand").lookup(demand, "ndd")
    demand["rhs"] = demand["demand"] * demand["ndd"]
    return ConstraintFamily.from_terms("TrNodalBalance", NLFY, found, ">=", demand[list(NLFY) + ["rhs"]])


# Lines

def line_existence(b):
    if not b.has("vtransmissionexists"):
        return None
    lines = active_lines(b)
    candidate = lines[_is_candidate(lines)]
    if len(candidate) == 0:
        return None

    pairs = candidate.merge(pd.DataFrame({"yy": b.years}), how="cross")
    age = pairs["y"] - pairs["yy"]
    pairs = pairs[(age >= 0) & (age < pairs["operationallife"])]

    carried = candidate.merge(b.carry.line_builds.rename(columns={"y": "yy", "val": "built"}), on="tr")
    age = carried["y"] - carried["yy"]
    carried = carried[(age >= 0) & (age < carried["operationallife"])]
    carried_rhs = carried.groupby(list(TRY), as_index=False)["built"].sum()
    carried_rhs["rhs"] = -carried_rhs["built"]

    built = b.var("vtransmissionbuilt")
    exists = ConstraintFamily.from_terms(
        "TrExists", TRY,
        [terms(pairs, built, TRY, on={"y": "yy"}), terms(candidate, b.var("vtransmissionexists"), TRY, -1.0)],
        "==", carried_rhs)

    total = b.carry.line_builds.groupby("tr", as_index=False)["val"].sum().rename(columns={"val": "built"})
    once = candidate[["tr"]].drop_duplicates().merge(total, on="tr", how="left").fillna({"built": 0.0})
    built_once = ConstraintFamily.from_terms(
        "TrBuiltOnce", ("tr",), [terms(built.keys, built, ("tr",))], "<=",
        with_rhs(once, ("tr",), 1.0 - once["built"].to_numpy(dtype=float)))
    return [exists, built_once]


def line_flows(b):
    if not b.has("vtransmissionbyline"):
        return None
    net = b.var("vtransmissionbyline")
    flows = net.keys.merge(active_lines(b), on=TRY)
    families = [ConstraintFamily.from_terms(
        "TrNetFlow", TRLY,
        [terms(flows, net, TRLY), terms(flows, b.var("vtransmissionbylineforward"), TRLY, -1.0),
         terms(flows, b.var("vtransmissionbylinereverse"), TRLY, 1.0)],
        "==")]

    candidate = flows[_is_candidate(flows)].copy()
    if len(candidate):
        candidate["coeff"] = -candidate["maxflow"]
        for name, label in (("vtransmissionbylineforward", "Forward"), ("vtransmissionbylinereverse", "Reverse")):
            families.append(ConstraintFamily.from_terms(
                f"TrMaxFlow{label}", TRLY,
                [terms(candidate, b.var(name), TRLY),
                 terms(candidate, b.var("vtransmissionexists"), TRLY, "coeff")],
                "<="))
    return families


def power_flow(b):
    """
    DC power flow: flow equals the voltage angle difference over the reactance.

    Candidate lines relax the relation with a big-M term while not built.
    """
    if not b.has("vvoltageangle"):
        return None
    net = b.var("vtransmissionbyline")
    angle = b.var("vvoltageangle")
    flows = net.keys.merge(active_lines(b), on=TRY)
    flows = flows[flows["type"].isin([1, 2])].copy()
    flows["_from"] = -1.0 / flows["reactance"]
    flows["_to"] = 1.0 / flows["reactance"]

    def relation(frame):
        return [terms(frame, net, TRLY), terms(frame, angle, TRLY, "_from", on={"n": "n1"}),
                terms(frame, angle, TRLY, "_to", on={"n": "n2"})]

    candidate = _is_candidate(flows).to_numpy()
    families = []
    existing = flows[~candidate]
    if len(existing):
        families.append(ConstraintFamily.from_terms("TrPowerFlow", TRLY, relation(existing), "=="))

    options = flows[candidate].copy()
    if len(options):
        options["_m"] = 2 * math.pi / options["reactance"].abs() + options["maxflow"]
        options["_negm"] = -options["_m"]
        exists = b.var("vtransmissionexists")
        families.append(ConstraintFamily.from_terms(
            "TrPowerFlowCandidateUpper", TRLY, relation(options) + [terms(options, exists, TRLY, "_m")], "<=",
            with_rhs(options, TRLY, options["_m"])))
        families.append(ConstraintFamily.from_terms(
            "TrPowerFlowCandidateLower", TRLY, relation(options) + [terms(options, exists, TRLY, "_negm")], ">=",
            with_rhs(options, TRLY, options["_negm"])))
    return families


# Line costs

def line_costs(b):
    if not b.has("vtransmissionexists"):
        return None
    lines = active_lines(b)
    lines["_salvage"] = -lines["capitalcost"] * b.salvage_factors(lines, "operationallife")
    lines["_salvagedisc"] = b.salvage_discount(lines)
    lines = lines.merge(b.discount_rates(), on="r", how="left")
    lines["_capdisc"] = b.capital_factors(lines) * b.finance_factors(lines["interestrate"],
                                                                     lines["operationallife"], lines["dr"])
    built = b.var("vtransmissionbuilt")
    capital = b.var("vcapitalinvestmenttransmission")
    salvage = b.var("vsalvagevaluetransmission")
    operating = b.var("voperatingcosttransmission")

    flows = b.var("vtransmissionbyline").keys.merge(lines, on=TRY).merge(b.ys, on=["l", "y"])
    flows = b.param("TransmissionCapacityToActivityUnit").lookup(flows, "tcta")
    flows["_vc"] = flows["variablecost"] * flows["tcta"] * flows["ys"]

    found, constants = b.interpolate(lines, TRY, operating)
    found = negated(found)

    total = b.var("vtotaldiscountedtransmissioncostbyregion")
    return [
        ConstraintFamily.from_terms(
            "TrCC1_CapitalInvestment", TRY,
            [terms(lines, built, TRY, "capitalcost"), terms(lines, capital, TRY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "TrCC2_DiscountedCapitalInvestment", TRY,
            [terms(lines, capital, TRY, "_capdisc"),
             terms(lines, b.var("vdiscountedcapitalinvestmenttransmission"), TRY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "TrSV1_SalvageValue", TRY,
            [terms(lines, salvage, TRY), terms(lines, built, TRY, "_salvage")],
            "=="),
        ConstraintFamily.from_terms(
            "TrSV2_DiscountedSalvageValue", TRY,
            [terms(lines, salvage, TRY, "_salvagedisc"),
             terms(lines, b.var("vdiscountedsalvagevaluetransmission"), TRY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "TrOC1_OperatingCost", TRY,
            [terms(lines, b.var("vtransmissionexists"), TRY, "fixedcost"),
             terms(flows, b.var("vtransmissionbylineforward"), TRY, "_vc"),
             terms(flows, b.var("vtransmissionbylinereverse"), TRY, "_vc"),
             terms(lines, operating, TRY, -1.0)],
            "=="),
        ConstraintFamily.from_terms(
            "TrOC2_DiscountedOperatingCost", TRY,
            [terms(lines, b.var("vdiscountedoperatingcosttransmission"), TRY)] + found,
            "==", constants),
        ConstraintFamily.from_terms(
            "TrTDC_TotalDiscountedCostByRegion", ("r", "y"),
            [terms(lines, b.var("vdiscountedcapitalinvestmenttransmission"), ("r", "y")),
             terms(lines, b.var("vdiscountedsalvagevaluetransmission"), ("r", "y"), -1.0),
             terms(lines, b.var("vdiscountedoperatingcosttransmission"), ("r", "y")),
             terms(total.keys, total, ("r", "y"), -1.0)],
            "=="),
    ]


FAMILIES = [
    nodal_activity,
    nodal_production_and_use,
    nodal_balance,
    line_existence,
    line_flows,
    power_flow,
    line_costs,
]
