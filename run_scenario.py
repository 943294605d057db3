"""
Command line script for calculating a scenario database.

Example:
    python run_scenario.py storage_test.sqlite --solver highs --calcyears "2020|2025,2030" --chart costs.html
"""
import argparse
import sys

from nemopy import (InfeasibleModelError, NemoError, calculatescenario, create_cost_chart, find_infeasibilities,
                    print_results)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Calculate a least-cost energy system scenario.")
    parser.add_argument("dbpath", help="Path to the scenario database")
    parser.add_argument("--solver", default="highs", help="Solver to use ('highs', 'glpk', 'cbc', 'gurobi', 'scipy', etc.)")
    parser.add_argument("--calcyears", default=None, help="Year groups, e.g. '2020|2025,2030' (comma separates groups)")
    parser.add_argument("--varstosave", default=None, help="Comma-separated variables to save")
    parser.add_argument("--no-restrictvars", dest="restrictvars", action="store_false",
                        help="Create variables for every subscript combination")
    parser.add_argument("--reportzeros", action="store_true", help="Save zero values")
    parser.add_argument("--continuoustransmission", action="store_true", help="Continuous transmission builds")
    parser.add_argument("--forcemip", action="store_true", help="Solve as a MIP")
    parser.add_argument("--directmode", action="store_true", help="Use the solver's direct interface")
    parser.add_argument("--startvalsdbpath", default="", help="Database with warm-start values")
    parser.add_argument("--config", dest="configpath", default=None, help="Configuration file (nemo.ini)")
    parser.add_argument("--customconstraints", default=None, help="Python file defining add_custom_constraints")
    parser.add_argument("--quiet", action="store_true", help="Show only high-priority messages")
    parser.add_argument("--debug", action="store_true", help="Propagate raw errors")
    parser.add_argument("--chart", default=None, help="Write an HTML cost chart to this file")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    kwargs = {}
    if args.varstosave:
        kwargs["varstosave"] = args.varstosave

    try:
        status = calculatescenario(
            args.dbpath,
            solver=args.solver,
            restrictvars=args.restrictvars,
            reportzeros=args.reportzeros,
            continuoustransmission=args.continuoustransmission,
            forcemip=args.forcemip,
            quiet=args.quiet,
            calcyears=args.calcyears,
            directmode=args.directmode,
            startvalsdbpath=args.startvalsdbpath,
            customconstraints=args.customconstraints,
            configpath=args.configpath,
            propagate_errors=args.debug,
            **kwargs
        )
    except InfeasibleModelError as e:
        print(f"Optimization failed: {e}")
        if e.model is not None:
            print("\nSearching for conflicting constraints...")
            for name in find_infeasibilities(e.model, quiet=args.quiet):
                print(f"  {name}")
        return 1
    except NemoError as e:
        print(f"Optimization failed: {e}")
        return 1

    print(f"\nScenario calculation finished with status: {status}")
    print_results(args.dbpath)

    if args.chart:
        print("\nCreating cost chart...")
        create_cost_chart(args.dbpath, filename=args.chart)
    return 0


if __name__ == "__main__":
    sys.exit(main())
