"""
Results persistence and reporting functions for scenario calculations.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from .database import RESULT_STATUS_TABLE, connect, read_table, result_tables, retry_on_lock, table_exists
from .log import logmsg

logger = logging.getLogger(__name__)

ZERO_TOLERANCE = 1e-9


def result_frame(model, name, solvedtm, reportzeros=False):
    """
    Rows of one result table: subscripts as text, ``val`` and ``solvedtm``.

    Args:
        model (ScenarioModel): Solved model
        name (str): Variable family name
        solvedtm (str): Solve timestamp written to every row
        reportzeros (bool): Keep rows whose value is (near) zero

    Returns:
        pd.DataFrame: Rows ready to be written
    """
    frame = model.value_frame(name)
    if not reportzeros:
        frame = frame[frame["val"].abs() > ZERO_TOLERANCE]
    frame = frame.copy()
    for dim in model.variable(name).dims:
        frame[dim] = frame[dim].astype(str)
    frame["val"] = frame["val"].astype(float)
    frame["solvedtm"] = solvedtm
    return frame.reset_index(drop=True)


def _write_table(conn, table, frame, replace):
    columns = ", ".join(f'"{col}" {"REAL" if col == "val" else "TEXT"}' for col in frame.columns)
    placeholders = ", ".join("?" for _ in frame.columns)
    with conn:
        if replace:
            conn.execute(f'DROP TABLE IF EXISTS "{table}"')
        conn.execute(f'CREATE TABLE IF NOT EXISTS "{table}" ({columns})')
        conn.executemany(f'INSERT INTO "{table}" VALUES ({placeholders})',
                         frame.itertuples(index=False, name=None))


def save_results(dbpath, model, varstosave, solvedtm, reportzeros=False, quiet=False, replace=False):
    """
    Write the values of the requested variables to result tables.

    Tables subscripted by year are appended to, so successive foresight
    groups accumulate their years; tables without a year subscript (and all
    tables when ``replace`` is set) are recreated.

    Args:
        dbpath (str): Scenario database
        model (ScenarioModel): Solved model
        varstosave (list): Variable names to save; names not in the model are skipped
        solvedtm (str): Solve timestamp
        reportzeros (bool): Write zero values too
        quiet (bool): Suppress low-priority status messages
        replace (bool): Recreate every table instead of appending

    Returns:
        dict: Number of rows written per table
    """
    names = [name for name in varstosave if model.has_variable(name)]
    skipped = [name for name in varstosave if name not in model.variables]
    if skipped:
        logger.debug(f"Variables not in the model, not saved: {', '.join(skipped)}")

    with ThreadPoolExecutor(max_workers=min(8, max(len(names), 1))) as executor:
        frames = list(executor.map(lambda name: result_frame(model, name, solvedtm, reportzeros), names))

    written = {}
    conn = connect(dbpath)
    try:
        for name, frame in zip(names, frames):
            recreate = replace or "y" not in model.variable(name).dims
            retry_on_lock(_write_table, conn, name, frame, recreate)
            written[name] = len(frame)
    finally:
        conn.close()

    logmsg(f"✓ Saved results for {len(written)} variables to database.", quiet)
    return written


def record_solve_status(dbpath, group, status, warning, solvedtm):
    """
    Record the termination status of a foresight group in the ``solvestatus`` table.

    Args:
        dbpath (str): Scenario database
        group (int): Foresight group number (1-based)
        status (str): Run status (``optimal`` or ``suboptimal``)
        warning (bool): Whether the results carry a suboptimality warning
        solvedtm (str): Solve timestamp
    """
    def _write(conn):
        with conn:
            conn.execute(f'CREATE TABLE IF NOT EXISTS "{RESULT_STATUS_TABLE}" ("group" INTEGER, "status" TEXT, '
                         f'"warning" INTEGER, "solvedtm" TEXT)')
            conn.execute(f'INSERT INTO "{RESULT_STATUS_TABLE}" VALUES (?, ?, ?, ?)',
                         (int(group), str(status), int(bool(warning)), solvedtm))

    conn = connect(dbpath)
    try:
        retry_on_lock(_write, conn)
    finally:
        conn.close()


def _read_result(conn, table):
    if not table_exists(conn, table):
        return pd.DataFrame()
    frame = read_table(conn, table)
    if "y" in frame.columns:
        frame["y"] = frame["y"].astype(int)
    return frame


def get_results_summary(dbpath):
    """
    Get summary statistics of saved results.

    Args:
        dbpath (str): Scenario database holding results

    Returns:
        dict: Summary with total cost, cost by year, capacity and production by technology
    """
    conn = connect(dbpath)
    try:
        tables = result_tables(conn)
        if not tables:
            return {'status': 'no_results', 'message': 'No results saved in this database'}

        status = _read_result(conn, RESULT_STATUS_TABLE)
        costs = _read_result(conn, "vtotaldiscountedcost")
        capacity = _read_result(conn, "vtotalcapacityannual")
        production = _read_result(conn, "vproductionbytechnologyannual")
    finally:
        conn.close()

    summary = {
        'status': 'success',
        'solve_status': status.to_dict('records') if len(status) else [],
        'tables': sorted(tables),
        'total_discounted_cost': float(costs['val'].sum()) if len(costs) else 0.0,
        'cost_by_year': {},
        'capacity': {},
        'production': {},
    }

    if len(costs):
        summary['cost_by_year'] = costs.groupby('y')['val'].sum().to_dict()
    if len(capacity):
        summary['capacity'] = {
            tech: group.groupby('y')['val'].sum().to_dict()
            for tech, group in capacity.groupby('t')
        }
    if len(production):
        summary['production'] = {
            tech: group.groupby('y')['val'].sum().to_dict()
            for tech, group in production.groupby('t')
        }
    return summary


def print_results(dbpath):
    """
    Print formatted results of a scenario calculation.

    Args:
        dbpath (str): Scenario database holding results
    """
    summary = get_results_summary(dbpath)
    if summary['status'] != 'success':
        print(summary['message'])
        return

    print("\n" + "=" * 60)
    print("SCENARIO RESULTS")
    print("=" * 60)

    for row in summary['solve_status']:
        flag = " (warning: not proven optimal)" if row['warning'] else ""
        print(f"Group {row['group']}: {row['status']}{flag}")

    print(f"\nTotal discounted cost: {summary['total_discounted_cost']:,.2f}")

    if summary['cost_by_year']:
        print("\nDiscounted cost by year:")
        print(f"{'Year':>6} {'Cost':>16}")
        print("-" * 23)
        for year, cost in sorted(summary['cost_by_year'].items()):
            print(f"{year:>6} {cost:>16,.2f}")

    if summary['capacity']:
        print("\nTotal capacity by technology:")
        years = sorted({year for values in summary['capacity'].values() for year in values})
        print(f"{'Technology':<20}" + "".join(f"{year:>12}" for year in years))
        print("-" * (20 + 12 * len(years)))
        for tech, values in sorted(summary['capacity'].items()):
            print(f"{tech:<20}" + "".join(f"{values.get(year, 0.0):>12.2f}" for year in years))

    if summary['production']:
        print("\nAnnual production by technology:")
        years = sorted({year for values in summary['production'].values() for year in values})
        print(f"{'Technology':<20}" + "".join(f"{year:>12}" for year in years))
        print("-" * (20 + 12 * len(years)))
        for tech, values in sorted(summary['production'].items()):
            print(f"{tech:<20}" + "".join(f"{values.get(year, 0.0):>12.2f}" for year in years))


def create_cost_chart(dbpath, filename=None):
    """
    Create an interactive chart of discounted costs and capacity by year.

    Args:
        dbpath (str): Scenario database holding results
        filename (str): Optional HTML file to write the chart to

    Returns:
        plotly.graph_objects.Figure: Chart, or None when no costs were saved
    """
    conn = connect(dbpath)
    try:
        costs = _read_result(conn, "vtotaldiscountedcost")
        capacity = _read_result(conn, "vtotalcapacityannual")
    finally:
        conn.close()

    if len(costs) == 0:
        logger.warning("No discounted costs saved; nothing to plot.")
        return None

    fig = make_subplots(
        rows=2, cols=1,
        subplot_titles=('Total Discounted Cost by Region', 'Total Capacity by Technology'),
        vertical_spacing=0.12
    )

    for region, group in costs.groupby('r'):
        group = group.sort_values('y')
        fig.add_trace(
            go.Bar(
                x=group['y'],
                y=group['val'],
                name=f'Cost {region}',
                hovertemplate=f'{region}: ' + '%{y:,.2f}<br>Year: %{x}<extra></extra>'
            ),
            row=1, col=1
        )

    if len(capacity):
        by_tech = capacity.groupby(['t', 'y'], as_index=False)['val'].sum()
        for tech, group in by_tech.groupby('t'):
            fig.add_trace(
                go.Scatter(
                    x=group['y'],
                    y=group['val'],
                    name=tech,
                    stackgroup='capacity',
                    hovertemplate=f'{tech}: ' + '%{y:.2f}<br>Year: %{x}<extra></extra>'
                ),
                row=2, col=1
            )

    fig.update_layout(
        height=900,
        title_text="Scenario Costs and Capacity",
        barmode='stack',
        showlegend=True
    )
    fig.update_yaxes(title_text="Discounted cost", row=1, col=1)
    fig.update_yaxes(title_text="Capacity", row=2, col=1)
    fig.update_xaxes(title_text="Year", tickvals=np.unique(costs['y']), row=2, col=1)

    if filename:
        fig.write_html(filename)
        logger.info(f"Cost chart saved to: {filename}")

    return fig
