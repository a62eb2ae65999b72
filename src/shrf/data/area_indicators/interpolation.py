"""Linear interpolation of profiles between two census years.

Both endpoint profiles must already sit on the same boundary (the earlier
census, after reweighting the later profile onto it):

    value(Y) = value(Y0) + (Y - Y0) * (value(Y0 + 5) - value(Y0)) / 5
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from loguru import logger

from shrf.data.area_indicators import sql
from shrf.data.area_indicators.constants import CENSUS_INTERVAL_YEARS
from shrf.data.area_indicators.frames import fetch_table, register_frame, row_count

if TYPE_CHECKING:
    import duckdb
    import pandas as pd

_KEY_COLUMNS = ["unit_id", "variable", "sex", "value"]


def intercensal_years(
    start_year: int, span: int = CENSUS_INTERVAL_YEARS
) -> list[int]:
    """Years strictly between two censuses."""
    return list(range(start_year + 1, start_year + span))


def interpolate_profiles(
    conn: duckdb.DuckDBPyConnection,
    start: pd.DataFrame,
    end: pd.DataFrame,
    start_year: int,
    years: list[int] | None = None,
    span: int = CENSUS_INTERVAL_YEARS,
    output: str = "profile_interpolated",
) -> pd.DataFrame:
    """Interpolate long profiles between ``start_year`` and ``start_year + span``.

    Args:
        conn: DuckDB connection
        start: Long profile (unit_id, variable, sex, value) of the start year
        end: Long profile of the end year on the same units
        start_year: Census year of ``start``
        years: Years to produce, defaults to the intercensal years. Endpoint
            years return the endpoint values unchanged.
        span: Years between the two censuses
        output: Name of the DuckDB result table

    Returns:
        Long profile with a leading ``year`` column. A unit/variable/sex
        missing at either endpoint is missing for every intercensal year.

    Raises:
        ValueError: When a requested year lies outside the interval
    """
    end_year = start_year + span
    years = intercensal_years(start_year, span) if years is None else list(years)
    outside = [y for y in years if y < start_year or y > end_year]
    if outside:
        raise ValueError(
            f"Years {outside} outside [{start_year}, {end_year}]; "
            "extrapolation is not supported"
        )
    if not years:
        raise ValueError("No years requested")

    start_table, end_table = f"{output}_start", f"{output}_end"
    register_frame(conn, start_table, start[_KEY_COLUMNS])
    register_frame(conn, end_table, end[_KEY_COLUMNS])

    conn.execute(
        sql.CREATE_INTERPOLATED_PROFILE.format(
            output=output,
            start_table=start_table,
            end_table=end_table,
            start_year=start_year,
            end_year=end_year,
            span=span,
            years=", ".join(str(int(y)) for y in sorted(years)),
        )
    )
    logger.debug(
        "  Interpolated {}-{}: {:,} rows for years {}",
        start_year,
        end_year,
        row_count(conn, output),
        sorted(years),
    )
    return fetch_table(conn, output)
