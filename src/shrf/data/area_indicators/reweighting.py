"""Areal reweighting of census profiles onto previous-census boundaries.

A profile released on the dissemination areas of census ``c`` is estimated on
the areas of census ``c - 5`` through the correspondence file, which gives for
every newer area the share of its surface falling in each older area.

Algorithm, per (target area, variable, sex):
    extensive: sum(value * weight)
    intensive: sum(pop * weight * value) / sum(pop * weight)
    median:    value of the first linked row (ordered by value) whose
               cumulative pop * weight share exceeds one half
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from shrf.data.area_indicators import sql
from shrf.data.area_indicators.constants import (
    MASS_CONSERVATION_RTOL,
    WEIGHT_SUM_TOLERANCE,
)
from shrf.data.area_indicators.errors import InputContractError, IntegrityError
from shrf.data.area_indicators.frames import (
    distinct_count,
    fetch_table,
    register_frame,
    row_count,
)
from shrf.data.area_indicators.variables import require_classified

if TYPE_CHECKING:
    import duckdb

PROFILE_COLUMNS = ["unit_id", "variable", "sex", "value"]
POPULATION_COLUMNS = ["unit_id", "sex", "population"]
CORRESPONDENCE_COLUMNS = ["source_id", "target_id", "weight"]


def _check_columns(df: pd.DataFrame, required: list[str], label: str) -> None:
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise InputContractError(f"{label} frame is missing columns: {missing}")


def validate_correspondence(
    conn: duckdb.DuckDBPyConnection,
    correspondence: pd.DataFrame,
    tolerance: float = WEIGHT_SUM_TOLERANCE,
    table: str = "correspondence",
) -> None:
    """Check every source unit's weights lie in [0, 1] and sum to one.

    Raises:
        IntegrityError: Listing up to ten offending source units
    """
    _check_columns(correspondence, CORRESPONDENCE_COLUMNS, "Correspondence")
    register_frame(conn, table, correspondence)
    violations = conn.execute(
        sql.GET_CORRESPONDENCE_VIOLATIONS.format(
            correspondence=table, tolerance=tolerance
        )
    ).df()
    if not violations.empty:
        sample = violations.head(10).to_dict("records")
        raise IntegrityError(
            f"{len(violations):,} source units have invalid correspondence "
            f"weights (tolerance {tolerance}): {sample}"
        )
    logger.debug(
        "  Correspondence weights valid for {:,} source units",
        distinct_count(conn, table, "source_id"),
    )


def reweight_profile(
    conn: duckdb.DuckDBPyConnection,
    profile: pd.DataFrame,
    population: pd.DataFrame,
    correspondence: pd.DataFrame,
    variable_classes: pd.DataFrame,
    output: str = "profile_reweighted",
) -> pd.DataFrame:
    """Redistribute a long profile from source units onto target units.

    Args:
        conn: DuckDB connection executing the aggregation
        profile: Long profile (unit_id, variable, sex, value) on source units
        population: Stratum populations (unit_id, sex, population) of the
            source units, used as intensive and median weights
        correspondence: Links (source_id, target_id, weight)
        variable_classes: Class of every profile variable
        output: Name of the DuckDB table holding the result

    Returns:
        Long profile keyed by target units. Every target unit of the
        correspondence gets every profile variable; units without usable
        source rows carry missing values.

    Raises:
        InputContractError: Missing columns or unclassified variables
    """
    _check_columns(profile, PROFILE_COLUMNS, "Profile")
    _check_columns(population, POPULATION_COLUMNS, "Population")
    _check_columns(correspondence, CORRESPONDENCE_COLUMNS, "Correspondence")
    require_classified(profile, variable_classes)

    tables = {
        "profile": f"{output}_source",
        "population": f"{output}_population",
        "correspondence": f"{output}_correspondence",
        "variable_classes": f"{output}_classes",
    }
    register_frame(conn, tables["profile"], profile[PROFILE_COLUMNS])
    register_frame(conn, tables["population"], population[POPULATION_COLUMNS])
    register_frame(
        conn, tables["correspondence"], correspondence[CORRESPONDENCE_COLUMNS]
    )
    register_frame(conn, tables["variable_classes"], variable_classes)

    unmapped = conn.execute(
        sql.COUNT_UNMAPPED_SOURCES.format(
            profile=tables["profile"], correspondence=tables["correspondence"]
        )
    ).fetchone()[0]
    if unmapped:
        logger.warning("  {:,} source units have no correspondence row", unmapped)

    conn.execute(sql.CREATE_REWEIGHTED_PROFILE.format(output=output, **tables))
    logger.debug(
        "  Reweighted: {:,} rows across {:,} target units",
        row_count(conn, output),
        distinct_count(conn, output, "unit_id"),
    )
    return fetch_table(conn, output)


def extensive_totals(
    conn: duckdb.DuckDBPyConnection,
    profile: pd.DataFrame,
    variable_classes: pd.DataFrame,
    table: str = "mass_check",
) -> pd.DataFrame:
    """National total of every extensive variable per sex stratum."""
    register_frame(conn, table, profile[PROFILE_COLUMNS])
    register_frame(conn, f"{table}_classes", variable_classes)
    return conn.execute(
        sql.GET_EXTENSIVE_TOTALS.format(
            profile=table, variable_classes=f"{table}_classes"
        )
    ).df()


def check_mass_conservation(
    conn: duckdb.DuckDBPyConnection,
    source: pd.DataFrame,
    reweighted: pd.DataFrame,
    variable_classes: pd.DataFrame,
    rtol: float = MASS_CONSERVATION_RTOL,
) -> pd.DataFrame:
    """Compare extensive totals before and after reweighting.

    Returns:
        One row per (variable, sex) with source and reweighted totals and
        their relative difference

    Raises:
        IntegrityError: When any relative difference exceeds ``rtol``
    """
    before = extensive_totals(conn, source, variable_classes, "mass_check_source")
    after = extensive_totals(
        conn, reweighted, variable_classes, "mass_check_reweighted"
    )
    totals = before.merge(
        after,
        on=["variable", "sex"],
        how="outer",
        suffixes=("_source", "_reweighted"),
    )
    scale = totals["total_source"].abs().clip(lower=1.0)
    totals["relative_difference"] = (
        (totals["total_reweighted"].fillna(0) - totals["total_source"].fillna(0))
        .abs()
        .div(scale)
    )

    failed = totals[totals["relative_difference"] > rtol]
    if not failed.empty:
        sample = failed.head(10).to_dict("records")
        raise IntegrityError(
            f"Extensive totals not conserved for {len(failed)} variables "
            f"(rtol {rtol}): {sample}"
        )
    logger.debug("  Mass conserved for {} extensive variable strata", len(totals))
    return totals
