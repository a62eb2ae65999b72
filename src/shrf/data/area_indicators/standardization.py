"""Age-standardized event rates for small areas.

Rates are directly standardized through per-stratum weights so that each
area's age and sex structure is replaced by the standard population's:

    stdw  = (N_stratum / n_stratum) * (n_total / N_total)
    w_se  = N_stratum^2 / (N_total^2 * n_stratum)
    rate  = 100000 * sum(stdw * events) / sum(stdw * population)
    SE    = sqrt(sum(w_se * events * (population - events)))
    CI    = rate +/- 1.96 * SE

with N the standard population and n the area population. Stratum counts are
rounded to multiples of 5 once, after aggregation and before the rate.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from shrf.data.area_indicators import sql
from shrf.data.area_indicators.classification import CategoryRules, classify_events
from shrf.data.area_indicators.constants import (
    AGE_GROUPS,
    INSTITUTIONAL_DWELLING_CODES,
    MAX_AGE,
    RATE_MULTIPLIER,
    ROUNDING_BASE,
    Z_95,
)
from shrf.data.area_indicators.errors import InputContractError
from shrf.data.area_indicators.frames import fetch_table, register_frame, row_count

if TYPE_CHECKING:
    import duckdb


def _build_age_group_cases() -> str:
    """Build SQL CASE expression mapping age -> age_group from AGE_GROUPS."""
    cases = []
    for group_name, age_range in AGE_GROUPS.items():
        min_age = min(age_range)
        max_age = max(age_range)
        cases.append(f"WHEN age BETWEEN {min_age} AND {max_age} THEN '{group_name}'")
    return "\n            ".join(cases)


def _institutional_filter(codes: tuple[str, ...]) -> str:
    """SQL predicate keeping residents of non-institutional dwellings."""
    if not codes:
        return "TRUE"
    quoted = ", ".join("'" + c.replace("'", "''") + "'" for c in codes)
    return f"(dwelling_code IS NULL OR dwelling_code NOT IN ({quoted}))"


def _warn_out_of_range_ages(
    conn: duckdb.DuckDBPyConnection, table: str, label: str
) -> int:
    """Log rows dropped for an unknown age or one outside [0, MAX_AGE]."""
    n_rows, weight = conn.execute(
        sql.GET_OUT_OF_RANGE_AGES.format(table=table, max_age=MAX_AGE)
    ).fetchone()
    if n_rows:
        logger.warning(
            "  Dropping {:,} {} ({:,.1f} weighted) with unknown age or age "
            "outside 0-{}",
            n_rows,
            label,
            weight,
            MAX_AGE,
        )
    return int(n_rows)


def build_population_denominators(
    conn: duckdb.DuckDBPyConnection,
    persons: pd.DataFrame,
    year: int,
    vintage: int | None = None,
    institutional_codes: tuple[str, ...] | None = None,
    output: str = "population_denominators",
) -> pd.DataFrame:
    """Collapse person-level census records into stratum populations.

    Residents of institutional collective dwellings are left out. The code
    list depends on the census vintage because dwelling types were recoded
    between censuses.

    Args:
        conn: DuckDB connection
        persons: Records with geo_id, age, sex, weight and dwelling_code
        year: Reference year written on every row
        vintage: Census vintage selecting the institutional code list,
            defaults to ``year``
        institutional_codes: Explicit code list overriding the vintage one
        output: DuckDB result table

    Returns:
        DataFrame with geo_id, year, sex, age_group, population
    """
    if institutional_codes is None:
        vintage = year if vintage is None else vintage
        if vintage not in INSTITUTIONAL_DWELLING_CODES:
            raise ValueError(
                f"No institutional dwelling codes for {vintage}. "
                f"Available: {list(INSTITUTIONAL_DWELLING_CODES)}"
            )
        institutional_codes = INSTITUTIONAL_DWELLING_CODES[vintage]

    missing = [
        c
        for c in ("geo_id", "age", "sex", "weight", "dwelling_code")
        if c not in persons.columns
    ]
    if missing:
        raise InputContractError(f"Person frame is missing columns: {missing}")

    source = f"{output}_persons"
    register_frame(conn, source, persons)
    _warn_out_of_range_ages(conn, source, "person records")
    conn.execute(
        sql.CREATE_POPULATION_DENOMINATORS.format(
            output=output,
            persons=source,
            year=int(year),
            age_group_cases=_build_age_group_cases(),
            max_age=MAX_AGE,
            institutional_filter=_institutional_filter(tuple(institutional_codes)),
        )
    )
    logger.debug(
        "  Denominators {}: {:,} strata (institutional codes {})",
        year,
        row_count(conn, output),
        list(institutional_codes),
    )
    return fetch_table(conn, output)


def stratum_population(
    conn: duckdb.DuckDBPyConnection,
    population: pd.DataFrame,
    output: str = "stratum_population",
) -> pd.DataFrame:
    """Normalize stratum populations and add the total-sex stratum if absent."""
    unknown = set(population["age_group"].dropna()) - set(AGE_GROUPS)
    if unknown:
        raise InputContractError(f"Unknown age groups: {sorted(unknown)}")
    source = f"{output}_input"
    register_frame(conn, source, population)
    conn.execute(
        sql.CREATE_STRATUM_POPULATION.format(output=output, population=source)
    )
    return fetch_table(conn, output)


def default_standard_population(
    conn: duckdb.DuckDBPyConnection,
    population: pd.DataFrame,
    standard_year: int | None = None,
    output: str = "standard_population",
) -> pd.DataFrame:
    """National stratum totals used as the standard population.

    Without ``standard_year`` every year is standardized against its own
    national totals and the result keeps a ``year`` column. With it, the
    totals of that single year apply to every year.
    """
    if standard_year is None:
        year_column, year_filter = "year, ", "TRUE"
    else:
        year_column, year_filter = "", f"year = {int(standard_year)}"
    source = f"{output}_input"
    register_frame(conn, source, population)
    conn.execute(
        sql.CREATE_DEFAULT_STANDARD_POPULATION.format(
            output=output,
            population=source,
            year_column=year_column,
            year_filter=year_filter,
        )
    )
    logger.debug(
        "  Standard population: national totals of {}",
        "each year" if standard_year is None else standard_year,
    )
    return fetch_table(conn, output)


def standardization_weights(
    conn: duckdb.DuckDBPyConnection,
    population: pd.DataFrame,
    standard: pd.DataFrame,
    output: str = "standardization_weights",
) -> pd.DataFrame:
    """Compute stdw and w_se for every (geo_id, year, sex, age_group).

    A standard carrying a ``year`` column is matched year by year; one
    without applies to every year. Strata with zero population get null
    weights and drop out of the rate.
    """
    population_table, standard_table = f"{output}_population", f"{output}_standard"
    register_frame(conn, population_table, population)
    register_frame(conn, standard_table, standard)
    by_year = "year" in standard.columns
    conn.execute(
        sql.CREATE_STANDARDIZATION_WEIGHTS.format(
            output=output,
            population=population_table,
            standard=standard_table,
            standard_keys="year, sex" if by_year else "sex",
            standard_year_match=" AND p.year = s.year" if by_year else "",
            totals_year_match=" AND p.year = st.year" if by_year else "",
        )
    )
    logger.debug("  Standardization weights: {:,} strata", row_count(conn, output))
    return fetch_table(conn, output)


def stratum_events(
    conn: duckdb.DuckDBPyConnection,
    classified: pd.DataFrame,
    output: str = "stratum_events",
) -> pd.DataFrame:
    """Sum classified event weights per (geo_id, year, sex, age_group, category).

    The total-sex stratum counts every event, including those of unknown sex.
    Events without a geography or a usable age are dropped with a warning.
    """
    missing = [
        c
        for c in ("geo_id", "year", "age", "sex", "category", "weight")
        if c not in classified.columns
    ]
    if missing:
        raise InputContractError(f"Classified event frame is missing: {missing}")

    no_geo = int(classified["geo_id"].isna().sum())
    if no_geo:
        logger.warning("  Dropping {:,} category rows without geography", no_geo)

    source = f"{output}_input"
    register_frame(
        conn,
        source,
        classified[["geo_id", "year", "age", "sex", "category", "weight"]],
    )
    _warn_out_of_range_ages(conn, source, "category rows")
    conn.execute(
        sql.CREATE_STRATUM_EVENTS.format(
            output=output,
            events=source,
            age_group_cases=_build_age_group_cases(),
            max_age=MAX_AGE,
        )
    )
    logger.debug("  Stratum events: {:,} rows", row_count(conn, output))
    return fetch_table(conn, output)


def rate_strata(
    conn: duckdb.DuckDBPyConnection,
    weights: pd.DataFrame,
    events: pd.DataFrame,
    categories: tuple[str, ...],
    output: str = "rate_strata",
) -> pd.DataFrame:
    """Attach stratum events to standardization weights.

    Every weighted stratum gets one row per category, zero when no event
    occurred. Events whose geography and year have no denominator are
    dropped and reported.
    """
    tables = {
        "weights": f"{output}_weights",
        "events": f"{output}_events",
        "categories": f"{output}_categories",
    }
    register_frame(conn, tables["weights"], weights)
    register_frame(conn, tables["events"], events)
    register_frame(conn, tables["categories"], pd.DataFrame({"category": categories}))

    strata, unlinked = conn.execute(
        sql.GET_UNLINKED_EVENTS.format(
            events=tables["events"], weights=tables["weights"]
        )
    ).fetchone()
    if strata:
        logger.warning(
            "  {:,} event strata ({:,.1f} events) have no denominator and are dropped",
            strata,
            unlinked,
        )

    conn.execute(sql.CREATE_RATE_STRATA.format(output=output, **tables))
    return fetch_table(conn, output)


def round_to_base(values: pd.Series, base: int = ROUNDING_BASE) -> pd.Series:
    """Round to the nearest multiple of ``base``, halves away from zero."""
    magnitude = (values.abs() / base + 0.5).floordiv(1) * base
    return magnitude.where(values >= 0, -magnitude)


def apply_disclosure_rounding(
    strata: pd.DataFrame, base: int = ROUNDING_BASE
) -> pd.DataFrame:
    """Round stratum event and population counts for disclosure control."""
    return strata.assign(
        events=round_to_base(strata["events"], base),
        population=round_to_base(strata["population"], base),
    )


def compute_rates(
    conn: duckdb.DuckDBPyConnection,
    strata: pd.DataFrame,
    multiplier: int = RATE_MULTIPLIER,
    z: float = Z_95,
    output: str = "event_rates",
) -> pd.DataFrame:
    """Compute standardized rates, standard errors and confidence intervals.

    Args:
        conn: DuckDB connection
        strata: Rounded strata (geo_id, year, sex, age_group, category, stdw,
            w_se, population, events)
        multiplier: Rate scale, per 100,000 by default
        z: Normal quantile of the confidence interval

    Returns:
        DataFrame with geo_id, year, sex, category, numerator, denominator,
        rate, standard_error, ci_low, ci_high. Rates over a zero weighted
        population are null.
    """
    source = f"{output}_strata"
    register_frame(conn, source, strata)
    conn.execute(
        sql.CREATE_EVENT_RATES.format(
            output=output, strata=source, multiplier=multiplier, z=z
        )
    )
    logger.debug("  Rates: {:,} rows", row_count(conn, output))
    return fetch_table(conn, output)


def standardized_rates(
    conn: duckdb.DuckDBPyConnection,
    events: pd.DataFrame,
    population: pd.DataFrame,
    rules: CategoryRules,
    standard: pd.DataFrame | None = None,
    standard_year: int | None = None,
    rounding_base: int = ROUNDING_BASE,
) -> pd.DataFrame:
    """Classify events and compute age-standardized rates in one pass.

    Args:
        conn: DuckDB connection
        events: Event records (year, age, sex, geo_id, icd_code)
        population: Stratum populations (geo_id, year, sex, age_group,
            population)
        rules: ICD-10 classification rules
        standard: Standard population (sex, age_group, population), defaults
            to the national totals of each year
        standard_year: Pin the default standard to this year's totals
        rounding_base: Disclosure control granularity
    """
    classified = classify_events(events, rules)
    population = stratum_population(conn, population)
    if standard is None:
        standard = default_standard_population(conn, population, standard_year)
    weights = standardization_weights(conn, population, standard)
    counts = stratum_events(conn, classified)
    strata = rate_strata(conn, weights, counts, rules.output_categories)
    rounded = apply_disclosure_rounding(strata, rounding_base)
    return compute_rates(conn, rounded)
