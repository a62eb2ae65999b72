"""Geography enrichment and release writers.

Attribute files are collapsed from dissemination blocks to dissemination
areas, joined onto DA-level outputs, and released as one CSV per year or as
a labelled spreadsheet.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd
from loguru import logger

from shrf.data.area_indicators import sql
from shrf.data.area_indicators.constants import (
    ATTRIBUTE_HIERARCHY_COLUMNS,
    CMA_NAMES,
    OUTPUT_SCHEMAS,
    PROVINCE_NAMES,
)
from shrf.data.area_indicators.errors import InputContractError
from shrf.data.area_indicators.frames import fetch_table, register_frame, row_count

if TYPE_CHECKING:
    import duckdb

# Column order of each released table
RELEASE_COLUMNS = {
    name: [column["name"] for column in schema]
    for name, schema in OUTPUT_SCHEMAS.items()
}


def collapse_attribute_file(
    conn: duckdb.DuckDBPyConnection,
    blocks: pd.DataFrame,
    output: str = "attributes_da",
) -> pd.DataFrame:
    """Collapse block-level attribute rows to one row per DA.

    Args:
        conn: DuckDB connection
        blocks: Output of ``read_attribute_file`` (row_idx, db_id, db_pop,
            da_id and hierarchy columns)
        output: DuckDB result table

    Returns:
        DataFrame with da_id, da_pop and the hierarchy columns present in
        ``blocks``, each taken from the first block of the DA in file order
    """
    for column in ("row_idx", "da_id", "db_pop"):
        if column not in blocks.columns:
            raise InputContractError(f"Attribute frame is missing column: {column}")

    hierarchy = [c for c in ATTRIBUTE_HIERARCHY_COLUMNS if c in blocks.columns]
    first_columns = ",\n    ".join(
        f"FIRST({c} ORDER BY row_idx) AS {c}" for c in hierarchy
    )
    source = f"{output}_blocks"
    register_frame(conn, source, blocks)
    conn.execute(
        sql.COLLAPSE_ATTRIBUTE_FILE.format(
            output=output, attributes=source, first_columns=first_columns
        )
    )
    logger.debug(
        "  Attribute file: {:,} blocks -> {:,} DAs",
        len(blocks),
        row_count(conn, output),
    )
    return fetch_table(conn, output)


def aggregate_to_census_tract(
    conn: duckdb.DuckDBPyConnection,
    counts: pd.DataFrame,
    attributes: pd.DataFrame,
    output: str = "population_ct",
) -> pd.DataFrame:
    """Sum DA population counts to the census tracts of the boundary vintage.

    Fractional DA estimates are summed as they are and each tract total is
    rounded once, halves to even.

    Args:
        conn: DuckDB connection
        counts: DA counts (year, da_id, population)
        attributes: Collapsed attribute file of the boundary vintage
        output: DuckDB result table

    Returns:
        DataFrame with year, ct_id, population
    """
    counts_table, attributes_table = f"{output}_counts", f"{output}_attributes"
    register_frame(conn, counts_table, counts[["year", "da_id", "population"]])
    register_frame(conn, attributes_table, attributes[["da_id", "ct_id"]])
    conn.execute(
        sql.AGGREGATE_TO_CENSUS_TRACT.format(
            output=output, counts=counts_table, attributes=attributes_table
        )
    )
    logger.debug("  Census tracts: {:,} rows", row_count(conn, output))
    return fetch_table(conn, output)


def attach_attributes(
    frame: pd.DataFrame, attributes: pd.DataFrame, on: str = "da_id"
) -> pd.DataFrame:
    """Left-join DA hierarchy columns onto ``frame``.

    Rows without an attribute match are kept with missing hierarchy columns.
    """
    hierarchy = [c for c in ATTRIBUTE_HIERARCHY_COLUMNS if c in attributes.columns]
    enriched = frame.merge(attributes[[on, *hierarchy]], on=on, how="left")
    unmatched = int((~frame[on].isin(attributes[on])).sum())
    if unmatched:
        logger.warning("  {:,} rows have no attribute file match on {}", unmatched, on)
    return enriched


def order_release_columns(frame: pd.DataFrame, dataset: str) -> pd.DataFrame:
    """Put the released columns of ``dataset`` first, extra columns after."""
    leading = [c for c in RELEASE_COLUMNS[dataset] if c in frame.columns]
    trailing = [c for c in frame.columns if c not in leading]
    return frame[leading + trailing]


def write_yearly_csv(
    frame: pd.DataFrame, output_dir: str | Path, prefix: str
) -> dict[int, Path]:
    """Write one CSV per year, named ``{prefix}_{year}.csv``.

    Returns:
        Dict mapping year to file path
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {}
    for year, rows in frame.groupby("year", sort=True):
        path = output_dir / f"{prefix}_{year}.csv"
        rows.to_csv(path, index=False)
        paths[int(year)] = path
        logger.debug("  Wrote {} ({:,} rows)", path.name, len(rows))
    return paths


def label_geographies(frame: pd.DataFrame) -> pd.DataFrame:
    """Replace province and CMA codes by their names where known."""
    labelled = frame.copy()
    if "pr_id" in labelled.columns:
        labelled["pr_id"] = labelled["pr_id"].map(
            lambda code: PROVINCE_NAMES.get(code, code), na_action="ignore"
        )
    if "cma_id" in labelled.columns:
        labelled["cma_id"] = labelled["cma_id"].map(
            lambda code: CMA_NAMES.get(code, code), na_action="ignore"
        )
    return labelled.rename(columns={"pr_id": "province", "cma_id": "cma"})


def write_labelled_xlsx(frame: pd.DataFrame, path: str | Path) -> Path:
    """Write a spreadsheet with one sheet per year and labelled geographies."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    labelled = label_geographies(frame)

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for year, rows in labelled.groupby("year", sort=True):
            rows.to_excel(writer, sheet_name=str(year), index=False)
    logger.debug("  Wrote {} ({:,} rows)", path.name, len(frame))
    return path
