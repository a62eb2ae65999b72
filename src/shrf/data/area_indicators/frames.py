"""Registration of pandas frames as DuckDB tables.

Stage functions receive and return pandas DataFrames; DuckDB executes the
SQL between them. Each input is materialized under its own table name so
no stage overwrites another stage's input.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shrf.data.area_indicators import sql

if TYPE_CHECKING:
    import duckdb
    import pandas as pd


def register_frame(
    conn: duckdb.DuckDBPyConnection, table: str, df: pd.DataFrame
) -> None:
    """Materialize ``df`` as DuckDB table ``table``.

    Float columns are passed as nullable ``Float64`` so missing values
    arrive in SQL as NULL rather than NaN.
    """
    frame = df.copy()
    for column in frame.select_dtypes(include="float").columns:
        frame[column] = frame[column].astype("Float64")
    view = f"{table}_df"
    conn.register(view, frame)
    conn.execute(sql.REGISTER_FRAME.format(table=table))
    conn.unregister(view)


def fetch_table(conn: duckdb.DuckDBPyConnection, table: str) -> pd.DataFrame:
    """Return a DuckDB table as a DataFrame."""
    return conn.execute(sql.SELECT_TABLE.format(table=table)).df()


def row_count(conn: duckdb.DuckDBPyConnection, table: str) -> int:
    return conn.execute(sql.COUNT_ROWS.format(table=table)).fetchone()[0]


def distinct_count(conn: duckdb.DuckDBPyConnection, table: str, column: str) -> int:
    return conn.execute(
        sql.COUNT_DISTINCT.format(table=table, column=column)
    ).fetchone()[0]
