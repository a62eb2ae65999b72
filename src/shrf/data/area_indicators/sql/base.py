"""Frame registration and generic table access templates."""

__all__ = [
    "COPY_TO_PARQUET",
    "COUNT_DISTINCT",
    "COUNT_ROWS",
    "LOAD_PARQUET",
    "REGISTER_FRAME",
    "SELECT_TABLE",
]

# Materialize a registered pandas view ({table}_df) as a DuckDB table
REGISTER_FRAME = "CREATE OR REPLACE TABLE {table} AS SELECT * FROM {table}_df"

SELECT_TABLE = "SELECT * FROM {table}"

COUNT_ROWS = "SELECT COUNT(*) FROM {table}"

COUNT_DISTINCT = "SELECT COUNT(DISTINCT {column}) FROM {table}"

# Stage snapshots, written after a stage completes and reloaded on resume
COPY_TO_PARQUET = "COPY (SELECT * FROM {table}) TO '{path}' (FORMAT PARQUET)"

LOAD_PARQUET = "CREATE OR REPLACE TABLE {table} AS SELECT * FROM read_parquet('{path}')"
