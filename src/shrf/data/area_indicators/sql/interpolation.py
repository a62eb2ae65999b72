"""Temporal linear interpolation templates."""

__all__ = [
    "CREATE_INTERPOLATED_PROFILE",
]

# Linear interpolation between two census vintages on a shared boundary.
# Placeholders: {output}, {start_table}, {end_table} (unit_id, variable, sex,
# value), {start_year}, {end_year}, {span}, {years} (comma-separated list).
# Endpoint years return the endpoint values unchanged. A missing endpoint
# leaves every intercensal year missing.
CREATE_INTERPOLATED_PROFILE = """
CREATE OR REPLACE TABLE {output} AS
WITH endpoints AS (
    SELECT
        COALESCE(s.unit_id, e.unit_id) AS unit_id,
        COALESCE(s.variable, e.variable) AS variable,
        COALESCE(s.sex, e.sex) AS sex,
        CAST(s.value AS DOUBLE) AS value_start,
        CAST(e.value AS DOUBLE) AS value_end
    FROM {start_table} s
    FULL OUTER JOIN {end_table} e
        ON s.unit_id = e.unit_id
        AND s.variable = e.variable
        AND s.sex = e.sex
),
years AS (
    SELECT UNNEST([{years}]) AS year
)
SELECT
    y.year,
    ep.unit_id,
    ep.variable,
    ep.sex,
    CASE
        WHEN y.year = {start_year} THEN ep.value_start
        WHEN y.year = {end_year} THEN ep.value_end
        ELSE ep.value_start
            + (y.year - {start_year}) * (ep.value_end - ep.value_start) / {span}
    END AS value
FROM endpoints ep
CROSS JOIN years y
ORDER BY y.year, ep.unit_id, ep.variable, ep.sex
"""
