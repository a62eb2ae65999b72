"""Attribute file collapse and population count templates."""

__all__ = [
    "AGGREGATE_TO_CENSUS_TRACT",
    "COLLAPSE_ATTRIBUTE_FILE",
]

# Collapse dissemination blocks to dissemination areas. Population is summed;
# hierarchy columns take the first value in file order (row_idx).
COLLAPSE_ATTRIBUTE_FILE = """
CREATE OR REPLACE TABLE {output} AS
SELECT
    da_id,
    SUM(db_pop) AS da_pop,
    {first_columns}
FROM {attributes}
WHERE da_id IS NOT NULL
GROUP BY da_id
ORDER BY da_id
"""

# DA counts summed to the census tract of the boundary vintage, rounded once
# after the sum (half to even). DAs outside a tract (null ct_id) are left out.
AGGREGATE_TO_CENSUS_TRACT = """
CREATE OR REPLACE TABLE {output} AS
SELECT
    p.year,
    a.ct_id,
    CAST(ROUND_EVEN(SUM(CAST(p.population AS DOUBLE)), 0) AS BIGINT) AS population
FROM {counts} p
JOIN {attributes} a ON p.da_id = a.da_id
WHERE a.ct_id IS NOT NULL
GROUP BY p.year, a.ct_id
ORDER BY p.year, a.ct_id
"""
