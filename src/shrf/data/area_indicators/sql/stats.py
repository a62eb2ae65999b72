"""Validation and summary statistics templates."""

__all__ = [
    "COUNT_INVALID_POPULATION",
    "COUNT_INVALID_RATES",
    "COUNT_MISSING_POPULATION",
    "COUNT_NULL_RATES",
    "COUNT_UNMAPPED_SOURCES",
    "GET_CORRESPONDENCE_VIOLATIONS",
    "GET_EXTENSIVE_TOTALS",
    "GET_INDICATOR_SUMMARY",
    "GET_POPULATION_TOTALS_BY_YEAR",
    "GET_RATE_SUMMARY",
]

# Source units whose weights fall outside [0, 1] or do not sum to one
GET_CORRESPONDENCE_VIOLATIONS = """
SELECT
    source_id,
    SUM(weight) AS weight_sum,
    MIN(weight) AS min_weight,
    MAX(weight) AS max_weight
FROM {correspondence}
GROUP BY source_id
HAVING ABS(SUM(weight) - 1.0) > {tolerance}
    OR MIN(weight) < 0
    OR MAX(weight) > 1
ORDER BY source_id
"""

# Profile units with no correspondence row at all
COUNT_UNMAPPED_SOURCES = """
SELECT COUNT(DISTINCT p.unit_id)
FROM {profile} p
LEFT JOIN {correspondence} c ON p.unit_id = c.source_id
WHERE c.source_id IS NULL
"""

# National total of every extensive variable, per sex stratum
GET_EXTENSIVE_TOTALS = """
SELECT p.variable, p.sex, SUM(CAST(p.value AS DOUBLE)) AS total
FROM {profile} p
JOIN {variable_classes} vc ON p.variable = vc.variable
WHERE vc.variable_class = 'extensive'
GROUP BY p.variable, p.sex
"""

COUNT_INVALID_POPULATION = """
SELECT COUNT(*) FROM {table} WHERE population < 0
"""

COUNT_MISSING_POPULATION = """
SELECT COUNT(*) FROM {table} WHERE population IS NULL
"""

GET_POPULATION_TOTALS_BY_YEAR = """
SELECT year, SUM(population) AS total_population, COUNT(*) AS units
FROM {table}
GROUP BY year
ORDER BY year
"""

GET_RATE_SUMMARY = """
SELECT
    category,
    sex,
    COUNT(*) AS rows,
    COUNT(DISTINCT geo_id) AS geographies,
    SUM(numerator) AS events,
    MIN(rate) AS min_rate,
    MAX(rate) AS max_rate
FROM {table}
GROUP BY category, sex
ORDER BY category, sex
"""

COUNT_INVALID_RATES = """
SELECT COUNT(*) FROM {table}
WHERE rate < 0
   OR standard_error < 0
   OR ci_low > rate
   OR ci_high < rate
"""

COUNT_NULL_RATES = """
SELECT COUNT(*) FROM {table} WHERE rate IS NULL
"""

GET_INDICATOR_SUMMARY = """
SELECT year, COUNT(*) AS units, SUM(pop_t) AS total_population
FROM {table}
GROUP BY year
ORDER BY year
"""
