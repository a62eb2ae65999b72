"""Age-standardization and event rate templates."""

__all__ = [
    "CREATE_DEFAULT_STANDARD_POPULATION",
    "CREATE_EVENT_RATES",
    "CREATE_POPULATION_DENOMINATORS",
    "CREATE_RATE_STRATA",
    "CREATE_STANDARDIZATION_WEIGHTS",
    "CREATE_STRATUM_EVENTS",
    "CREATE_STRATUM_POPULATION",
    "GET_OUT_OF_RANGE_AGES",
    "GET_UNLINKED_EVENTS",
]

# Rows whose age is unknown or outside [0, {max_age}]
GET_OUT_OF_RANGE_AGES = """
SELECT COUNT(*) AS n_rows, COALESCE(SUM(CAST(weight AS DOUBLE)), 0) AS weight
FROM {table}
WHERE geo_id IS NOT NULL
  AND (age IS NULL OR age < 0 OR age > {max_age})
"""

# Collapse person-level census records into stratum denominators, dropping
# institutional residents through {institutional_filter}.
CREATE_POPULATION_DENOMINATORS = """
CREATE OR REPLACE TABLE {output} AS
SELECT
    geo_id,
    {year} AS year,
    sex,
    CASE
        {age_group_cases}
    END AS age_group,
    SUM(CAST(weight AS DOUBLE)) AS population
FROM {persons}
WHERE geo_id IS NOT NULL
  AND sex IN ('f', 'm')
  AND age BETWEEN 0 AND {max_age}
  AND {institutional_filter}
GROUP BY ALL
"""

# Stratum populations with the total-sex stratum derived from f + m for every
# (geo_id, year) that does not already carry it.
CREATE_STRATUM_POPULATION = """
CREATE OR REPLACE TABLE {output} AS
WITH base AS (
    SELECT
        geo_id,
        CAST(year AS INTEGER) AS year,
        sex,
        age_group,
        SUM(CAST(population AS DOUBLE)) AS population
    FROM {population}
    WHERE geo_id IS NOT NULL
      AND sex IN ('t', 'f', 'm')
    GROUP BY geo_id, year, sex, age_group
)
SELECT * FROM base
UNION ALL
SELECT b.geo_id, b.year, 't' AS sex, b.age_group, SUM(b.population) AS population
FROM base b
WHERE b.sex IN ('f', 'm')
  AND NOT EXISTS (
      SELECT 1 FROM base t
      WHERE t.sex = 't' AND t.geo_id = b.geo_id AND t.year = b.year
  )
GROUP BY b.geo_id, b.year, b.age_group
"""

# National standard population from the stratum denominators, per year unless
# {year_filter} pins a single year.
CREATE_DEFAULT_STANDARD_POPULATION = """
CREATE OR REPLACE TABLE {output} AS
SELECT {year_column}sex, age_group, SUM(population) AS population
FROM {population}
WHERE {year_filter}
GROUP BY ALL
"""

# stdw = (N_stratum / n_stratum) * (n_total / N_total)
# w_se = N_stratum^2 / (N_total^2 * n_stratum)
# {standard_keys} is "year, sex" for a per-year standard, "sex" otherwise.
CREATE_STANDARDIZATION_WEIGHTS = """
CREATE OR REPLACE TABLE {output} AS
WITH unit_totals AS (
    SELECT geo_id, year, sex, SUM(population) AS unit_total
    FROM {population}
    GROUP BY geo_id, year, sex
),
standard_totals AS (
    SELECT {standard_keys}, SUM(CAST(population AS DOUBLE)) AS standard_total
    FROM {standard}
    GROUP BY {standard_keys}
)
SELECT
    p.geo_id,
    p.year,
    p.sex,
    p.age_group,
    p.population,
    (CAST(s.population AS DOUBLE) / NULLIF(p.population, 0))
        * (u.unit_total / NULLIF(st.standard_total, 0)) AS stdw,
    (CAST(s.population AS DOUBLE) * CAST(s.population AS DOUBLE))
        / NULLIF(st.standard_total * st.standard_total * p.population, 0) AS w_se
FROM {population} p
JOIN unit_totals u
    ON p.geo_id = u.geo_id AND p.year = u.year AND p.sex = u.sex
JOIN {standard} s
    ON p.sex = s.sex AND p.age_group = s.age_group{standard_year_match}
JOIN standard_totals st
    ON p.sex = st.sex{totals_year_match}
"""

# Weighted event counts per stratum and category; sex 't' sums every event
# including those with unknown sex.
CREATE_STRATUM_EVENTS = """
CREATE OR REPLACE TABLE {output} AS
WITH grouped AS (
    SELECT
        geo_id,
        CAST(year AS INTEGER) AS year,
        sex,
        CASE
            {age_group_cases}
        END AS age_group,
        category,
        SUM(CAST(weight AS DOUBLE)) AS events
    FROM {events}
    WHERE geo_id IS NOT NULL
      AND age BETWEEN 0 AND {max_age}
    GROUP BY ALL
)
SELECT geo_id, year, sex, age_group, category, events
FROM grouped
WHERE sex IN ('f', 'm')
UNION ALL
SELECT geo_id, year, 't' AS sex, age_group, category, SUM(events) AS events
FROM grouped
GROUP BY geo_id, year, age_group, category
"""

# Every (geography, year, sex, stratum) with a weight receives a row per
# category; strata without events count zero. Events without a matching
# denominator are dropped.
CREATE_RATE_STRATA = """
CREATE OR REPLACE TABLE {output} AS
WITH categories AS (
    SELECT DISTINCT category FROM {categories}
)
SELECT
    w.geo_id,
    w.year,
    w.sex,
    w.age_group,
    c.category,
    w.stdw,
    w.w_se,
    w.population,
    COALESCE(e.events, 0) AS events
FROM {weights} w
CROSS JOIN categories c
LEFT JOIN {events} e
    ON w.geo_id = e.geo_id
    AND w.year = e.year
    AND w.sex = e.sex
    AND w.age_group = e.age_group
    AND c.category = e.category
"""

# Stratum events whose geography and year have no denominator
GET_UNLINKED_EVENTS = """
SELECT COUNT(*) AS strata, COALESCE(SUM(e.events), 0) AS events
FROM {events} e
LEFT JOIN (SELECT DISTINCT geo_id, year FROM {weights}) w
    ON e.geo_id = w.geo_id AND e.year = w.year
WHERE w.geo_id IS NULL
"""

# rate = multiplier * SUM(stdw * events) / SUM(stdw * population)
# SE   = SQRT(SUM(w_se * events * (population - events)))
# Expects strata counts already rounded for disclosure control.
CREATE_EVENT_RATES = """
CREATE OR REPLACE TABLE {output} AS
WITH summed AS (
    SELECT
        geo_id,
        year,
        sex,
        category,
        SUM(events) AS numerator,
        SUM(population) AS denominator,
        {multiplier} * SUM(stdw * events) / NULLIF(SUM(stdw * population), 0)
            AS rate,
        SUM(w_se * events * (population - events)) AS variance
    FROM {strata}
    GROUP BY geo_id, year, sex, category
),
with_se AS (
    SELECT
        *,
        CASE WHEN variance IS NOT NULL THEN SQRT(GREATEST(variance, 0)) END
            AS standard_error
    FROM summed
)
SELECT
    geo_id,
    year,
    sex,
    category,
    CAST(numerator AS BIGINT) AS numerator,
    CAST(denominator AS BIGINT) AS denominator,
    rate,
    standard_error,
    rate - {z} * standard_error AS ci_low,
    rate + {z} * standard_error AS ci_high
FROM with_se
ORDER BY geo_id, year, sex, category
"""
