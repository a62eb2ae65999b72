"""Areal reweighting templates (previous-census boundary estimation)."""

__all__ = [
    "CREATE_REWEIGHTED_PROFILE",
]

# Redistribute a long profile keyed by source units onto target units.
# Placeholders:
#   {output}            output table name
#   {profile}           unit_id, variable, sex, value (source vintage)
#   {population}        unit_id, sex, population (source vintage strata)
#   {correspondence}    source_id, target_id, weight
#   {variable_classes}  variable, variable_class
#
# extensive: SUM(value * weight)
# intensive: SUM(pop * weight * value) / SUM(pop * weight), the denominator
#            covers every linked row with a population, including rows whose
#            value is missing
# median:    rows ordered by value (missing last), the first row whose
#            cumulative pop * weight share exceeds 0.5 carries the median
CREATE_REWEIGHTED_PROFILE = """
CREATE OR REPLACE TABLE {output} AS
WITH links AS (
    SELECT
        c.target_id AS unit_id,
        p.unit_id AS source_id,
        p.variable,
        p.sex,
        vc.variable_class,
        CAST(p.value AS DOUBLE) AS value,
        CAST(c.weight AS DOUBLE) AS weight,
        CAST(sp.population AS DOUBLE) * CAST(c.weight AS DOUBLE) AS pop_w
    FROM {profile} p
    JOIN {correspondence} c ON p.unit_id = c.source_id
    JOIN {variable_classes} vc ON p.variable = vc.variable
    LEFT JOIN {population} sp ON p.unit_id = sp.unit_id AND p.sex = sp.sex
    WHERE c.weight > 0
),
sums AS (
    SELECT
        unit_id,
        variable,
        sex,
        SUM(value * weight) AS extensive_value,
        SUM(pop_w * value) AS intensive_numerator,
        SUM(pop_w) AS intensive_denominator
    FROM links
    GROUP BY unit_id, variable, sex
),
median_ranked AS (
    SELECT
        unit_id,
        variable,
        sex,
        value,
        SUM(COALESCE(pop_w, 0)) OVER (
            PARTITION BY unit_id, variable, sex
            ORDER BY value ASC NULLS LAST, source_id
            ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW
        ) / NULLIF(
            SUM(COALESCE(pop_w, 0)) OVER (PARTITION BY unit_id, variable, sex),
            0
        ) AS pop_w_frac,
        source_id
    FROM links
    WHERE variable_class = 'median'
),
median_flagged AS (
    SELECT
        *,
        CASE WHEN pop_w_frac > 0.5 THEN 1 ELSE 0 END AS frac_flag,
        SUM(CASE WHEN pop_w_frac > 0.5 THEN 1 ELSE 0 END) OVER (
            PARTITION BY unit_id, variable, sex
            ORDER BY value ASC NULLS LAST, source_id
            ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW
        ) AS frac_flag_cum
    FROM median_ranked
),
medians AS (
    SELECT
        unit_id,
        variable,
        sex,
        MAX(CASE WHEN frac_flag = 1 AND frac_flag_cum = 1 THEN value END)
            AS median_value
    FROM median_flagged
    GROUP BY unit_id, variable, sex
),
targets AS (
    SELECT DISTINCT target_id AS unit_id FROM {correspondence}
),
profile_variables AS (
    SELECT DISTINCT p.variable, p.sex, vc.variable_class
    FROM {profile} p
    JOIN {variable_classes} vc ON p.variable = vc.variable
)
SELECT
    t.unit_id,
    pv.variable,
    pv.sex,
    CASE pv.variable_class
        WHEN 'extensive' THEN s.extensive_value
        WHEN 'intensive'
            THEN s.intensive_numerator / NULLIF(s.intensive_denominator, 0)
        WHEN 'median' THEN m.median_value
    END AS value
FROM targets t
CROSS JOIN profile_variables pv
LEFT JOIN sums s
    ON t.unit_id = s.unit_id
    AND pv.variable = s.variable
    AND pv.sex = s.sex
LEFT JOIN medians m
    ON t.unit_id = m.unit_id
    AND pv.variable = m.variable
    AND pv.sex = m.sex
ORDER BY t.unit_id, pv.variable, pv.sex
"""
