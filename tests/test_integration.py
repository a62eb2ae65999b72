"""Integration tests over full national census extracts.

These tests read the raw attribute, correspondence and census profile files
from data/input and are skipped by default. Run with:

    uv run python -m pytest tests/ -v --run-integration -m integration
"""

from __future__ import annotations

from pathlib import Path

import pytest

from shrf.data.area_indicators.constants import (
    CENSUS_VINTAGES,
    INPUT_FILES,
    PUBLISHED_NATIONAL_POPULATION,
)
from shrf.data.area_indicators.duckdb_processor import (
    CasdohiProcessor,
    PopulationCountProcessor,
)

pytestmark = pytest.mark.integration

INPUT_DIR = Path("data/input")
CACHE_DIR = Path("data/cache")


def _require_inputs(kind: str, vintages) -> None:
    for vintage in vintages:
        pattern = INPUT_FILES[kind][vintage]
        if not list(INPUT_DIR.glob(pattern)):
            pytest.skip(f"Missing input file: {pattern}")


# ---------------------------------------------------------------------------
# Module-scoped fixtures (run each pipeline once)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def population_processor():
    """Run the population count pipeline over 2011-2021."""
    _require_inputs("attributes", CENSUS_VINTAGES)
    _require_inputs("correspondence", CENSUS_VINTAGES[1:])

    proc = PopulationCountProcessor(cache_dir=CACHE_DIR)
    proc.load_inputs(INPUT_DIR)
    proc.create_population_counts()
    return proc


@pytest.fixture(scope="module")
def casdohi_processor():
    """Run the CASDOHI pipeline for the 2016 census year."""
    _require_inputs("attributes", [2016])
    _require_inputs("profile", [2016])

    proc = CasdohiProcessor(start_year=2016, end_year=2016, cache_dir=CACHE_DIR)
    proc.load_inputs(INPUT_DIR)
    proc.create_indicator_profiles()
    proc.create_indicators()
    return proc


# ---------------------------------------------------------------------------
# Test 1: Censal totals match published national totals
# ---------------------------------------------------------------------------


def test_censal_totals_match_published(population_processor):
    """Censal DA totals should equal the published census counts."""
    results = population_processor.validate(
        expected_totals=PUBLISHED_NATIONAL_POPULATION
    )
    assert results["is_valid"], results["errors"]


# ---------------------------------------------------------------------------
# Test 2: Intercensal totals lie between the surrounding censuses
# ---------------------------------------------------------------------------


def test_intercensal_totals_between_censuses(population_processor):
    """National totals should move linearly between censal totals."""
    totals = population_processor.validate()["stats"]["total_population"]
    for start, end in zip(CENSUS_VINTAGES, CENSUS_VINTAGES[1:]):
        low, high = sorted((totals[start], totals[end]))
        for year in range(start + 1, end):
            # Rounding each DA to a whole person moves totals slightly
            assert low - 5_000 <= totals[year] <= high + 5_000, year


# ---------------------------------------------------------------------------
# Test 3: Census tract sums never exceed DA sums
# ---------------------------------------------------------------------------


def test_ct_sum_leq_da_sum(population_processor):
    """DAs outside any tract are left out, so CT totals are at most DA totals."""
    comparison = population_processor.conn.execute("""
        SELECT d.year, d.da_total, c.ct_total
        FROM (
            SELECT year, SUM(population) AS da_total
            FROM population_da GROUP BY year
        ) d
        JOIN (
            SELECT year, SUM(population) AS ct_total
            FROM population_ct GROUP BY year
        ) c ON d.year = c.year
    """).df()

    assert len(comparison) == CENSUS_VINTAGES[-1] - CENSUS_VINTAGES[0] + 1
    violations = comparison[comparison["ct_total"] > comparison["da_total"]]
    assert len(violations) == 0, violations


# ---------------------------------------------------------------------------
# Test 4: Every boundary DA is present in every year it covers
# ---------------------------------------------------------------------------


def test_complete_da_years(population_processor):
    """Each boundary should report the same DA count in every year."""
    counts = population_processor.conn.execute("""
        SELECT boundary, year, COUNT(DISTINCT da_id) AS das
        FROM population_da
        GROUP BY boundary, year
    """).df()

    for boundary, rows in counts.groupby("boundary"):
        assert rows["das"].nunique() == 1, f"boundary {boundary}: {rows}"


# ---------------------------------------------------------------------------
# Test 5: CASDOHI indicators on the 2016 census
# ---------------------------------------------------------------------------


def test_casdohi_population_matches_profile(casdohi_processor):
    """pop_t should sum to roughly the national 2016 population."""
    indicators = casdohi_processor.to_pandas("indicators")
    total = indicators["pop_t"].sum()
    assert abs(total - PUBLISHED_NATIONAL_POPULATION[2016]) / total < 0.01


def test_casdohi_percentages_mostly_in_range(casdohi_processor):
    """Random rounding aside, shares should lie within [0, 100]."""
    indicators = casdohi_processor.to_pandas("indicators")
    shares = indicators[["pct_immig_t", "pct_no_diploma_t", "pct_owner"]]
    outside = ((shares < 0) | (shares > 100)).sum().sum()
    assert outside / shares.notna().sum().sum() < 0.01
